"""API routes for the runner fleet compiler."""

from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, HTTPException, Request

from ..compiler import GroupCompilation, RunnerFleetCompiler
from ..generator import OFF_PEAK_PERIODS
from ..models import RunnerGroupDeclaration
from ..validation import has_errors

logger = structlog.get_logger()

router = APIRouter()


def mask_secret(value: str, visible_chars: int = 4) -> str:
    """Mask a secret for display, keeping a short prefix."""
    if not value or len(value) <= visible_chars:
        return "*" * 8
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _compiler(request: Request) -> RunnerFleetCompiler:
    compiler = getattr(request.app.state, "compiler", None)
    if not compiler:
        raise HTTPException(status_code=503, detail="Compiler not available")
    return compiler


def _diagnostics(group: GroupCompilation) -> List[Dict[str, Any]]:
    return [d.model_dump(mode="json") for d in group.diagnostics]


@router.post("/runners/resolve")
async def resolve_runner(
    declaration: RunnerGroupDeclaration, request: Request
) -> Dict[str, Any]:
    """Resolve a declaration into its fully-populated configuration."""
    compiler = _compiler(request)
    configuration = compiler.defaults.resolve(declaration.configuration)

    resolved = configuration.model_dump(mode="json")
    resolved["token"] = mask_secret(configuration.token)
    return {"configuration": resolved}


@router.post("/runners/validate")
async def validate_runner(
    declaration: RunnerGroupDeclaration, request: Request
) -> Dict[str, Any]:
    """Validate a declaration and return every diagnostic."""
    compiler = _compiler(request)
    group = compiler.compile(declaration)
    return {
        "runner": group.configuration.name,
        "valid": not has_errors(group.diagnostics),
        "diagnostics": _diagnostics(group),
    }


@router.post("/runners/compile")
async def compile_runner(
    declaration: RunnerGroupDeclaration, request: Request
) -> Dict[str, Any]:
    """Compile a single runner group into bootstrap artifacts."""
    compiler = _compiler(request)
    group = compiler.compile(declaration)

    if group.artifacts is None:
        logger.warning("Compilation refused", runner=group.configuration.name)
        raise HTTPException(
            status_code=422,
            detail={
                "message": f"Runner group {group.configuration.name} has configuration errors",
                "diagnostics": _diagnostics(group),
            },
        )

    return {
        "runner": group.configuration.name,
        "document": group.artifacts.document,
        "user_data": group.artifacts.directives.user_data,
        "metadata": group.artifacts.directives.to_metadata(),
        "identity": group.identity.model_dump(mode="json"),
        "instance_profile": group.instance_profile.model_dump(mode="json"),
        "cache_bucket": group.cache_bucket.model_dump(mode="json"),
        "diagnostics": _diagnostics(group),
    }


@router.post("/fleet/compile")
async def compile_fleet(
    declarations: List[RunnerGroupDeclaration], request: Request
) -> Dict[str, Any]:
    """Compile several runner groups sharing one manager."""
    compiler = _compiler(request)
    fleet = compiler.compile_fleet(declarations)

    groups = [
        {
            "runner": group.configuration.name,
            "succeeded": group.succeeded,
            "diagnostics": _diagnostics(group),
        }
        for group in fleet.groups
    ]

    if fleet.artifacts is None:
        raise HTTPException(
            status_code=422,
            detail={"message": "No runner group compiled", "groups": groups},
        )

    return {
        "document": fleet.artifacts.document,
        "user_data": fleet.artifacts.directives.user_data,
        "metadata": fleet.artifacts.directives.to_metadata(),
        "groups": groups,
    }


@router.get("/policy/off-peak")
async def get_off_peak_policy() -> Dict[str, List[str]]:
    """Fixed off-peak schedule applied to every runner group."""
    return {"periods": list(OFF_PEAK_PERIODS)}
