"""Cross-field validation of resolved runner configurations.

Every rule is an independent predicate over the whole configuration paired
with the diagnostic it produces. Validation reports; it never raises, so a
single pass surfaces every independent problem.
"""

from enum import Enum
from typing import Callable, Iterable, List, NamedTuple, Optional

import structlog
from pydantic import BaseModel

from .models import Executor, RunnerConfiguration
from .tokens import TokenSource

logger = structlog.get_logger()


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class Diagnostic(BaseModel):
    """One validation finding."""

    severity: Severity
    code: str
    message: str
    field: Optional[str] = None
    runner: Optional[str] = None


class Rule(NamedTuple):
    code: str
    severity: Severity
    field: Optional[str]
    message: str
    predicate: Callable[[RunnerConfiguration], bool]


def _key_pair_without_machine_option(config: RunnerConfiguration) -> bool:
    return config.key_pair is not None and not config.machine.options.keypair_name


def _key_pair_name_mismatch(config: RunnerConfiguration) -> bool:
    key_pair = config.key_pair
    keypair_name = config.machine.options.keypair_name
    return bool(
        key_pair is not None
        and key_pair.key_name
        and keypair_name
        and key_pair.key_name != keypair_name
    )


def _machine_key_pair_without_secret(config: RunnerConfiguration) -> bool:
    return config.key_pair is None and bool(config.machine.options.keypair_name)


def _spot_price_missing(config: RunnerConfiguration) -> bool:
    options = config.machine.options
    return options.request_spot_instance and options.spot_price is None


def _spot_price_ignored(config: RunnerConfiguration) -> bool:
    options = config.machine.options
    return not options.request_spot_instance and options.spot_price is not None


def _token_unresolved(config: RunnerConfiguration) -> bool:
    return config.token_source == TokenSource.UNRESOLVED or not config.token.strip()


def _token_ambiguous(config: RunnerConfiguration) -> bool:
    return config.token_source == TokenSource.CONFLICT


def _name_missing(config: RunnerConfiguration) -> bool:
    return not config.name.strip()


def _network_reference_missing(config: RunnerConfiguration) -> bool:
    if config.executor != Executor.DOCKER_MACHINE:
        return False
    options = config.machine.options
    return not (
        options.vpc_id.strip()
        and options.subnet_id.strip()
        and options.security_group.strip()
    )


def _cache_expiration_negative(config: RunnerConfiguration) -> bool:
    return config.cache.expiration_days < 0


def _executor_options_ignored(config: RunnerConfiguration) -> bool:
    if config.executor == Executor.DOCKER_MACHINE:
        return False
    options = config.machine.options
    return options.request_spot_instance or config.key_pair is not None


DEFAULT_RULES: List[Rule] = [
    Rule(
        "key-pair-without-machine-option",
        Severity.ERROR,
        "machine.options.keypair_name",
        "key pair configured without matching machine option "
        "(set machine.options.keypair_name)",
        _key_pair_without_machine_option,
    ),
    Rule(
        "key-pair-name-mismatch",
        Severity.WARNING,
        "machine.options.keypair_name",
        "machine.options.keypair_name does not reference the configured key pair",
        _key_pair_name_mismatch,
    ),
    Rule(
        "machine-key-pair-without-secret",
        Severity.WARNING,
        "key_pair",
        "machine.options.keypair_name is set but no key pair secret is configured",
        _machine_key_pair_without_secret,
    ),
    Rule(
        "spot-price-missing",
        Severity.ERROR,
        "machine.options.spot_price",
        "spot instances requested without a spot price",
        _spot_price_missing,
    ),
    Rule(
        "spot-price-ignored",
        Severity.WARNING,
        "machine.options.spot_price",
        "spot price set but spot instances are not requested",
        _spot_price_ignored,
    ),
    Rule(
        "token-unresolved",
        Severity.ERROR,
        "token",
        "runner token did not resolve from the direct value or the parameter reference",
        _token_unresolved,
    ),
    Rule(
        "token-ambiguous",
        Severity.ERROR,
        "token",
        "runner token resolves from both the direct value and the parameter reference",
        _token_ambiguous,
    ),
    Rule("name-missing", Severity.ERROR, "name", "runner name is empty", _name_missing),
    Rule(
        "network-reference-missing",
        Severity.ERROR,
        "machine.options",
        "docker+machine machine options must not override vpc_id, subnet_id or "
        "security_group with a blank value",
        _network_reference_missing,
    ),
    Rule(
        "cache-expiration-negative",
        Severity.ERROR,
        "cache.expiration_days",
        "cache expiration must be 0 (never expire) or a positive number of days",
        _cache_expiration_negative,
    ),
    Rule(
        "executor-options-ignored",
        Severity.WARNING,
        "executor",
        "spot and key pair options only apply to the docker+machine executor",
        _executor_options_ignored,
    ),
]


def validate(
    config: RunnerConfiguration, rules: Iterable[Rule] = DEFAULT_RULES
) -> List[Diagnostic]:
    """Evaluate every rule against a configuration and collect the findings."""
    diagnostics = [
        Diagnostic(
            severity=rule.severity,
            code=rule.code,
            message=rule.message,
            field=rule.field,
            runner=config.name,
        )
        for rule in rules
        if rule.predicate(config)
    ]

    if diagnostics:
        logger.info(
            "Validation produced diagnostics",
            runner=config.name,
            errors=len(errors_in(diagnostics)),
            warnings=len(diagnostics) - len(errors_in(diagnostics)),
        )
    return diagnostics


def errors_in(diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
    return [d for d in diagnostics if d.severity == Severity.ERROR]


def has_errors(diagnostics: Iterable[Diagnostic]) -> bool:
    return bool(errors_in(diagnostics))
