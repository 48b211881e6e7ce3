"""Compiles runner group declarations into bootstrap artifacts."""

import random
import time
from typing import Callable, Dict, List, Optional, Sequence, Set

import structlog
from pydantic import BaseModel

from .cache import CacheBucketDeclaration, cache_bucket_declaration
from .config import Settings
from .defaults import DefaultResolver
from .generator import ArtifactGenerator, BootstrapArtifacts
from .identity import IdentityResolver
from .images import ImageCatalog
from .models import (
    Identity,
    InstanceProfileBinding,
    RunnerConfiguration,
    RunnerGroupDeclaration,
)
from .tokens import MappingParameterStore, ParameterStore
from .validation import Diagnostic, Severity, errors_in, has_errors, validate

logger = structlog.get_logger()


class GroupCompilation(BaseModel):
    """Outcome of compiling one runner group."""

    configuration: RunnerConfiguration
    identity: Identity
    instance_profile: InstanceProfileBinding
    cache_bucket: CacheBucketDeclaration
    diagnostics: List[Diagnostic]
    artifacts: Optional[BootstrapArtifacts] = None

    @property
    def succeeded(self) -> bool:
        return self.artifacts is not None


class FleetCompilation(BaseModel):
    """Outcome of compiling every runner group of one manager."""

    groups: List[GroupCompilation]
    artifacts: Optional[BootstrapArtifacts] = None

    @property
    def failed(self) -> List[GroupCompilation]:
        return [group for group in self.groups if not group.succeeded]

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return [d for group in self.groups for d in group.diagnostics]


class RunnerFleetCompiler:
    """Runs the resolve, identity, validate and generate stages per group."""

    def __init__(
        self,
        settings: Settings,
        parameter_store: Optional[ParameterStore] = None,
        image_catalog: Optional[ImageCatalog] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the compiler.

        Args:
            settings: Application settings providing the deployment context
            parameter_store: Token parameter lookup; defaults to the
                ``token_parameters`` known to the settings
            image_catalog: Optional platform image listing
            clock: Time source for generated names
            rng: Random source for generated names
        """
        self.context = settings.deployment_context()
        if parameter_store is None:
            parameter_store = MappingParameterStore(settings.token_parameters)
        self.defaults = DefaultResolver(
            self.context,
            parameter_store=parameter_store,
            image_catalog=image_catalog,
            clock=clock,
            rng=rng,
        )
        self.identities = IdentityResolver(self.context)
        self.generator = ArtifactGenerator(self.context)

    def compile(self, declaration: RunnerGroupDeclaration) -> GroupCompilation:
        """Compile a single group; refusals are reported, not raised."""
        group = self._prepare(declaration)
        if has_errors(group.diagnostics):
            logger.warning(
                "Runner group has configuration errors",
                runner=group.configuration.name,
                errors=[d.code for d in errors_in(group.diagnostics)],
            )
            return group

        artifacts = self.generator.generate(group.configuration)
        return group.model_copy(update={"artifacts": artifacts})

    def compile_fleet(
        self, declarations: Sequence[RunnerGroupDeclaration]
    ) -> FleetCompilation:
        """Compile every group and render one document for those that passed.

        A group that fails never affects its siblings. Later groups reusing an
        earlier group's name, or deriving the same role and instance profile,
        are rejected.
        """
        groups: List[GroupCompilation] = []
        seen: Set[str] = set()
        profiles: Dict[str, str] = {}

        for declaration in declarations:
            group = self._prepare(declaration)
            name = group.configuration.name
            profile = group.instance_profile.logical_id
            if name in seen:
                conflict = Diagnostic(
                    severity=Severity.ERROR,
                    code="name-duplicate",
                    message=f"runner name {name} is already used by another group",
                    field="name",
                    runner=name,
                )
            elif profile in profiles:
                conflict = Diagnostic(
                    severity=Severity.ERROR,
                    code="identity-collision",
                    message=(
                        f"runner name {name} derives the same role and instance "
                        f"profile ({profile}) as group {profiles[profile]}"
                    ),
                    field="name",
                    runner=name,
                )
            else:
                conflict = None
                seen.add(name)
                profiles[profile] = name

            if conflict is not None:
                group = group.model_copy(
                    update={"diagnostics": [*group.diagnostics, conflict]}
                )
            groups.append(group)

        passing = [g.configuration for g in groups if not has_errors(g.diagnostics)]
        if not passing:
            logger.error("No runner group compiled", groups=len(groups))
            return FleetCompilation(groups=groups)

        artifacts = self.generator.generate_fleet(passing)
        groups = [
            group
            if has_errors(group.diagnostics)
            else group.model_copy(update={"artifacts": artifacts})
            for group in groups
        ]

        logger.info(
            "Compiled runner fleet",
            groups=len(groups),
            failed=len([g for g in groups if not g.succeeded]),
        )
        return FleetCompilation(groups=groups, artifacts=artifacts)

    def _prepare(self, declaration: RunnerGroupDeclaration) -> GroupCompilation:
        configuration = self.defaults.resolve(declaration.configuration)
        identity, instance_profile = self.identities.resolve(
            configuration, declaration.role
        )
        diagnostics = validate(configuration)
        return GroupCompilation(
            configuration=configuration,
            identity=identity,
            instance_profile=instance_profile,
            cache_bucket=cache_bucket_declaration(configuration.cache),
            diagnostics=diagnostics,
        )
