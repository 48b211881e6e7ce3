"""Default resolution for partially declared runner groups."""

import random
import time
from typing import Any, Callable, Dict, Optional

import structlog
from pydantic import BaseModel

from .identity import instance_profile_name
from .images import ImageCatalog, default_machine_image
from .models import (
    CacheOptions,
    DeploymentContext,
    DockerOptions,
    Executor,
    IdlePolicy,
    MachineConfiguration,
    MachineImage,
    MachineOptions,
    OffPeakPolicy,
    PartialRunnerConfiguration,
    RunnerConfiguration,
)
from .naming import generate_unique_name
from .tokens import ParameterStore, resolve_token

logger = structlog.get_logger()

# Smallest general-purpose instance class
DEFAULT_INSTANCE_TYPE = "t3.micro"
DEFAULT_EXECUTOR = Executor.DOCKER_MACHINE
DEFAULT_ENVIRONMENT = ["DOCKER_DRIVER=overlay2", "DOCKER_TLS_CERTDIR=/certs"]
DEFAULT_CHECK_INTERVAL = 0
DEFAULT_MAX_BUILDS = 20
DEFAULT_MAX_CONCURRENT_BUILDS = 10
DEFAULT_OUTPUT_LIMIT = 52428800
SSH_KEY_DIRECTORY = "/etc/gitlab-runner/ssh-custom"

DOCKER_DEFAULTS: Dict[str, Any] = {
    "image": "docker:19.03.5",
    "privileged": True,
    "tls_verify": False,
    "disable_cache": False,
    "volumes": ["/certs/client", "/cache"],
    "shm_size": 0,
    "cap_add": ["CAP_SYS_ADMIN"],
    "wait_for_services_timeout": 300,
}

MACHINE_DEFAULTS: Dict[str, Any] = {
    "machine_driver": "amazonec2",
    "machine_name": "gitlab-runner-%s",
}

IDLE_DEFAULTS: Dict[str, Any] = {"idle_count": 0, "idle_time": 300}

OFF_PEAK_DEFAULTS: Dict[str, Any] = {
    "timezone": "UTC",
    "idle_count": 0,
    "idle_time": 300,
}

CACHE_DEFAULTS: Dict[str, Any] = {
    "type": "s3",
    "shared": True,
    "expiration_days": 0,
}


def _declared(partial: Optional[BaseModel]) -> Dict[str, Any]:
    """Fields the user actually set on a nested partial block."""
    if partial is None:
        return {}
    return partial.model_dump(exclude_none=True)


def _pick(value, default):
    return default if value is None else value


class DefaultResolver:
    """Fills every optional field of a runner group declaration."""

    def __init__(
        self,
        context: DeploymentContext,
        parameter_store: Optional[ParameterStore] = None,
        image_catalog: Optional[ImageCatalog] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the resolver.

        Args:
            context: Naming context of the enclosing deployment
            parameter_store: Lookup for token parameter references
            image_catalog: Platform image listing used to pin the default image
            clock: Time source for generated names
            rng: Random source for generated names
        """
        self.context = context
        self.parameter_store = parameter_store
        self.image_catalog = image_catalog
        self.clock = clock
        self.rng = rng

    def resolve(self, partial: PartialRunnerConfiguration) -> RunnerConfiguration:
        """Return a fully-populated configuration; the input is left untouched."""
        name = self._name(partial.name)
        token, token_source = resolve_token(
            partial.token, partial.token_parameter, self.parameter_store
        )
        instance_type = self._instance_type(partial)
        machine_image = partial.machine_image or default_machine_image(self.image_catalog)

        config = RunnerConfiguration(
            name=name,
            url=_pick(partial.url, self.context.gitlab_url),
            token=token,
            token_source=token_source,
            token_parameter=partial.token_parameter,
            executor=_pick(partial.executor, DEFAULT_EXECUTOR),
            environment=list(_pick(partial.environment, DEFAULT_ENVIRONMENT)),
            docker=DockerOptions(**{**DOCKER_DEFAULTS, **_declared(partial.docker)}),
            machine=self._machine(partial, name, instance_type, machine_image),
            cache=self._cache(partial),
            idle_policy=IdlePolicy(**{**IDLE_DEFAULTS, **_declared(partial.idle_policy)}),
            off_peak_policy=OffPeakPolicy(
                **{**OFF_PEAK_DEFAULTS, **_declared(partial.off_peak_policy)}
            ),
            check_interval=_pick(partial.check_interval, DEFAULT_CHECK_INTERVAL),
            max_builds=_pick(partial.max_builds, DEFAULT_MAX_BUILDS),
            max_concurrent_builds=_pick(
                partial.max_concurrent_builds, DEFAULT_MAX_CONCURRENT_BUILDS
            ),
            output_limit=_pick(partial.output_limit, DEFAULT_OUTPUT_LIMIT),
            instance_type=instance_type,
            machine_image=machine_image,
            key_pair=partial.key_pair,
        )

        logger.debug(
            "Resolved runner configuration",
            name=config.name,
            executor=config.executor.value,
            token_source=config.token_source.value,
        )
        return config

    def _name(self, declared: Optional[str]) -> str:
        if declared and declared.strip():
            return declared.strip()

        name = generate_unique_name(
            clock=self.clock, rng=self.rng, prefix=self.context.runner_name_prefix
        )
        logger.info("Generated runner group name", name=name)
        return name

    def _instance_type(self, partial: PartialRunnerConfiguration) -> str:
        """Top-level declaration first, then the machine option, then the default."""
        if partial.instance_type is not None:
            return partial.instance_type
        options = partial.machine.options if partial.machine else None
        if options is not None and options.instance_type is not None:
            return options.instance_type
        return DEFAULT_INSTANCE_TYPE

    def _machine(
        self,
        partial: PartialRunnerConfiguration,
        name: str,
        instance_type: str,
        machine_image: MachineImage,
    ) -> MachineConfiguration:
        declared = _declared(partial.machine)
        declared_options = declared.pop("options", {})
        network = self.context.network

        keypair_name = declared_options.get("keypair_name")
        options = {
            "instance_type": instance_type,
            "region": self.context.region,
            "vpc_id": network.vpc_id,
            "subnet_id": network.subnet_id,
            "zone": network.availability_zone,
            "security_group": network.security_group,
            "use_private_address": True,
            "iam_instance_profile": instance_profile_name(self.context, name),
            "request_spot_instance": False,
            "ssh_keypath": f"{SSH_KEY_DIRECTORY}/{keypair_name}" if keypair_name else None,
            "ami": machine_image.image_id,
        }
        options.update(declared_options)
        options["instance_type"] = instance_type

        return MachineConfiguration(
            **{**MACHINE_DEFAULTS, **declared},
            options=MachineOptions(**options),
        )

    def _cache(self, partial: PartialRunnerConfiguration) -> CacheOptions:
        values = {
            **CACHE_DEFAULTS,
            "server_address": f"s3.{self.context.url_suffix}",
            "bucket_name": self.context.cache_bucket_name,
            "bucket_location": self.context.region,
        }
        values.update(_declared(partial.cache))
        return CacheOptions(**values)
