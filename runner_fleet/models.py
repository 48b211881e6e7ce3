"""Data models for runner group declarations and their resolved form."""

from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .tokens import TokenSource


class FrozenModel(BaseModel):
    """Immutable model base; re-declaration builds a new instance."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class Executor(str, Enum):
    """Executors understood by the runner agent."""

    DOCKER_MACHINE = "docker+machine"
    DOCKER = "docker"
    SHELL = "shell"

    @classmethod
    def _missing_(cls, value):
        # "docker-machine" is the common spelling in deployment manifests
        if isinstance(value, str) and value.lower() == "docker-machine":
            return cls.DOCKER_MACHINE
        return None


# Boundary context


class NetworkReferences(FrozenModel):
    """Identifiers resolved by the network provisioning layer."""

    vpc_id: str = ""
    subnet_id: str = ""
    availability_zone: str = "a"
    security_group: str = ""


class DeploymentContext(FrozenModel):
    """Process-wide naming context supplied at the boundary."""

    stack_name: str
    region: str
    url_suffix: str = "amazonaws.com"
    manager_resource_id: str = "Manager"
    gitlab_url: str = "https://gitlab.com"
    runner_name_prefix: str = "gitlab-runner"
    cache_bucket_name: str = ""
    network: NetworkReferences = Field(default_factory=NetworkReferences)


# Resolved configuration


class ImageLookup(FrozenModel):
    """Search filter for a machine image."""

    name: str
    owners: List[str] = Field(default_factory=list)
    filters: Dict[str, List[str]] = Field(default_factory=dict)


class MachineImage(FrozenModel):
    """Either a concrete image id or a lookup to be resolved by the platform."""

    image_id: Optional[str] = None
    lookup: Optional[ImageLookup] = None


class KeyPairReference(FrozenModel):
    """Secret holding the private/public key material used by the manager."""

    secret_name: str
    key_name: Optional[str] = None


class DockerOptions(FrozenModel):
    image: str
    privileged: bool
    tls_verify: bool
    disable_cache: bool
    volumes: List[str]
    shm_size: int = Field(ge=0)
    cap_add: List[str]
    wait_for_services_timeout: int = Field(ge=0)


class MachineOptions(FrozenModel):
    """amazonec2 driver options, rendered as ``amazonec2-<key>=<value>``."""

    instance_type: str
    region: str
    vpc_id: str
    subnet_id: str
    zone: str
    security_group: str
    use_private_address: bool
    iam_instance_profile: str
    request_spot_instance: bool
    spot_price: Optional[Decimal] = Field(None, gt=0)
    keypair_name: Optional[str] = None
    ssh_keypath: Optional[str] = None
    ami: Optional[str] = None


class MachineConfiguration(FrozenModel):
    machine_driver: str
    machine_name: str
    options: MachineOptions


class CacheOptions(FrozenModel):
    type: str
    shared: bool
    server_address: str
    bucket_name: str
    bucket_location: str
    expiration_days: int


class IdlePolicy(FrozenModel):
    idle_count: int = Field(ge=0)
    idle_time: int = Field(ge=0)


class OffPeakPolicy(FrozenModel):
    timezone: str
    idle_count: int = Field(ge=0)
    idle_time: int = Field(ge=0)


class RunnerConfiguration(FrozenModel):
    """Fully-resolved configuration of one runner group."""

    name: str
    url: str
    token: str
    token_source: TokenSource
    token_parameter: Optional[str] = None
    executor: Executor
    environment: List[str]
    docker: DockerOptions
    machine: MachineConfiguration
    cache: CacheOptions
    idle_policy: IdlePolicy
    off_peak_policy: OffPeakPolicy
    check_interval: int = Field(ge=0)
    max_builds: int = Field(ge=0)
    max_concurrent_builds: int = Field(ge=0)
    output_limit: int = Field(ge=0)
    instance_type: str
    machine_image: MachineImage
    key_pair: Optional[KeyPairReference] = None


# Partial (declared) configuration


class PartialDockerOptions(FrozenModel):
    image: Optional[str] = None
    privileged: Optional[bool] = None
    tls_verify: Optional[bool] = None
    disable_cache: Optional[bool] = None
    volumes: Optional[List[str]] = None
    shm_size: Optional[int] = Field(None, ge=0)
    cap_add: Optional[List[str]] = None
    wait_for_services_timeout: Optional[int] = Field(None, ge=0)


class PartialMachineOptions(FrozenModel):
    instance_type: Optional[str] = None
    region: Optional[str] = None
    vpc_id: Optional[str] = None
    subnet_id: Optional[str] = None
    zone: Optional[str] = None
    security_group: Optional[str] = None
    use_private_address: Optional[bool] = None
    iam_instance_profile: Optional[str] = None
    request_spot_instance: Optional[bool] = None
    spot_price: Optional[Decimal] = Field(None, gt=0)
    keypair_name: Optional[str] = None
    ssh_keypath: Optional[str] = None
    ami: Optional[str] = None


class PartialMachineConfiguration(FrozenModel):
    machine_driver: Optional[str] = None
    machine_name: Optional[str] = None
    options: Optional[PartialMachineOptions] = None


class PartialCacheOptions(FrozenModel):
    type: Optional[str] = None
    shared: Optional[bool] = None
    server_address: Optional[str] = None
    bucket_name: Optional[str] = None
    bucket_location: Optional[str] = None
    expiration_days: Optional[int] = None


class PartialIdlePolicy(FrozenModel):
    idle_count: Optional[int] = Field(None, ge=0)
    idle_time: Optional[int] = Field(None, ge=0)


class PartialOffPeakPolicy(FrozenModel):
    timezone: Optional[str] = None
    idle_count: Optional[int] = Field(None, ge=0)
    idle_time: Optional[int] = Field(None, ge=0)


class PartialRunnerConfiguration(FrozenModel):
    """User-declared runner group; every field may be left unset."""

    name: Optional[str] = None
    url: Optional[str] = None
    token: Optional[str] = None
    token_parameter: Optional[str] = None
    executor: Optional[Executor] = None
    environment: Optional[List[str]] = None
    docker: Optional[PartialDockerOptions] = None
    machine: Optional[PartialMachineConfiguration] = None
    cache: Optional[PartialCacheOptions] = None
    idle_policy: Optional[PartialIdlePolicy] = None
    off_peak_policy: Optional[PartialOffPeakPolicy] = None
    check_interval: Optional[int] = Field(None, ge=0)
    max_builds: Optional[int] = Field(None, ge=0)
    max_concurrent_builds: Optional[int] = Field(None, ge=0)
    output_limit: Optional[int] = Field(None, ge=0)
    instance_type: Optional[str] = None
    machine_image: Optional[MachineImage] = None
    key_pair: Optional[KeyPairReference] = None

    @classmethod
    def from_resolved(cls, config: RunnerConfiguration) -> "PartialRunnerConfiguration":
        """Re-declare a resolved configuration as a partial one."""
        return cls.model_validate(config.model_dump(exclude={"token_source"}))


# Identity


class Identity(FrozenModel):
    """Execution role attached to runner instances."""

    role_name: str
    assumed_by: str = "ec2.amazonaws.com"
    managed_policies: List[str] = Field(default_factory=list)
    tags: Dict[str, str] = Field(default_factory=dict)
    supplied: bool = False


class InstanceProfileBinding(FrozenModel):
    name: str
    logical_id: str
    role_name: str


class RunnerGroupDeclaration(FrozenModel):
    """A runner group as submitted by a deployment tool."""

    configuration: PartialRunnerConfiguration = Field(
        default_factory=PartialRunnerConfiguration
    )
    role: Optional[Identity] = None
