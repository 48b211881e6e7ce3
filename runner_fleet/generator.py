"""Renders resolved runner configurations into manager bootstrap artifacts."""

import json
from decimal import Decimal
from typing import Any, List, NamedTuple, Optional, Sequence

import structlog

from .directives import (
    InitCommand,
    InitConfig,
    InitFile,
    InitPackage,
    InitService,
    ServiceDirectives,
)
from .errors import GenerationRefusedError
from .models import DeploymentContext, Executor, MachineOptions, RunnerConfiguration
from .validation import errors_in, validate

logger = structlog.get_logger()

# Well-known paths on the manager instance
CONFIG_TOML_PATH = "/etc/gitlab-runner/config.toml"
CFN_HUP_PATH = "/etc/cfn/cfn-hup.conf"
AUTO_RELOADER_PATH = "/etc/cfn/hooks.d/cfn-auto-reloader.conf"
RSYSLOG_PATH = "/etc/rsyslog.d/25-gitlab-runner.conf"

RUNNER_REPOSITORY_SCRIPT = (
    "curl -L https://packages.gitlab.com/install/repositories/runner/"
    "gitlab-runner/script.rpm.sh | bash"
)

# Weekday off-hours and all-day weekend
OFF_PEAK_PERIODS = ["* * 0-8,18-23 * * mon-fri *", "* * * * * sat,sun *"]

LOG_FORMAT = "runner"
LOG_LEVEL = "info"


class SpotRequest(NamedTuple):
    """Present only for groups that request spot instances."""

    price: Decimal


class BootstrapArtifacts(NamedTuple):
    document: str
    directives: ServiceDirectives


def spot_request(options: MachineOptions) -> Optional[SpotRequest]:
    if options.request_spot_instance and options.spot_price is not None:
        return SpotRequest(price=options.spot_price)
    return None


def toml_value(value: Any) -> str:
    """Format a scalar or list as a TOML value."""
    # bool first: bool is a subclass of int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        # json leaves DEL unescaped, TOML basic strings do not allow it
        return json.dumps(value).replace("\x7f", "\\u007f")
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(toml_value(item) for item in value) + "]"
    raise TypeError(f"Cannot render {type(value).__name__} as TOML")


class _DocumentWriter:
    """Line-oriented writer that keeps keys in the order they are emitted."""

    def __init__(self):
        self.lines: List[str] = []
        self.depth = 0

    def assign(self, key: str, value: Any) -> None:
        self.lines.append(f"{'  ' * self.depth}{key} = {toml_value(value)}")

    def array(self, key: str, values: Sequence[str]) -> None:
        indent = "  " * self.depth
        self.lines.append(f"{indent}{key} = [")
        for value in values:
            self.lines.append(f"{indent}  {toml_value(value)},")
        self.lines.append(f"{indent}]")

    def table(self, header: str, depth: int) -> None:
        self.depth = depth
        self.lines.append(f"{'  ' * (depth - 1)}{header}")

    def blank(self) -> None:
        self.lines.append("")

    def render(self) -> str:
        return "\n".join(self.lines) + "\n"


def machine_option_flags(options: MachineOptions) -> List[str]:
    """amazonec2 driver flags in the order docker-machine expects them."""
    flags = [
        f"amazonec2-instance-type={options.instance_type}",
        f"amazonec2-region={options.region}",
        f"amazonec2-vpc-id={options.vpc_id}",
        f"amazonec2-zone={options.zone}",
        f"amazonec2-subnet-id={options.subnet_id}",
        f"amazonec2-security-group={options.security_group}",
    ]
    if options.use_private_address:
        flags.append("amazonec2-use-private-address=true")
    flags.append(f"amazonec2-iam-instance-profile={options.iam_instance_profile}")
    if options.keypair_name:
        flags.append(f"amazonec2-keypair-name={options.keypair_name}")
    if options.ssh_keypath:
        flags.append(f"amazonec2-ssh-keypath={options.ssh_keypath}")
    if options.ami:
        flags.append(f"amazonec2-ami={options.ami}")

    spot = spot_request(options)
    if spot is not None:
        flags.append("amazonec2-request-spot-instance=true")
        flags.append(f"amazonec2-spot-price={spot.price:f}")
    return flags


def _write_runner(writer: _DocumentWriter, config: RunnerConfiguration) -> None:
    writer.table("[[runners]]", 1)
    writer.assign("name", config.name)
    writer.assign("url", config.url)
    writer.assign("token", config.token)
    writer.assign("executor", config.executor.value)
    writer.assign("limit", config.max_concurrent_builds)
    writer.assign("output_limit", config.output_limit)
    writer.assign("environment", config.environment)

    if config.executor in (Executor.DOCKER, Executor.DOCKER_MACHINE):
        docker = config.docker
        writer.table("[runners.docker]", 2)
        writer.assign("tls_verify", docker.tls_verify)
        writer.assign("image", docker.image)
        writer.assign("privileged", docker.privileged)
        writer.assign("cap_add", docker.cap_add)
        writer.assign("wait_for_services_timeout", docker.wait_for_services_timeout)
        writer.assign("disable_cache", docker.disable_cache)
        writer.assign("volumes", docker.volumes)
        writer.assign("shm_size", docker.shm_size)

    cache = config.cache
    writer.table("[runners.cache]", 2)
    writer.assign("Type", cache.type)
    writer.assign("Shared", cache.shared)
    writer.table("[runners.cache.s3]", 3)
    writer.assign("ServerAddress", cache.server_address)
    writer.assign("BucketName", cache.bucket_name)
    writer.assign("BucketLocation", cache.bucket_location)

    if config.executor == Executor.DOCKER_MACHINE:
        machine = config.machine
        writer.table("[runners.machine]", 2)
        writer.assign("IdleCount", config.idle_policy.idle_count)
        writer.assign("IdleTime", config.idle_policy.idle_time)
        writer.assign("MaxBuilds", config.max_builds)
        writer.assign("MachineDriver", machine.machine_driver)
        writer.assign("MachineName", machine.machine_name)
        writer.array("MachineOptions", machine_option_flags(machine.options))
        writer.assign("OffPeakTimezone", config.off_peak_policy.timezone)
        writer.assign("OffPeakPeriods", OFF_PEAK_PERIODS)
        writer.assign("OffPeakIdleCount", config.off_peak_policy.idle_count)
        writer.assign("OffPeakIdleTime", config.off_peak_policy.idle_time)


def render_document(configs: Sequence[RunnerConfiguration]) -> str:
    """Render config.toml for one or more runner groups on the same manager.

    The global section carries the sum of the groups' concurrency and the
    tightest polling interval.
    """
    writer = _DocumentWriter()
    writer.assign("concurrent", sum(c.max_concurrent_builds for c in configs))
    writer.assign("check_interval", min(c.check_interval for c in configs))
    writer.assign("log_format", LOG_FORMAT)
    writer.assign("log_level", LOG_LEVEL)
    for config in configs:
        writer.blank()
        _write_runner(writer, config)
    return writer.render()


class ArtifactGenerator:
    """Turns validated runner configurations into bootstrap artifacts."""

    def __init__(self, context: DeploymentContext):
        self.context = context

    def generate(self, config: RunnerConfiguration) -> BootstrapArtifacts:
        """Generate the config document and directives for a single group.

        Args:
            config: Resolved runner configuration

        Returns:
            The rendered document and the service directives

        Raises:
            GenerationRefusedError: If any error-severity diagnostic exists
        """
        return self.generate_fleet([config])

    def generate_fleet(self, configs: Sequence[RunnerConfiguration]) -> BootstrapArtifacts:
        """Generate one document holding a runner block per configuration."""
        if not configs:
            raise ValueError("At least one runner configuration is required")

        for config in configs:
            errors = errors_in(validate(config))
            if errors:
                logger.error(
                    "Refusing to generate artifacts",
                    runner=config.name,
                    errors=[e.code for e in errors],
                )
                raise GenerationRefusedError(config.name, errors)

        document = render_document(configs)
        directives = self.directives(document)

        logger.info(
            "Generated bootstrap artifacts",
            runners=[c.name for c in configs],
            document_bytes=len(document),
        )
        return BootstrapArtifacts(document=document, directives=directives)

    def directives(self, document: str) -> ServiceDirectives:
        """Installation and service-activation sequence for the manager."""
        stack = self.context.stack_name
        region = self.context.region
        resource = self.context.manager_resource_id

        cfn_init = (
            f"/opt/aws/bin/cfn-init -v --stack {stack} --region {region} "
            f"--resource {resource} --configsets default"
        )

        user_data = [
            "yum update -y aws-cfn-bootstrap",
            f"/opt/aws/bin/cfn-init --stack '{stack}' --region '{region}' "
            f"--resource {resource} --configsets default",
            f"/opt/aws/bin/cfn-signal -e $? --stack '{stack}' --region '{region}' "
            f"--resource {resource}",
        ]

        repositories = InitConfig(
            name="repositories",
            elements=[InitCommand(key="10-gitlab-runner", command=RUNNER_REPOSITORY_SCRIPT)],
        )

        packages = InitConfig(
            name="packages",
            elements=[
                InitPackage(name="docker"),
                InitPackage(name="gitlab-runner"),
                InitPackage(name="tzdata"),
                InitFile(
                    path=CFN_HUP_PATH,
                    content=f"[main]\nstack={stack}\nregion={region}\n",
                    mode="000400",
                ),
                InitFile(
                    path=AUTO_RELOADER_PATH,
                    content=(
                        "[cfn-auto-reloader-hook]\n"
                        "triggers=post.update\n"
                        f"path=Resources.{resource}.Metadata.AWS::CloudFormation::Init\n"
                        f"action={cfn_init}\n"
                        "runas=root\n"
                    ),
                    mode="000400",
                ),
                InitCommand(key="20-gitlab-runner-start", command="gitlab-runner start"),
                InitService(
                    name="cfn-hup",
                    restart_on=[CFN_HUP_PATH, AUTO_RELOADER_PATH],
                ),
            ],
        )

        config = InitConfig(
            name="config",
            elements=[
                InitFile(
                    path=CONFIG_TOML_PATH,
                    content=document,
                    owner="gitlab-runner",
                    group="gitlab-runner",
                    mode="000600",
                ),
                InitFile(
                    path=RSYSLOG_PATH,
                    content=':programname, isequal, "gitlab-runner" /var/log/gitlab-runner.log\n',
                ),
                InitService(name="gitlab-runner", restart_on=[CONFIG_TOML_PATH]),
                InitService(name="rsyslog", restart_on=[RSYSLOG_PATH]),
            ],
        )

        return ServiceDirectives(
            user_data=user_data,
            config_sets={"default": ["repositories", "packages", "config"]},
            configs=[repositories, packages, config],
        )
