"""Execution identity and instance-profile resolution for runner groups."""

import hashlib
from typing import Optional, Tuple

import structlog

from .models import DeploymentContext, Identity, InstanceProfileBinding, RunnerConfiguration
from .naming import bounded_name, pascal_case

logger = structlog.get_logger()

EC2_SERVICE_PRINCIPAL = "ec2.amazonaws.com"
BASELINE_MANAGED_POLICY = "AmazonSSMManagedInstanceCore"

RUNNERS_ROLE_TAG = "RunnersRole"
RUNNER_GROUP_TAG = "RunnerGroup"

# IAM physical name limits
ROLE_NAME_LIMIT = 64
INSTANCE_PROFILE_NAME_LIMIT = 128


def group_token(group_name: str) -> str:
    """PascalCase form of a group name used inside resource names.

    Distinct group names can share a token (``build-fleet`` and
    ``build_fleet``); fleet compilation rejects such pairs. Names without any
    letters or digits fall back to a digest of the raw name.
    """
    token = pascal_case(group_name)
    if token:
        return token
    return "Group" + hashlib.sha1(group_name.encode("utf-8")).hexdigest()[:8]


def role_logical_id(group_name: str) -> str:
    return f"RunnersRoleFor{group_token(group_name)}"


def instance_profile_logical_id(group_name: str) -> str:
    return f"RunnersInstanceProfileFor{group_token(group_name)}"


def role_name(context: DeploymentContext, group_name: str) -> str:
    return bounded_name(
        f"{context.stack_name}-{role_logical_id(group_name)}", ROLE_NAME_LIMIT
    )


def instance_profile_name(context: DeploymentContext, group_name: str) -> str:
    return bounded_name(
        f"{context.stack_name}-{instance_profile_logical_id(group_name)}",
        INSTANCE_PROFILE_NAME_LIMIT,
    )


class IdentityResolver:
    """Derives or adopts the role runner instances execute as."""

    def __init__(self, context: DeploymentContext):
        self.context = context

    def resolve(
        self, config: RunnerConfiguration, supplied: Optional[Identity] = None
    ) -> Tuple[Identity, InstanceProfileBinding]:
        """Resolve the identity and its instance-profile binding.

        A supplied identity is trusted as-is apart from tagging. Otherwise a
        role scoped to the runner group is synthesized with the single managed
        policy instances need to join managed-instance bootstrapping.

        Args:
            config: Resolved runner group configuration
            supplied: Externally managed identity, if any

        Returns:
            Tuple of (identity, instance profile binding)
        """
        tags = {RUNNERS_ROLE_TAG: RUNNERS_ROLE_TAG, RUNNER_GROUP_TAG: config.name}

        if supplied is not None:
            identity = supplied.model_copy(
                update={"tags": {**supplied.tags, **tags}, "supplied": True}
            )
            logger.info(
                "Using supplied runner identity",
                runner=config.name,
                role=identity.role_name,
            )
        else:
            identity = Identity(
                role_name=role_name(self.context, config.name),
                assumed_by=EC2_SERVICE_PRINCIPAL,
                managed_policies=[BASELINE_MANAGED_POLICY],
                tags=tags,
                supplied=False,
            )
            logger.info(
                "Synthesized runner identity",
                runner=config.name,
                role=identity.role_name,
            )

        binding = InstanceProfileBinding(
            name=instance_profile_name(self.context, config.name),
            logical_id=instance_profile_logical_id(config.name),
            role_name=identity.role_name,
        )
        return identity, binding
