"""Configuration management for the runner fleet compiler."""

from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import DeploymentContext, NetworkReferences


class Settings(BaseSettings):
    """Application settings."""

    # Deployment Configuration
    stack_name: str = Field(
        "GitlabRunnerStack", description="Name of the enclosing deployment stack"
    )
    region: str = Field("us-east-1", description="Region the fleet is deployed to")
    url_suffix: str = Field(
        "amazonaws.com", description="Domain suffix for regional service endpoints"
    )
    manager_resource_id: str = Field(
        "Manager", description="Logical id of the manager instance resource"
    )

    # Network Configuration (identifiers resolved by the provisioning layer)
    vpc_id: str = Field(..., description="VPC the runner instances are placed in")
    subnet_id: str = Field(..., description="Subnet the runner instances use")
    availability_zone: str = Field(
        "a", description="Availability zone letter for runner instances"
    )
    security_group: Optional[str] = Field(
        None, description="Security group name (defaults to <stack>-RunnersSecurityGroup)"
    )

    # Runner Defaults
    gitlab_url: str = Field("https://gitlab.com", description="GitLab instance URL")
    runner_name_prefix: str = Field(
        "gitlab-runner", description="Prefix used for generated runner group names"
    )
    cache_bucket_name: Optional[str] = Field(
        None, description="Shared cache bucket (defaults to <stack>-runner-cache)"
    )

    # Token parameters available to the resolver, keyed by parameter name
    token_parameters: Dict[str, str] = Field(
        default_factory=dict, description="Parameter store values for runner tokens"
    )

    # Logging Configuration
    log_level: str = Field("INFO", description="Logging level")
    structured_logging: bool = Field(True, description="Enable structured logging")

    # API Configuration
    api_host: str = Field("0.0.0.0", description="Host the HTTP API binds to")
    api_port: int = Field(8080, description="Port the HTTP API binds to")

    model_config = SettingsConfigDict(env_file=".env", env_prefix="RUNNER_FLEET_")

    def deployment_context(self) -> DeploymentContext:
        """Build the naming context handed to the resolvers and generator."""
        blank = [
            name
            for name in ("stack_name", "region", "vpc_id", "subnet_id")
            if not getattr(self, name).strip()
        ]
        if blank:
            raise ConfigurationError(f"Settings must not be empty: {', '.join(blank)}")
        return DeploymentContext(
            stack_name=self.stack_name,
            region=self.region,
            url_suffix=self.url_suffix,
            manager_resource_id=self.manager_resource_id,
            gitlab_url=self.gitlab_url,
            runner_name_prefix=self.runner_name_prefix,
            cache_bucket_name=self.cache_bucket_name
            or f"{self.stack_name.lower()}-runner-cache",
            network=NetworkReferences(
                vpc_id=self.vpc_id,
                subnet_id=self.subnet_id,
                availability_zone=self.availability_zone,
                security_group=self.security_group
                or f"{self.stack_name}-RunnersSecurityGroup",
            ),
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]
