"""Pytest configuration and fixtures."""

import random

import pytest

from runner_fleet.config import Settings
from runner_fleet.defaults import DefaultResolver
from runner_fleet.generator import ArtifactGenerator
from runner_fleet.identity import IdentityResolver
from runner_fleet.models import PartialRunnerConfiguration
from runner_fleet.tokens import MappingParameterStore

FIXED_TIME = 1700000000.0
TOKEN_PARAMETER = "/gitlab/runner-token"


@pytest.fixture
def settings():
    """Settings for a deployment with its network already provisioned."""
    return Settings(
        stack_name="TestStack",
        region="eu-west-1",
        vpc_id="vpc-0123456789",
        subnet_id="subnet-0abcdef",
        availability_zone="b",
        token_parameters={TOKEN_PARAMETER: "parameter-token"},
        _env_file=None,
    )


@pytest.fixture
def context(settings):
    return settings.deployment_context()


@pytest.fixture
def parameter_store(settings):
    return MappingParameterStore(settings.token_parameters)


@pytest.fixture
def clock():
    return lambda: FIXED_TIME


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def resolver(context, parameter_store, clock, rng):
    return DefaultResolver(context, parameter_store=parameter_store, clock=clock, rng=rng)


@pytest.fixture
def identity_resolver(context):
    return IdentityResolver(context)


@pytest.fixture
def generator(context):
    return ArtifactGenerator(context)


@pytest.fixture
def valid_config(resolver):
    """A resolved configuration that passes validation."""
    return resolver.resolve(
        PartialRunnerConfiguration(name="build-fleet", token="glrt-abc123")
    )
