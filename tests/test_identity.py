"""Tests for runner identity resolution."""

from runner_fleet.identity import (
    BASELINE_MANAGED_POLICY,
    ROLE_NAME_LIMIT,
    IdentityResolver,
    group_token,
    role_logical_id,
)
from runner_fleet.models import Identity, PartialRunnerConfiguration


def test_synthesized_identity(identity_resolver, valid_config):
    identity, profile = identity_resolver.resolve(valid_config)

    assert identity.role_name == "TestStack-RunnersRoleForBuildFleet"
    assert identity.assumed_by == "ec2.amazonaws.com"
    assert identity.managed_policies == [BASELINE_MANAGED_POLICY]
    assert identity.supplied is False
    assert identity.tags == {"RunnersRole": "RunnersRole", "RunnerGroup": "build-fleet"}

    assert profile.logical_id == "RunnersInstanceProfileForBuildFleet"
    assert profile.name == "TestStack-RunnersInstanceProfileForBuildFleet"
    assert profile.role_name == identity.role_name


def test_profile_matches_rendered_machine_option(identity_resolver, valid_config):
    _, profile = identity_resolver.resolve(valid_config)

    assert valid_config.machine.options.iam_instance_profile == profile.name


def test_resolution_is_repeatable(identity_resolver, valid_config):
    assert identity_resolver.resolve(valid_config) == identity_resolver.resolve(valid_config)


def test_supplied_identity_is_used_as_is(identity_resolver, valid_config):
    supplied = Identity(
        role_name="platform-runner-role",
        managed_policies=["PowerUserAccess"],
        tags={"team": "platform"},
    )

    identity, profile = identity_resolver.resolve(valid_config, supplied)

    assert identity.role_name == "platform-runner-role"
    assert identity.managed_policies == ["PowerUserAccess"]
    assert identity.supplied is True
    assert identity.tags["team"] == "platform"
    assert identity.tags["RunnerGroup"] == "build-fleet"
    assert profile.role_name == "platform-runner-role"
    # the caller's object is left alone
    assert supplied.supplied is False
    assert "RunnerGroup" not in supplied.tags


def test_long_group_names_fit_iam_limits(context, resolver):
    config = resolver.resolve(PartialRunnerConfiguration(name="x" * 120, token="abc"))

    identity, _ = IdentityResolver(context).resolve(config)

    assert len(identity.role_name) == ROLE_NAME_LIMIT


def test_group_token_is_pascal_case():
    assert group_token("build-fleet") == "BuildFleet"


def test_names_without_letters_or_digits_get_a_digest():
    token = group_token("---")

    assert token.startswith("Group")
    assert len(token) == len("Group") + 8
    assert token != group_token("___")
    assert role_logical_id("---") != "RunnersRoleFor"
