"""Tests for end-to-end compilation of runner groups."""

import tomllib

import pytest

from runner_fleet.compiler import RunnerFleetCompiler
from runner_fleet.config import Settings
from runner_fleet.models import Identity, RunnerGroupDeclaration
from runner_fleet.tokens import MappingParameterStore
from runner_fleet.validation import errors_in

from .conftest import TOKEN_PARAMETER


@pytest.fixture
def compiler(settings, clock, rng):
    return RunnerFleetCompiler(settings, clock=clock, rng=rng)


def declaration(**configuration):
    return RunnerGroupDeclaration.model_validate({"configuration": configuration})


def spot_without_price(name):
    return declaration(
        name=name,
        token="abc",
        machine={"options": {"request_spot_instance": True}},
    )


def test_minimal_docker_machine_group(compiler):
    group = compiler.compile(
        declaration(
            executor="docker-machine",
            token="abc",
            machine={"options": {"request_spot_instance": False}},
        )
    )

    assert group.succeeded
    assert errors_in(group.diagnostics) == []
    assert group.configuration.name.startswith("gitlab-runner-")
    assert group.configuration.instance_type == "t3.micro"
    assert "spot" not in group.artifacts.document

    runner = tomllib.loads(group.artifacts.document)["runners"][0]
    assert runner["name"] == group.configuration.name
    assert "amazonec2-instance-type=t3.micro" in runner["machine"]["MachineOptions"]


def test_group_carries_identity_and_cache_bucket(compiler):
    group = compiler.compile(declaration(name="build-fleet", token="abc"))

    assert group.identity.role_name == "TestStack-RunnersRoleForBuildFleet"
    assert group.instance_profile.name == "TestStack-RunnersInstanceProfileForBuildFleet"
    assert group.cache_bucket.bucket_name == "teststack-runner-cache"
    assert group.cache_bucket.lifecycle_rule.enabled is False


def test_supplied_role_is_adopted(compiler):
    group = compiler.compile(
        RunnerGroupDeclaration.model_validate(
            {
                "configuration": {"name": "build-fleet", "token": "abc"},
                "role": {"role_name": "platform-runners"},
            }
        )
    )

    assert group.identity == Identity(
        role_name="platform-runners",
        tags={"RunnersRole": "RunnersRole", "RunnerGroup": "build-fleet"},
        supplied=True,
    )
    assert group.instance_profile.role_name == "platform-runners"


def test_token_from_configured_parameters(compiler):
    group = compiler.compile(declaration(name="param", token_parameter=TOKEN_PARAMETER))

    assert group.succeeded
    assert group.configuration.token == "parameter-token"


def test_custom_parameter_store(settings):
    compiler = RunnerFleetCompiler(
        settings, parameter_store=MappingParameterStore({"/other": "other-token"})
    )

    group = compiler.compile(declaration(name="param", token_parameter="/other"))

    assert group.configuration.token == "other-token"


def test_errors_are_reported_not_raised(compiler):
    group = compiler.compile(spot_without_price("broken"))

    assert not group.succeeded
    assert group.artifacts is None
    assert [d.code for d in errors_in(group.diagnostics)] == ["spot-price-missing"]


def test_missing_token_fails_compilation(compiler):
    group = compiler.compile(declaration(name="tokenless"))

    assert not group.succeeded
    assert [d.code for d in group.diagnostics] == ["token-unresolved"]


def test_failed_group_does_not_affect_siblings(compiler):
    fleet = compiler.compile_fleet(
        [
            declaration(name="good", token="abc"),
            spot_without_price("broken"),
            declaration(name="also-good", token="def", max_concurrent_builds=2),
        ]
    )

    assert [g.configuration.name for g in fleet.failed] == ["broken"]
    assert fleet.artifacts is not None

    document = tomllib.loads(fleet.artifacts.document)
    assert [r["name"] for r in document["runners"]] == ["good", "also-good"]
    assert document["concurrent"] == 12
    assert [d.code for d in fleet.diagnostics] == ["spot-price-missing"]


def test_duplicate_names_are_rejected(compiler):
    fleet = compiler.compile_fleet(
        [
            declaration(name="shared", token="abc"),
            declaration(name="shared", token="def"),
        ]
    )

    first, second = fleet.groups
    assert first.succeeded
    assert not second.succeeded
    assert [d.code for d in second.diagnostics] == ["name-duplicate"]
    assert len(tomllib.loads(fleet.artifacts.document)["runners"]) == 1


def test_fleet_without_passing_groups_has_no_artifacts(compiler):
    fleet = compiler.compile_fleet([spot_without_price("a"), spot_without_price("b")])

    assert fleet.artifacts is None
    assert len(fleet.failed) == 2


def test_generated_names_are_distinct_across_a_fleet(compiler):
    fleet = compiler.compile_fleet([declaration(token="abc") for _ in range(5)])

    names = {group.configuration.name for group in fleet.groups}
    assert len(names) == 5
    assert fleet.failed == []


def test_minimal_group_compiles_with_deployment_defaults(monkeypatch):
    # Only the required network ids are supplied, everything else is a default
    monkeypatch.setenv("RUNNER_FLEET_VPC_ID", "vpc-0123456789")
    monkeypatch.setenv("RUNNER_FLEET_SUBNET_ID", "subnet-0abcdef")
    compiler = RunnerFleetCompiler(Settings(_env_file=None))

    group = compiler.compile(
        declaration(
            executor="docker-machine",
            token="abc",
            machine={"options": {"request_spot_instance": False}},
        )
    )

    assert group.diagnostics == []
    assert group.succeeded
    assert group.configuration.name.startswith("gitlab-runner-")
    assert group.configuration.instance_type == "t3.micro"
    assert "spot" not in group.artifacts.document


@pytest.mark.parametrize("other", ["build_fleet", "BuildFleet", "build fleet"])
def test_names_deriving_the_same_identity_are_rejected(compiler, other):
    fleet = compiler.compile_fleet(
        [
            declaration(name="build-fleet", token="abc"),
            declaration(name=other, token="def"),
        ]
    )

    first, second = fleet.groups
    assert first.succeeded
    assert not second.succeeded
    assert [d.code for d in second.diagnostics] == ["identity-collision"]
    assert "build-fleet" in second.diagnostics[0].message
    assert [r["name"] for r in tomllib.loads(fleet.artifacts.document)["runners"]] == [
        "build-fleet"
    ]


def test_distinct_identities_in_one_fleet(compiler):
    fleet = compiler.compile_fleet(
        [
            declaration(name="build-fleet", token="abc"),
            declaration(name="deploy-fleet", token="def"),
        ]
    )

    profiles = [group.instance_profile.name for group in fleet.groups]
    assert len(set(profiles)) == 2
    assert fleet.failed == []
