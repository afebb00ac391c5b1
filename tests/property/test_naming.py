"""Property-based tests for deterministic container naming."""

import re

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from agent_reactor.managers.identity_resolver import project_hash, validate_account
from agent_reactor.models.containers import ContainerIdentity
from agent_reactor.utils.exceptions import InvalidAccountError

path_segments = st.lists(
    st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789_.-", min_size=1, max_size=12).filter(
        lambda s: s not in (".", "..")
    ),
    min_size=1,
    max_size=6,
)
accounts = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=1, max_size=16)
variants = st.sampled_from(["base", "go", "full", "cloud", "k8s"])


@pytest.mark.property
@given(path_segments)
@settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_project_hash_is_stable_hex(segments: list[str]):
    """Property: the same absolute path always hashes to the same 8 hex digits."""
    path = "/" + "/".join(segments)

    first = project_hash(path)

    assert re.fullmatch(r"[0-9a-f]{8}", first)
    assert project_hash(path) == first
    assert project_hash(path + "/") == first


@pytest.mark.property
@given(variants, accounts, st.sampled_from(["amd64", "arm64"]))
@settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_container_name_composition(variant: str, account: str, architecture: str):
    """Property: names are prefix-variant-arch-hash-account in that order."""
    identity = ContainerIdentity(
        prefix="v2-claude-reactor",
        variant=variant,
        architecture=architecture,
        project_hash="0a1b2c3d",
        account=account,
    )

    assert identity.name == f"v2-claude-reactor-{variant}-{architecture}-0a1b2c3d-{account}"
    assert identity.image_name == f"v2-claude-reactor-{variant}-{architecture}"
    assert identity.name.startswith(identity.image_name + "-")


@pytest.mark.property
@given(accounts, accounts)
@settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_accounts_never_share_a_container(first: str, second: str):
    """Property: distinct accounts on one project get distinct names."""
    names = {
        ContainerIdentity(
            prefix="v2-claude-reactor",
            variant="base",
            architecture="amd64",
            project_hash="0a1b2c3d",
            account=account,
        ).name
        for account in (first, second)
    }

    assert len(names) == len({first, second})


@pytest.mark.property
@given(st.text(alphabet="ab.-_/ \\", max_size=8))
@settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_accepted_accounts_are_single_safe_components(account: str):
    """Property: an accepted account never names a parent, a hidden file or a subpath."""
    try:
        accepted = validate_account(account)
    except InvalidAccountError:
        return

    assert accepted not in (".", "..")
    assert not accepted.startswith((".", "-", "_"))
    assert "/" not in accepted
    assert "\\" not in accepted
    assert " " not in accepted
