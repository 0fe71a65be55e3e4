import pytest

from common.environment import (
    EnvironmentIdentity,
    environment_domain,
    normalize_env,
    slugify,
)
from common.shared_state import InMemorySharedStateStore
from provider_test_helpers import TIMESTAMP, make_config


@pytest.mark.parametrize(
    "value,expected",
    [
        ("Acme", "acme"),
        ("Stacks JS", "stacks-js"),
        ("  My_App!! ", "my-app"),
        ("!!!", "stacks"),
    ],
)
def test_slugify(value: str, expected: str):
    assert slugify(value) == expected


@pytest.mark.parametrize(
    "app_env,expected",
    [(None, "dev"), ("local", "dev"), ("Staging", "staging"), ("production", "production")],
)
def test_normalize_env(app_env, expected: str):
    assert normalize_env(app_env) == expected


@pytest.mark.parametrize(
    "app_env,expected",
    [("production", "acme.dev"), ("prod", "acme.dev"), ("dev", "dev.acme.dev")],
)
def test_environment_domain(app_env: str, expected: str):
    assert environment_domain("acme.dev", app_env) == expected


def test_identity_reuses_the_stored_timestamp():
    config = make_config()
    store = InMemorySharedStateStore()

    first = EnvironmentIdentity.resolve(config, store, TIMESTAMP)
    second = EnvironmentIdentity.resolve(config, store, "1800000000")

    assert first.timestamp == second.timestamp == TIMESTAMP
    assert store.values == {"/acme/production/timestamp": TIMESTAMP}
    assert first.build_resource_name("public", unique=True) == second.build_resource_name(
        "public", unique=True
    )


def test_environments_get_their_own_timestamp():
    store = InMemorySharedStateStore()
    production = EnvironmentIdentity.resolve(make_config(), store, TIMESTAMP)
    staging = EnvironmentIdentity.resolve(
        make_config(app={"env": "staging"}), store, "1800000000"
    )

    assert production.timestamp == TIMESTAMP
    assert staging.timestamp == "1800000000"
    assert staging.domain == "staging.acme.dev"
    assert not staging.is_production


@pytest.mark.parametrize(
    "resource_type,action,unique,expected",
    [
        ("bucket", None, False, "acme-production-bucket"),
        ("function", "email-inbound", False, "acme-production-email-inbound-function"),
        ("public", None, True, f"acme-production-public-{TIMESTAMP}"),
    ],
)
def test_build_resource_name(resource_type, action, unique, expected):
    identity = EnvironmentIdentity.resolve(make_config(), InMemorySharedStateStore(), TIMESTAMP)
    assert identity.build_resource_name(resource_type, action=action, unique=unique) == expected


@pytest.mark.parametrize(
    "resource_type,action,expected",
    [
        ("Cloud", None, "AcmeProductionCloud"),
        ("bucket", "public", "AcmeProductionPublicBucket"),
        ("function", "email-inbound", "AcmeProductionEmailInboundFunction"),
    ],
)
def test_build_resource_id(resource_type, action, expected):
    identity = EnvironmentIdentity.resolve(make_config(), InMemorySharedStateStore(), TIMESTAMP)
    assert identity.build_resource_id(resource_type, action=action) == expected
    assert identity.prefix == "acme-production"
