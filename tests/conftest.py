"""Pytest configuration and fixtures."""

import pytest

from fake_keycloak import FakeKeycloak, FakeRealm


@pytest.fixture
def keycloak() -> FakeKeycloak:
    """In-memory Keycloak server."""
    return FakeKeycloak()


@pytest.fixture
def source(keycloak: FakeKeycloak) -> FakeRealm:
    """Source realm."""
    return keycloak.add_realm("staging")


@pytest.fixture
def destination(keycloak: FakeKeycloak) -> FakeRealm:
    """Destination realm."""
    return keycloak.add_realm("production")
