"""Keycloak admin API access.

Provides the per-realm connection settings and the async admin client used by
every engine component.
"""

from celine.realmsync.keycloak.settings import RealmSettings
from celine.realmsync.keycloak.client import (
    KeycloakAdminClient,
    KeycloakAuthError,
    KeycloakConflictError,
    KeycloakConnectionError,
    KeycloakError,
    KeycloakNotFoundError,
)

__all__ = [
    "RealmSettings",
    "KeycloakAdminClient",
    "KeycloakError",
    "KeycloakAuthError",
    "KeycloakConnectionError",
    "KeycloakNotFoundError",
    "KeycloakConflictError",
]
