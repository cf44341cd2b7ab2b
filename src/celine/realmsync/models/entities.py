"""Realm entity models.

These mirror the subset of the Keycloak admin representations that can be
compared across realms. Field names are snake_case in Python and camelCase on
the wire, so raw admin API payloads validate directly into these models.

Identity keys (stable across realms):
- Role: ``name``
- ClientDetail: ``client_id``
- GroupDetail: ``path``
- UserDetail: ``username``

The realm-local ``id`` fields are opaque and never used for matching.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class KeycloakModel(BaseModel):
    """Base model using Keycloak's camelCase field names on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class EntityKind(str, Enum):
    """Entity kinds that can be diffed and synced."""

    ROLE = "role"
    CLIENT = "client"
    GROUP = "group"
    USER = "user"


class ScopeBucket(str, Enum):
    """Client scope assignment bucket."""

    DEFAULT = "default"
    OPTIONAL = "optional"


class Role(KeycloakModel):
    """A realm or client role."""

    id: str | None = None
    name: str
    description: str | None = None
    composite: bool = False
    client_role: bool = False
    container_id: str | None = None
    attributes: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def identity(self) -> str:
        return self.name


class ClientDetail(KeycloakModel):
    """An OAuth/OIDC client with its scope assignments and defined roles."""

    id: str = ""
    client_id: str
    name: str | None = None
    description: str | None = None
    protocol: str | None = None
    redirect_uris: list[str] = Field(default_factory=list)
    web_origins: list[str] = Field(default_factory=list)
    public_client: bool = False
    bearer_only: bool = False
    direct_access_grants_enabled: bool = False
    service_accounts_enabled: bool = False
    default_client_scopes: list[str] = Field(default_factory=list)
    optional_client_scopes: list[str] = Field(default_factory=list)
    client_roles: list[str] = Field(default_factory=list)
    enabled: bool = True

    @property
    def identity(self) -> str:
        return self.client_id

    @property
    def all_client_scopes(self) -> list[str]:
        """Default and optional scope names, de-duplicated, in order."""
        seen: dict[str, None] = {}
        for name in [*self.default_client_scopes, *self.optional_client_scopes]:
            seen.setdefault(name, None)
        return list(seen)


class GroupDetail(KeycloakModel):
    """A group with its role mappings and attributes."""

    id: str = ""
    name: str
    path: str
    sub_groups: list[GroupDetail] = Field(default_factory=list)
    realm_roles: list[str] = Field(default_factory=list)
    client_roles: dict[str, list[str]] = Field(default_factory=dict)
    attributes: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def identity(self) -> str:
        return self.path

    @property
    def parent_path(self) -> str | None:
        """Path of the parent group, or None for a top-level group."""
        parent, _, _ = self.path.rstrip("/").rpartition("/")
        return parent or None


class UserDetail(KeycloakModel):
    """A user with role mappings, group memberships and attributes."""

    id: str = ""
    username: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    enabled: bool = True
    realm_roles: list[str] = Field(default_factory=list)
    client_roles: dict[str, list[str]] = Field(default_factory=dict)
    groups: list[str] = Field(default_factory=list)
    attributes: dict[str, list[str]] = Field(default_factory=dict)
    required_actions: list[str] = Field(default_factory=list)

    @property
    def identity(self) -> str:
        return self.username


def coerce_attributes(raw: Any) -> dict[str, list[str]]:
    """Normalize a Keycloak ``attributes`` map to ``key -> list[str]``.

    Keycloak returns multi-valued attributes as lists, but some versions and
    hand-written payloads use a bare string for single values.
    """
    if not isinstance(raw, dict):
        return {}
    result: dict[str, list[str]] = {}
    for key, value in raw.items():
        if isinstance(value, list):
            result[key] = [str(v) for v in value]
        elif value is not None:
            result[key] = [str(value)]
    return result
