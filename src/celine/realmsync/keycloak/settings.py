"""Connection settings for one realm.

A ``RealmSettings`` instance is the handle the engine receives for each side
of a reconciliation. It is immutable; use ``with_overrides`` to derive a
modified copy.

Credentials are resolved in this order:
1. a static bearer ``token``
2. service client credentials (``admin_client_id`` / ``admin_client_secret``)
3. admin user credentials (``admin_user`` / ``admin_password``)
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_ADMIN_CLI_CLIENT_ID = "admin-cli"
DEFAULT_TIMEOUT = 15.0


class RealmSettings(BaseModel):
    """Keycloak connection and authentication settings for a single realm."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    # Connection
    base_url: str = Field(..., description="Keycloak base URL")
    realm: str = Field(..., description="Realm name")
    timeout: float = Field(
        default=DEFAULT_TIMEOUT,
        description="HTTP request timeout in seconds",
    )

    # Pre-issued token
    token: str | None = Field(
        default=None,
        description="Static bearer token for the admin API",
    )

    # Service client authentication
    admin_client_id: str | None = Field(
        default=None,
        description="Service client with realm-management roles",
    )
    admin_client_secret: str | None = Field(
        default=None,
        description="Service client secret",
    )

    # Admin user authentication
    admin_user: str | None = Field(
        default=None,
        description="Admin username",
    )
    admin_password: str | None = Field(
        default=None,
        description="Admin password",
    )
    auth_realm: str = Field(
        default="master",
        description="Realm the admin user authenticates against",
    )

    @property
    def root_url(self) -> str:
        return self.base_url.rstrip("/")

    @property
    def realm_url(self) -> str:
        """Get the realm-specific URL."""
        return f"{self.root_url}/realms/{self.realm}"

    @property
    def admin_url(self) -> str:
        """Get the admin API URL for the realm."""
        return f"{self.root_url}/admin/realms/{self.realm}"

    @property
    def token_url(self) -> str:
        """Token endpoint for the configured credential type."""
        realm = self.realm if self.has_client_credentials else self.auth_realm
        return f"{self.root_url}/realms/{realm}/protocol/openid-connect/token"

    @property
    def has_static_token(self) -> bool:
        return bool(self.token)

    @property
    def has_client_credentials(self) -> bool:
        """Check if service client credentials are available."""
        return bool(self.admin_client_id and self.admin_client_secret)

    @property
    def has_admin_credentials(self) -> bool:
        """Check if admin user credentials are available."""
        return bool(self.admin_user and self.admin_password)

    @property
    def label(self) -> str:
        """Short human-readable identifier for logs."""
        return f"{self.root_url}/{self.realm}"

    def with_overrides(self, **overrides: Any) -> "RealmSettings":
        """Create a new settings instance with non-empty overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return self.model_copy(update=changes)
