"""Keycloak Admin API client.

Wraps the Keycloak Admin REST API of a single realm for:
- Realm roles, composites and client roles
- Clients and their default/optional client scope assignments
- Realm client scopes and their protocol mappers
- Groups, users and their role mappings
- Authorization services (scopes, permissions, policies)

Each instance is bound to one ``RealmSettings`` and issues one request at a
time. Status codes are mapped onto the exception hierarchy below; callers
decide which failures are fatal.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from celine.realmsync.keycloak.settings import DEFAULT_ADMIN_CLI_CLIENT_ID, RealmSettings
from celine.realmsync.models import (
    ClientDetail,
    GroupDetail,
    Role,
    ScopeBucket,
    UserDetail,
    coerce_attributes,
)

logger = logging.getLogger(__name__)


class KeycloakError(Exception):
    """Base exception for Keycloak API errors."""

    def __init__(
        self, message: str, status_code: int | None = None, response: dict | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class KeycloakAuthError(KeycloakError):
    """Authentication failed."""

    pass


class KeycloakConnectionError(KeycloakError):
    """The server could not be reached."""

    pass


class KeycloakNotFoundError(KeycloakError):
    """Resource not found."""

    pass


class KeycloakConflictError(KeycloakError):
    """Resource already exists."""

    pass


@dataclass
class TokenInfo:
    """OAuth token information."""

    access_token: str
    expires_at: float
    refresh_token: str | None = None

    def is_valid(self, leeway: int = 30) -> bool:
        """Check if token is still valid."""
        return time.time() < (self.expires_at - leeway)


def _segment(value: str) -> str:
    """Quote a single path segment (role names may contain ':' or spaces)."""
    return quote(value, safe="")


def _names(reps: list[dict[str, Any]] | None, key: str = "name") -> list[str]:
    return [r[key] for r in reps or [] if r.get(key)]


def _client_mapping_names(raw: dict[str, Any] | None) -> dict[str, list[str]]:
    """Flatten ``clientMappings`` into ``clientId -> role names``."""
    result: dict[str, list[str]] = {}
    for client_id, entry in (raw or {}).items():
        names = _names(entry.get("mappings"))
        if names:
            result[entry.get("client") or client_id] = names
    return result


def _location_id(response: httpx.Response) -> str | None:
    """Extract the new resource id from a 201 ``Location`` header."""
    location = response.headers.get("Location")
    if not location:
        return None
    return location.rstrip("/").rsplit("/", 1)[-1] or None


class KeycloakAdminClient:
    """Async client for the Keycloak Admin REST API of one realm."""

    def __init__(
        self,
        settings: RealmSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        page_size: int = 100,
    ):
        self._settings = settings
        self._token: TokenInfo | None = None
        self._client = http_client
        self._owns_client = http_client is None
        self._page_size = page_size

    async def __aenter__(self) -> "KeycloakAdminClient":
        """Async context manager entry."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def settings(self) -> RealmSettings:
        """Get settings."""
        return self._settings

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("KeycloakAdminClient used outside 'async with'")
        return self._client

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def authenticate(self) -> None:
        """Obtain an access token.

        A static token wins, then service client credentials, then admin
        user credentials.
        """
        if self._settings.has_static_token:
            self._token = TokenInfo(access_token=self._settings.token, expires_at=math.inf)
        elif self._settings.has_client_credentials:
            await self._authenticate_client_credentials()
        elif self._settings.has_admin_credentials:
            await self._authenticate_admin_user()
        else:
            raise KeycloakAuthError(
                f"No credentials configured for {self._settings.label}"
            )

    async def _authenticate_client_credentials(self) -> None:
        """Authenticate using client credentials flow."""
        data = {
            "grant_type": "client_credentials",
            "client_id": self._settings.admin_client_id,
            "client_secret": self._settings.admin_client_secret,
        }
        logger.debug(
            "Authenticating with client credentials: %s", self._settings.admin_client_id
        )
        await self._request_token(data, "Client credentials")
        logger.info(
            "Authenticated as service client %s on %s",
            self._settings.admin_client_id,
            self._settings.label,
        )

    async def _authenticate_admin_user(self) -> None:
        """Authenticate using admin user credentials."""
        data = {
            "grant_type": "password",
            "client_id": DEFAULT_ADMIN_CLI_CLIENT_ID,
            "username": self._settings.admin_user,
            "password": self._settings.admin_password,
        }
        logger.debug("Authenticating with admin user: %s", self._settings.admin_user)
        await self._request_token(data, "Admin user")
        logger.info(
            "Authenticated as admin user %s on %s",
            self._settings.admin_user,
            self._settings.label,
        )

    async def _request_token(self, data: dict[str, Any], kind: str) -> None:
        try:
            response = await self._http.post(self._settings.token_url, data=data)
        except httpx.TransportError as exc:
            raise KeycloakConnectionError(
                f"Cannot reach token endpoint {self._settings.token_url}: {exc}"
            ) from exc

        if response.status_code != 200:
            raise KeycloakAuthError(
                f"{kind} authentication failed: {response.text}",
                status_code=response.status_code,
            )

        payload = response.json()
        self._token = TokenInfo(
            access_token=payload["access_token"],
            expires_at=time.time() + float(payload.get("expires_in", 300)),
            refresh_token=payload.get("refresh_token"),
        )

    async def _ensure_token(self) -> str:
        """Ensure we have a valid token."""
        if not self._token or not self._token.is_valid():
            await self.authenticate()
        return self._token.access_token

    async def _headers(self) -> dict[str, str]:
        """Get request headers with auth token."""
        token = await self._ensure_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: list | dict | None = None,
        params: dict[str, Any] | None = None,
        expected_status: tuple[int, ...] = (200,),
    ) -> httpx.Response:
        url = f"{self._settings.admin_url}{path}"
        headers = await self._headers()
        logger.debug("%s %s", method, url)
        try:
            response = await self._http.request(
                method, url, headers=headers, json=json, params=params
            )
        except httpx.TransportError as exc:
            raise KeycloakConnectionError(f"{method} {url} failed: {exc}") from exc
        self._check_response(response, expected_status)
        return response

    def _check_response(
        self, response: httpx.Response, expected_status: tuple[int, ...]
    ) -> None:
        """Map error statuses onto exceptions."""
        if response.status_code == 404:
            raise KeycloakNotFoundError(
                f"Resource not found: {response.request.url}",
                status_code=404,
            )

        if response.status_code == 409:
            raise KeycloakConflictError(
                f"Resource already exists: {response.text}",
                status_code=409,
            )

        if response.status_code == 401:
            raise KeycloakAuthError(
                "Authentication expired or invalid",
                status_code=401,
            )

        if response.status_code not in expected_status:
            raise KeycloakError(
                f"Unexpected response {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Make GET request to admin API."""
        return self._decode(await self._send("GET", path, params=params))

    async def _get_optional(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET that returns None instead of raising on 404."""
        try:
            return await self._get(path, params=params)
        except KeycloakNotFoundError:
            return None

    async def _post(self, path: str, json: list | dict | None = None) -> str | None:
        """Make POST request to admin API. Returns the created id, if any."""
        response = await self._send(
            "POST", path, json=json, expected_status=(200, 201, 204)
        )
        return _location_id(response)

    async def _put(self, path: str, json: dict | None = None) -> None:
        """Make PUT request to admin API."""
        await self._send("PUT", path, json=json, expected_status=(200, 204))

    # -------------------------------------------------------------------------
    # Realm roles
    # -------------------------------------------------------------------------

    async def list_roles(self) -> list[dict[str, Any]]:
        """List all realm roles."""
        return await self._get("/roles", params={"briefRepresentation": "false"}) or []

    async def get_role(self, name: str) -> dict[str, Any]:
        """Get a realm role by name."""
        return await self._get(f"/roles/{_segment(name)}")

    async def create_role(self, role: dict[str, Any]) -> None:
        """Create a realm role."""
        logger.debug("Creating realm role: %s", role.get("name"))
        await self._post("/roles", json=role)
        logger.info("Created realm role %s on %s", role.get("name"), self._settings.label)

    async def list_role_composites(self, name: str) -> list[dict[str, Any]]:
        """List the realm and client roles a composite realm role includes."""
        return await self._get(f"/roles/{_segment(name)}/composites") or []

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    async def list_clients(self) -> list[dict[str, Any]]:
        """List all clients in the realm."""
        return await self._get("/clients") or []

    async def get_client(self, client_uuid: str) -> dict[str, Any]:
        """Get a client by UUID."""
        return await self._get(f"/clients/{client_uuid}")

    async def get_client_by_client_id(self, client_id: str) -> dict[str, Any] | None:
        """Get a client by clientId."""
        clients = await self._get("/clients", params={"clientId": client_id}) or []
        for client in clients:
            if client.get("clientId") == client_id:
                return client
        return None

    async def create_client(self, client: dict[str, Any]) -> str | None:
        """Create a client from a full representation. Returns the new UUID."""
        logger.debug("Creating client: %s", client.get("clientId"))
        client_uuid = await self._post("/clients", json=client)
        logger.info("Created client %s on %s", client.get("clientId"), self._settings.label)
        return client_uuid

    async def update_client(self, client_uuid: str, client: dict[str, Any]) -> None:
        """Replace a client's representation."""
        logger.debug("Updating client: %s", client.get("clientId"))
        await self._put(f"/clients/{client_uuid}", json={**client, "id": client_uuid})
        logger.info("Updated client %s on %s", client.get("clientId"), self._settings.label)

    async def list_client_roles(self, client_uuid: str) -> list[dict[str, Any]]:
        """Get all roles for a client."""
        return await self._get(f"/clients/{client_uuid}/roles") or []

    async def get_client_role(self, client_uuid: str, name: str) -> dict[str, Any]:
        """Get one client role with its full definition."""
        return await self._get(f"/clients/{client_uuid}/roles/{_segment(name)}")

    async def create_client_role(self, client_uuid: str, role: dict[str, Any]) -> None:
        """Create a role on a client."""
        logger.debug("Creating client role %s on %s", role.get("name"), client_uuid)
        await self._post(f"/clients/{client_uuid}/roles", json=role)

    # -------------------------------------------------------------------------
    # Client Scope Assignments
    # -------------------------------------------------------------------------

    async def list_client_scopes(
        self, client_uuid: str, bucket: ScopeBucket
    ) -> list[dict[str, Any]]:
        """Get default or optional scopes assigned to a client."""
        bucket = ScopeBucket(bucket)
        return await self._get(f"/clients/{client_uuid}/{bucket.value}-client-scopes") or []

    async def add_client_scope(
        self, client_uuid: str, bucket: ScopeBucket, scope_id: str
    ) -> None:
        """Assign a realm client scope to a client."""
        bucket = ScopeBucket(bucket)
        logger.debug("Adding %s scope %s to client %s", bucket.value, scope_id, client_uuid)
        await self._put(f"/clients/{client_uuid}/{bucket.value}-client-scopes/{scope_id}")

    # -------------------------------------------------------------------------
    # Client Scopes
    # -------------------------------------------------------------------------

    async def list_realm_client_scopes(self) -> list[dict[str, Any]]:
        """List all client scopes in the realm."""
        return await self._get("/client-scopes") or []

    async def get_client_scope(self, scope_id: str) -> dict[str, Any]:
        """Get a client scope by ID, including its protocol mappers."""
        return await self._get(f"/client-scopes/{scope_id}")

    async def get_client_scope_by_name(self, name: str) -> dict[str, Any] | None:
        """Get a client scope by name."""
        for scope in await self.list_realm_client_scopes():
            if scope.get("name") == name:
                return scope
        return None

    async def create_client_scope(self, scope: dict[str, Any]) -> str | None:
        """Create a client scope, mappers included. Returns the new ID."""
        logger.debug("Creating client scope: %s", scope.get("name"))
        scope_id = await self._post("/client-scopes", json=scope)
        logger.info("Created client scope %s on %s", scope.get("name"), self._settings.label)
        return scope_id

    async def list_scope_mappers(self, scope_id: str) -> list[dict[str, Any]]:
        """List the protocol mappers of a client scope."""
        return await self._get(f"/client-scopes/{scope_id}/protocol-mappers/models") or []

    async def create_scope_mapper(self, scope_id: str, mapper: dict[str, Any]) -> None:
        """Add a protocol mapper to a client scope."""
        logger.debug("Adding mapper %s to scope %s", mapper.get("name"), scope_id)
        await self._post(f"/client-scopes/{scope_id}/protocol-mappers/models", json=mapper)

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    async def list_groups(self) -> list[dict[str, Any]]:
        """List top-level groups."""
        return await self._get("/groups", params={"briefRepresentation": "false"}) or []

    async def list_group_children(self, group_id: str) -> list[dict[str, Any]]:
        """List the direct sub-groups of a group."""
        return (
            await self._get(
                f"/groups/{group_id}/children", params={"briefRepresentation": "false"}
            )
            or []
        )

    async def get_group_by_path(self, path: str) -> dict[str, Any] | None:
        """Get a group by its slash-delimited path."""
        encoded = quote(path.strip("/"), safe="/")
        return await self._get_optional(f"/group-by-path/{encoded}")

    async def get_group_role_mappings(self, group_id: str) -> dict[str, Any]:
        """Get realm and client role mappings of a group."""
        return await self._get(f"/groups/{group_id}/role-mappings") or {}

    async def create_group(self, group: dict[str, Any]) -> str | None:
        """Create a top-level group. Returns the new ID."""
        logger.debug("Creating group: %s", group.get("name"))
        return await self._post("/groups", json=group)

    async def create_child_group(self, parent_id: str, group: dict[str, Any]) -> str | None:
        """Create a sub-group under ``parent_id``. Returns the new ID."""
        logger.debug("Creating group %s under %s", group.get("name"), parent_id)
        return await self._post(f"/groups/{parent_id}/children", json=group)

    async def add_group_realm_roles(
        self, group_id: str, roles: list[dict[str, Any]]
    ) -> None:
        """Map realm roles onto a group."""
        await self._post(f"/groups/{group_id}/role-mappings/realm", json=roles)

    async def add_group_client_roles(
        self, group_id: str, client_uuid: str, roles: list[dict[str, Any]]
    ) -> None:
        """Map client roles onto a group."""
        await self._post(f"/groups/{group_id}/role-mappings/clients/{client_uuid}", json=roles)

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def list_users(self) -> list[dict[str, Any]]:
        """List all users, page by page."""
        users: list[dict[str, Any]] = []
        first = 0
        while True:
            page = await self._get(
                "/users",
                params={
                    "first": first,
                    "max": self._page_size,
                    "briefRepresentation": "false",
                },
            ) or []
            users.extend(page)
            if len(page) < self._page_size:
                return users
            first += self._page_size

    async def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        """Get a user by exact username."""
        users = await self._get("/users", params={"username": username, "exact": "true"}) or []
        for user in users:
            if user.get("username") == username:
                return user
        return None

    async def get_user_role_mappings(self, user_id: str) -> dict[str, Any]:
        """Get realm and client role mappings of a user."""
        return await self._get(f"/users/{user_id}/role-mappings") or {}

    async def list_user_groups(self, user_id: str) -> list[dict[str, Any]]:
        """List the groups a user belongs to."""
        return await self._get(f"/users/{user_id}/groups") or []

    async def create_user(self, user: dict[str, Any]) -> str | None:
        """Create a user. Returns the new ID."""
        logger.debug("Creating user: %s", user.get("username"))
        return await self._post("/users", json=user)

    async def add_user_realm_roles(self, user_id: str, roles: list[dict[str, Any]]) -> None:
        """Map realm roles onto a user."""
        await self._post(f"/users/{user_id}/role-mappings/realm", json=roles)

    async def add_user_client_roles(
        self, user_id: str, client_uuid: str, roles: list[dict[str, Any]]
    ) -> None:
        """Map client roles onto a user."""
        await self._post(f"/users/{user_id}/role-mappings/clients/{client_uuid}", json=roles)

    async def add_user_to_group(self, user_id: str, group_id: str) -> None:
        """Add a user to a group."""
        await self._put(f"/users/{user_id}/groups/{group_id}")

    # -------------------------------------------------------------------------
    # Authorization services
    # -------------------------------------------------------------------------

    def _authz(self, client_uuid: str) -> str:
        return f"/clients/{client_uuid}/authz/resource-server"

    async def list_authz_scopes(self, client_uuid: str) -> list[dict[str, Any]]:
        """List authorization scopes defined on a resource server."""
        return await self._get(f"{self._authz(client_uuid)}/scope") or []

    async def list_resource_permissions(self, client_uuid: str) -> list[dict[str, Any]]:
        """List resource-based permissions."""
        return await self._get(f"{self._authz(client_uuid)}/permission/resource") or []

    async def list_scope_permissions(self, client_uuid: str) -> list[dict[str, Any]]:
        """List scope-based permissions."""
        return await self._get(f"{self._authz(client_uuid)}/permission/scope") or []

    async def list_permission_scopes(
        self, client_uuid: str, permission_id: str
    ) -> list[dict[str, Any]]:
        """List the authorization scopes a permission applies to."""
        return await self._get(f"{self._authz(client_uuid)}/policy/{permission_id}/scopes") or []

    async def list_policies_for_permission(
        self, client_uuid: str, permission_id: str
    ) -> list[dict[str, Any]]:
        """List the policies a permission delegates to."""
        return (
            await self._get(f"{self._authz(client_uuid)}/policy/{permission_id}/associatedPolicies")
            or []
        )

    async def get_policy(self, client_uuid: str, policy_id: str) -> dict[str, Any]:
        """Get a policy by ID."""
        return await self._get(f"{self._authz(client_uuid)}/policy/{policy_id}")

    # -------------------------------------------------------------------------
    # Typed collections
    # -------------------------------------------------------------------------

    async def fetch_roles(self) -> list[Role]:
        """Fetch all realm roles."""
        return [Role.model_validate(r) for r in await self.list_roles()]

    async def fetch_client_details(self) -> list[ClientDetail]:
        """Fetch every client with its scope assignments and roles."""
        details = []
        for rep in await self.list_clients():
            if not rep.get("id"):
                continue
            details.append(await self._client_detail(rep))
        return details

    async def fetch_client_detail(self, client_id: str) -> ClientDetail:
        """Fetch one client by clientId."""
        rep = await self.get_client_by_client_id(client_id)
        if rep is None:
            raise KeycloakNotFoundError(
                f"Client '{client_id}' not found in {self._settings.label}", status_code=404
            )
        return await self._client_detail(rep)

    async def _client_detail(self, rep: dict[str, Any]) -> ClientDetail:
        client_uuid = rep["id"]
        default = await self.list_client_scopes(client_uuid, ScopeBucket.DEFAULT)
        optional = await self.list_client_scopes(client_uuid, ScopeBucket.OPTIONAL)
        roles = await self.list_client_roles(client_uuid)
        return ClientDetail.model_validate(
            {
                **rep,
                "defaultClientScopes": _names(default),
                "optionalClientScopes": _names(optional),
                "clientRoles": _names(roles),
            }
        )

    async def fetch_group_details(self) -> list[GroupDetail]:
        """Fetch every group in the hierarchy, flattened in depth-first order."""
        flattened: list[GroupDetail] = []
        for rep in await self.list_groups():
            await self._group_detail(rep, flattened)
        return flattened

    async def fetch_group_detail(self, path: str) -> GroupDetail:
        """Fetch one group by path, without its descendants."""
        rep = await self.get_group_by_path(path)
        if rep is None:
            raise KeycloakNotFoundError(
                f"Group '{path}' not found in {self._settings.label}", status_code=404
            )
        return await self._group_detail(rep, None)

    async def _group_detail(
        self, rep: dict[str, Any], flattened: list[GroupDetail] | None
    ) -> GroupDetail:
        mappings = await self.get_group_role_mappings(rep["id"])
        detail = GroupDetail(
            id=rep["id"],
            name=rep.get("name", ""),
            path=rep.get("path") or f"/{rep.get('name', '')}",
            realm_roles=_names(mappings.get("realmMappings")),
            client_roles=_client_mapping_names(mappings.get("clientMappings")),
            attributes=coerce_attributes(rep.get("attributes")),
        )
        if flattened is None:
            return detail

        flattened.append(detail)
        children = rep.get("subGroups") or []
        if not children and rep.get("subGroupCount"):
            children = await self.list_group_children(rep["id"])
        for child in children:
            detail.sub_groups.append(await self._group_detail(child, flattened))
        return detail

    async def fetch_user_details(self) -> list[UserDetail]:
        """Fetch every user with role mappings and group memberships."""
        return [await self._user_detail(rep) for rep in await self.list_users()]

    async def fetch_user_detail(self, username: str) -> UserDetail:
        """Fetch one user by username."""
        rep = await self.get_user_by_username(username)
        if rep is None:
            raise KeycloakNotFoundError(
                f"User '{username}' not found in {self._settings.label}", status_code=404
            )
        return await self._user_detail(rep)

    async def _user_detail(self, rep: dict[str, Any]) -> UserDetail:
        user_id = rep["id"]
        mappings = await self.get_user_role_mappings(user_id)
        groups = await self.list_user_groups(user_id)
        return UserDetail(
            id=user_id,
            username=rep["username"],
            email=rep.get("email"),
            first_name=rep.get("firstName"),
            last_name=rep.get("lastName"),
            enabled=rep.get("enabled", True),
            realm_roles=_names(mappings.get("realmMappings")),
            client_roles=_client_mapping_names(mappings.get("clientMappings")),
            groups=_names(groups, key="path"),
            attributes=coerce_attributes(rep.get("attributes")),
            required_actions=list(rep.get("requiredActions") or []),
        )
