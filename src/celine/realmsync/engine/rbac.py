"""RBAC tree construction and statistics.

Expands a role, user or client into a tree of authorization graph nodes:

    role -> composite -> ... -> client-role -> scope -> permission -> policy

Every expansion creates fresh nodes, so a role reachable through two paths
appears twice. Composite chains are cut at ``MAX_RBAC_DEPTH``: a member below
that depth is replaced by an empty node, which also stops cycles.

Sub-resources that cannot be read (missing, forbidden) contribute no
children. Authentication and connection failures abort the build.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from celine.realmsync.keycloak.client import (
    KeycloakAdminClient,
    KeycloakAuthError,
    KeycloakConnectionError,
    KeycloakError,
    KeycloakNotFoundError,
)
from celine.realmsync.models import (
    EntityKind,
    NodeType,
    RBACAnalysis,
    RBACNode,
    RBACStats,
)

logger = logging.getLogger(__name__)

MAX_RBAC_DEPTH = 10

T = TypeVar("T")

_STAT_FIELDS = {
    NodeType.ROLE: "roles",
    NodeType.COMPOSITE: "composites",
    NodeType.CLIENT_ROLE: "client_roles",
    NodeType.SCOPE: "scopes",
    NodeType.PERMISSION: "permissions",
    NodeType.POLICY: "policies",
}


def compute_stats(root: RBACNode) -> RBACStats:
    """Count the nodes of a tree by type."""
    stats = RBACStats()
    for node in root.walk():
        name = _STAT_FIELDS.get(node.type)
        if name:
            setattr(stats, name, getattr(stats, name) + 1)
    return stats


def _scope_name(scope: Any) -> str | None:
    if isinstance(scope, dict):
        return scope.get("name")
    if isinstance(scope, str):
        return scope
    return None


class RBACTreeBuilder:
    """Builds RBAC trees from one realm."""

    def __init__(self, client: KeycloakAdminClient):
        self.client = client

    async def build(self, kind: EntityKind | str, identity: str) -> RBACNode:
        """Build the tree rooted at a role name, username or clientId."""
        kind = EntityKind(kind)
        if kind is EntityKind.ROLE:
            return await self.build_role_tree(identity)
        if kind is EntityKind.USER:
            return await self.build_user_tree(identity)
        if kind is EntityKind.CLIENT:
            return await self.build_client_tree(identity)
        raise ValueError(f"RBAC trees are not available for {kind.value}")

    async def analyze(self, kind: EntityKind | str, identity: str) -> RBACAnalysis:
        """Build a tree and its statistics."""
        root = await self.build(kind, identity)
        return RBACAnalysis(root=root, statistics=compute_stats(root))

    async def _optional(self, call: Awaitable[T], default: T) -> T:
        """Await a sub-resource lookup, treating API errors as empty."""
        try:
            return await call
        except (KeycloakAuthError, KeycloakConnectionError):
            raise
        except KeycloakError as exc:
            logger.debug("Sub-resource unavailable: %s", exc)
            return default

    # -------------------------------------------------------------------------
    # Roots
    # -------------------------------------------------------------------------

    async def build_role_tree(self, name: str) -> RBACNode:
        """Expand a realm role."""
        role = await self.client.get_role(name)
        return await self._role_node(role, depth=0)

    async def build_user_tree(self, username: str) -> RBACNode:
        """Expand the realm and client role mappings of a user."""
        user = await self.client.get_user_by_username(username)
        if user is None:
            raise KeycloakNotFoundError(
                f"User '{username}' not found in {self.client.settings.label}", status_code=404
            )

        node = RBACNode(
            id=f"user-{username}",
            name=username,
            type=NodeType.USER,
            description=f"User: {username}",
        )
        mappings = await self._optional(self.client.get_user_role_mappings(user["id"]), {})

        for mapped in mappings.get("realmMappings") or []:
            role = await self._optional(self.client.get_role(mapped["name"]), None)
            if role is not None:
                node.children.append(await self._role_node(role, depth=0))

        for client_key, entry in (mappings.get("clientMappings") or {}).items():
            client_id = entry.get("client") or client_key
            client_uuid = entry.get("id")
            client_node = self._client_node(client_id)
            for mapped in entry.get("mappings") or []:
                role = await self._optional(
                    self.client.get_client_role(client_uuid, mapped["name"]), None
                )
                if role is not None:
                    client_node.children.append(
                        await self._client_role_node(role, client_uuid, depth=0)
                    )
            node.children.append(client_node)

        return node

    async def build_client_tree(self, client_id: str) -> RBACNode:
        """Expand a client's roles and its authorization graph."""
        client = await self.client.get_client_by_client_id(client_id)
        if client is None:
            raise KeycloakNotFoundError(
                f"Client '{client_id}' not found in {self.client.settings.label}", status_code=404
            )
        client_uuid = client["id"]
        node = self._client_node(client_id)

        for role in await self._optional(self.client.list_client_roles(client_uuid), []):
            node.children.append(await self._client_role_node(role, client_uuid, depth=0))

        node.children.extend(await self._authz_nodes(client_uuid))
        return node

    # -------------------------------------------------------------------------
    # Expansion
    # -------------------------------------------------------------------------

    def _client_node(self, client_id: str) -> RBACNode:
        return RBACNode(
            id=f"client-{client_id}",
            name=client_id,
            type=NodeType.CLIENT,
            description=f"Client: {client_id}",
        )

    async def _role_node(self, role: dict[str, Any], depth: int) -> RBACNode:
        node = RBACNode(
            id=f"role-{role['name']}",
            name=role["name"],
            type=NodeType.ROLE,
            description=role.get("description") or "",
        )
        node.children.extend(await self._composite_children(role, depth))
        return node

    async def _composite_node(self, role: dict[str, Any], depth: int) -> RBACNode:
        if depth > MAX_RBAC_DEPTH:
            return RBACNode.empty()
        node = RBACNode(
            id=f"composite-{role['name']}",
            name=role["name"],
            type=NodeType.COMPOSITE,
            description=f"Composite: {role['name']}",
        )
        node.children.extend(await self._composite_children(role, depth))
        return node

    async def _composite_children(self, role: dict[str, Any], depth: int) -> list[RBACNode]:
        """Realm members become composite nodes, client roles client-role nodes."""
        if not role.get("composite"):
            return []
        members = await self._optional(self.client.list_role_composites(role["name"]), [])
        children = []
        for member in members:
            if member.get("clientRole"):
                children.append(
                    await self._client_role_node(member, member.get("containerId"), depth + 1)
                )
            else:
                children.append(await self._composite_node(member, depth + 1))
        return children

    async def _client_role_node(
        self, role: dict[str, Any], client_uuid: str | None, depth: int
    ) -> RBACNode:
        name = role["name"]
        node = RBACNode(
            id=f"client-role-{name}",
            name=name,
            type=NodeType.CLIENT_ROLE,
            description=f"Client Role: {name}",
        )
        client_uuid = role.get("containerId") or client_uuid
        if client_uuid:
            node.children.extend(await self._authz_nodes(client_uuid))
        return node

    async def _authz_nodes(self, client_uuid: str) -> list[RBACNode]:
        """Scope nodes with their permissions, then scope-less permissions.

        Scopes without permissions and scope-less permissions without
        policies are left out.
        """
        scopes = await self._optional(self.client.list_authz_scopes(client_uuid), [])
        permissions = await self._permissions(client_uuid)
        nodes = []

        for scope in scopes:
            scope_name = scope.get("name")
            if not scope_name:
                continue
            scope_node = RBACNode(
                id=f"scope-{scope_name}",
                name=scope_name,
                type=NodeType.SCOPE,
                description=f"Scope: {scope_name}",
            )
            for permission, scope_names in permissions:
                if scope_name in scope_names:
                    scope_node.children.append(
                        await self._permission_node(client_uuid, permission)
                    )
            if scope_node.children:
                nodes.append(scope_node)

        for permission, scope_names in permissions:
            if scope_names:
                continue
            permission_node = await self._permission_node(client_uuid, permission)
            if permission_node.children:
                nodes.append(permission_node)

        return nodes

    async def _permissions(self, client_uuid: str) -> list[tuple[dict[str, Any], set[str]]]:
        """Resource and scope permissions of a client with their scope names."""
        permissions = [
            *await self._optional(self.client.list_resource_permissions(client_uuid), []),
            *await self._optional(self.client.list_scope_permissions(client_uuid), []),
        ]
        resolved = []
        for permission in permissions:
            inline = permission.get("scopes")
            if inline is None and permission.get("id"):
                inline = await self._optional(
                    self.client.list_permission_scopes(client_uuid, permission["id"]), []
                )
            names = {n for n in (_scope_name(s) for s in inline or []) if n}
            resolved.append((permission, names))
        return resolved

    async def _permission_node(self, client_uuid: str, permission: dict[str, Any]) -> RBACNode:
        name = permission.get("name", "")
        node = RBACNode(
            id=f"permission-{name}",
            name=name,
            type=NodeType.PERMISSION,
            description=f"Permission: {name}",
        )
        for policy in await self._policies(client_uuid, permission):
            policy_name = policy.get("name", "")
            node.children.append(
                RBACNode(
                    id=f"policy-{policy_name}",
                    name=policy_name,
                    type=NodeType.POLICY,
                    description=f"Policy: {policy_name}",
                    policy_type=policy.get("type"),
                )
            )
        return node

    async def _policies(
        self, client_uuid: str, permission: dict[str, Any]
    ) -> list[dict[str, Any]]:
        inline = permission.get("policies")
        if inline is not None:
            policies = []
            for policy_id in inline:
                if not isinstance(policy_id, str):
                    continue
                policy = await self._optional(self.client.get_policy(client_uuid, policy_id), None)
                if policy:
                    policies.append(policy)
            return policies
        if not permission.get("id"):
            return []
        return await self._optional(
            self.client.list_policies_for_permission(client_uuid, permission["id"]), []
        )
