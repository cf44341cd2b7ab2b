"""Single-entity synchronization from a source realm to a destination realm.

Only the primary step of each sync is fatal: fetching the entity from the
source and creating or updating it in the destination. Every dependent step
(client roles, client scopes, protocol mappers, role and group assignments)
is best-effort: a failure is logged, recorded as a ``SyncWarning`` on the
returned ``SyncResult`` and the sync carries on.

Sync never deletes anything and never modifies an existing protocol mapper;
a same-named mapper with a different definition is reported as skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from celine.realmsync.engine.compare import mapper_signature
from celine.realmsync.keycloak.client import (
    KeycloakAdminClient,
    KeycloakAuthError,
    KeycloakConflictError,
    KeycloakConnectionError,
    KeycloakError,
    KeycloakNotFoundError,
)
from celine.realmsync.models import EntityKind, ScopeBucket

logger = logging.getLogger(__name__)

_FAILED = object()


class CallPolicy(str, Enum):
    """How a failed remote call affects the sync."""

    FATAL = "fatal"
    BEST_EFFORT = "best_effort"


@dataclass
class SyncWarning:
    """A dependent-resource step that failed and was skipped."""

    step: str
    target: str
    message: str
    status_code: int | None = None

    def __str__(self) -> str:
        return f"{self.step} {self.target}: {self.message}"


@dataclass
class SyncResult:
    """Outcome of syncing one entity.

    ``action`` is ``created``, ``updated`` or ``exists`` for the primary
    entity. A result with warnings is a partial sync: the entity was
    replicated but some dependent resources were not.
    """

    kind: EntityKind
    identity: str
    action: str = ""
    created: list[str] = field(default_factory=list)
    assigned: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[SyncWarning] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """Check if any dependent step was skipped because of an error."""
        return len(self.warnings) > 0

    def summary(self) -> str:
        """Get a human-readable summary of the result."""
        lines = [f"{self.kind.value} '{self.identity}': {self.action or 'no changes'}"]

        if self.created:
            lines.append(f"Created {len(self.created)} dependent resources")
            for item in self.created:
                lines.append(f"  + {item}")
        if self.assigned:
            lines.append(f"Assigned {len(self.assigned)}")
            for item in self.assigned:
                lines.append(f"  + {item}")
        if self.skipped:
            lines.append(f"Skipped {len(self.skipped)} existing mappers with different config")
            for item in self.skipped:
                lines.append(f"  ~ {item}")
        if self.warnings:
            lines.append(f"Warnings: {len(self.warnings)}")
            for warning in self.warnings:
                lines.append(f"  ! {warning}")

        return "\n".join(lines)


def export_representation(rep: dict[str, Any]) -> dict[str, Any]:
    """Copy a representation without realm-local ids, mappers included."""
    exported = {key: value for key, value in rep.items() if key != "id"}
    if "protocolMappers" in exported:
        exported["protocolMappers"] = [
            {key: value for key, value in mapper.items() if key != "id"}
            for mapper in exported["protocolMappers"] or []
        ]
    return exported


def _role_payload(rep: dict[str, Any]) -> dict[str, Any]:
    # Composites are not replicated.
    return {
        "name": rep["name"],
        "description": rep.get("description"),
        "attributes": rep.get("attributes") or {},
    }


class SyncOrchestrator:
    """Replicates single entities from ``source`` into ``destination``."""

    def __init__(self, source: KeycloakAdminClient, destination: KeycloakAdminClient):
        self.source = source
        self.destination = destination

    async def sync(self, kind: EntityKind | str, identity: str) -> SyncResult:
        """Sync one entity identified by name, clientId, path or username."""
        kind = EntityKind(kind)
        if kind is EntityKind.ROLE:
            return await self.sync_role(identity)
        if kind is EntityKind.CLIENT:
            return await self.sync_client(identity)
        if kind is EntityKind.GROUP:
            return await self.sync_group(identity)
        return await self.sync_user(identity)

    # -------------------------------------------------------------------------
    # Call policy
    # -------------------------------------------------------------------------

    async def _call(
        self,
        result: SyncResult,
        policy: CallPolicy,
        step: str,
        target: str,
        call: Awaitable[Any],
    ) -> Any:
        """Await a remote call under the given policy.

        Fatal calls propagate every error. Best-effort calls record a warning
        and return ``_FAILED``, except for authentication and connection
        errors, which always propagate. A conflict on a best-effort create
        means the resource is already there and is not a warning.
        """
        try:
            return await call
        except (KeycloakAuthError, KeycloakConnectionError):
            raise
        except KeycloakConflictError:
            if policy is CallPolicy.FATAL:
                raise
            logger.debug("%s %s: already exists", step, target)
            return _FAILED
        except KeycloakError as exc:
            if policy is CallPolicy.FATAL:
                raise
            self._warn(result, step, target, str(exc), exc.status_code)
            return _FAILED

    def _warn(
        self,
        result: SyncResult,
        step: str,
        target: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        logger.warning("Skipping %s %s: %s", step, target, message)
        result.warnings.append(SyncWarning(step, target, message, status_code))

    async def _fatal(self, result: SyncResult, step: str, target: str, call: Awaitable[Any]) -> Any:
        return await self._call(result, CallPolicy.FATAL, step, target, call)

    async def _best_effort(
        self, result: SyncResult, step: str, target: str, call: Awaitable[Any]
    ) -> Any:
        return await self._call(result, CallPolicy.BEST_EFFORT, step, target, call)

    # -------------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------------

    async def sync_role(self, name: str) -> SyncResult:
        """Create the realm role in destination, or leave it if present."""
        result = SyncResult(kind=EntityKind.ROLE, identity=name)
        rep = await self._fatal(result, "fetch role", name, self.source.get_role(name))
        try:
            await self._fatal(
                result, "create role", name, self.destination.create_role(_role_payload(rep))
            )
            result.action = "created"
        except KeycloakConflictError:
            logger.info("Role %s already exists in %s", name, self.destination.settings.label)
            result.action = "exists"
        return result

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def sync_user(self, username: str) -> SyncResult:
        """Create a missing user, then assign its roles and groups."""
        result = SyncResult(kind=EntityKind.USER, identity=username)
        user = await self._fatal(
            result, "fetch user", username, self.source.fetch_user_detail(username)
        )

        existing = await self._fatal(
            result, "lookup user", username, self.destination.get_user_by_username(username)
        )
        if existing is not None:
            result.action = "exists"
            return result

        payload = {
            "username": user.username,
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "enabled": user.enabled,
            "attributes": user.attributes,
            "requiredActions": user.required_actions,
        }
        try:
            user_id = await self._fatal(
                result, "create user", username, self.destination.create_user(payload)
            )
        except KeycloakConflictError:
            result.action = "exists"
            return result
        result.action = "created"

        if user_id is None:
            created = await self._fatal(
                result, "lookup user", username, self.destination.get_user_by_username(username)
            )
            user_id = created["id"]

        await self._assign_realm_roles(
            result,
            user.realm_roles,
            lambda reps: self.destination.add_user_realm_roles(user_id, reps),
        )
        await self._assign_client_roles(
            result,
            user.client_roles,
            lambda uuid, reps: self.destination.add_user_client_roles(user_id, uuid, reps),
        )

        for path in user.groups:
            group = await self._best_effort(
                result, "lookup group", path, self.destination.get_group_by_path(path)
            )
            if group is _FAILED:
                continue
            if group is None:
                self._warn(result, "add to group", path, "group not found in destination", 404)
                continue
            done = await self._best_effort(
                result, "add to group", path, self.destination.add_user_to_group(user_id, group["id"])
            )
            if done is not _FAILED:
                result.assigned.append(f"group:{path}")

        logger.info("Synced user %s (%s)", username, result.action)
        return result

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    async def sync_group(self, path: str) -> SyncResult:
        """Create a missing group under its parent, then assign its roles.

        Sub-groups are not replicated.
        """
        result = SyncResult(kind=EntityKind.GROUP, identity=path)
        group = await self._fatal(result, "fetch group", path, self.source.fetch_group_detail(path))

        existing = await self._fatal(
            result, "lookup group", path, self.destination.get_group_by_path(group.path)
        )
        if existing is not None:
            result.action = "exists"
            return result

        payload = {"name": group.name, "attributes": group.attributes}
        parent_path = group.parent_path
        try:
            if parent_path:
                parent = await self._fatal(
                    result,
                    "lookup parent group",
                    parent_path,
                    self.destination.get_group_by_path(parent_path),
                )
                if parent is None:
                    raise KeycloakNotFoundError(
                        f"Parent group '{parent_path}' not found in "
                        f"{self.destination.settings.label}",
                        status_code=404,
                    )
                group_id = await self._fatal(
                    result,
                    "create group",
                    path,
                    self.destination.create_child_group(parent["id"], payload),
                )
            else:
                group_id = await self._fatal(
                    result, "create group", path, self.destination.create_group(payload)
                )
        except KeycloakConflictError:
            result.action = "exists"
            return result
        result.action = "created"

        if group_id is None:
            created = await self._fatal(
                result, "lookup group", path, self.destination.get_group_by_path(group.path)
            )
            if created is None:
                raise KeycloakNotFoundError(
                    f"Group '{path}' missing after creation", status_code=404
                )
            group_id = created["id"]

        await self._assign_realm_roles(
            result,
            group.realm_roles,
            lambda reps: self.destination.add_group_realm_roles(group_id, reps),
        )
        await self._assign_client_roles(
            result,
            group.client_roles,
            lambda uuid, reps: self.destination.add_group_client_roles(group_id, uuid, reps),
        )

        logger.info("Synced group %s (%s)", path, result.action)
        return result

    # -------------------------------------------------------------------------
    # Role assignments
    # -------------------------------------------------------------------------

    async def _assign_realm_roles(
        self,
        result: SyncResult,
        names: list[str],
        assign: Callable[[list[dict[str, Any]]], Awaitable[None]],
    ) -> None:
        reps = []
        for name in names:
            rep = await self._best_effort(
                result, "resolve realm role", name, self.destination.get_role(name)
            )
            if rep is not _FAILED:
                reps.append({"id": rep["id"], "name": rep["name"]})
        if not reps:
            return
        target = ", ".join(r["name"] for r in reps)
        if await self._best_effort(result, "assign realm roles", target, assign(reps)) is not _FAILED:
            result.assigned.extend(f"realm-role:{r['name']}" for r in reps)

    async def _assign_client_roles(
        self,
        result: SyncResult,
        mappings: dict[str, list[str]],
        assign: Callable[[str, list[dict[str, Any]]], Awaitable[None]],
    ) -> None:
        for client_id, names in mappings.items():
            client = await self._best_effort(
                result,
                "resolve client",
                client_id,
                self.destination.get_client_by_client_id(client_id),
            )
            if client is _FAILED:
                continue
            if client is None:
                self._warn(result, "resolve client", client_id, "client not found in destination", 404)
                continue

            reps = []
            for name in names:
                rep = await self._best_effort(
                    result,
                    "resolve client role",
                    f"{client_id}/{name}",
                    self.destination.get_client_role(client["id"], name),
                )
                if rep is not _FAILED:
                    reps.append({"id": rep["id"], "name": rep["name"]})
            if not reps:
                continue

            target = f"{client_id}: " + ", ".join(r["name"] for r in reps)
            done = await self._best_effort(
                result, "assign client roles", target, assign(client["id"], reps)
            )
            if done is not _FAILED:
                result.assigned.extend(f"client-role:{client_id}/{r['name']}" for r in reps)

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    async def sync_client(self, client_id: str) -> SyncResult:
        """Upsert a client, then its roles, scopes, mappers and scope assignments."""
        result = SyncResult(kind=EntityKind.CLIENT, identity=client_id)

        source_rep = await self._fatal(
            result, "fetch client", client_id, self.source.get_client_by_client_id(client_id)
        )
        if source_rep is None:
            raise KeycloakNotFoundError(
                f"Client '{client_id}' not found in {self.source.settings.label}",
                status_code=404,
            )
        source_uuid = source_rep["id"]
        destination_uuid = await self._upsert_client(result, client_id, source_rep)

        await self._sync_client_roles(result, source_uuid, destination_uuid)
        assignments = await self._source_scope_assignments(result, source_uuid)
        scope_ids = await self._sync_client_scopes(result, assignments)
        await self._apply_scope_assignments(result, destination_uuid, assignments, scope_ids)

        logger.info(
            "Synced client %s (%s, %d warnings)", client_id, result.action, len(result.warnings)
        )
        return result

    async def _upsert_client(
        self, result: SyncResult, client_id: str, source_rep: dict[str, Any]
    ) -> str:
        """Update the destination client in place, or create it.

        Returns the destination client UUID.
        """
        payload = export_representation(source_rep)
        existing = await self._lookup_client(result, client_id)

        if existing is None:
            try:
                created_id = await self._fatal(
                    result, "create client", client_id, self.destination.create_client(payload)
                )
                result.action = "created"
                if created_id:
                    return created_id
                existing = await self._lookup_client(result, client_id)
                if existing is None:
                    raise KeycloakNotFoundError(
                        f"Client '{client_id}' missing after creation", status_code=404
                    )
                return existing["id"]
            except KeycloakConflictError:
                logger.info("Client %s appeared in destination, updating instead", client_id)
                existing = await self._lookup_client(result, client_id)
                if existing is None:
                    raise

        await self._fatal(
            result, "update client", client_id, self.destination.update_client(existing["id"], payload)
        )
        result.action = "updated"
        return existing["id"]

    async def _lookup_client(self, result: SyncResult, client_id: str) -> dict[str, Any] | None:
        return await self._fatal(
            result, "lookup client", client_id, self.destination.get_client_by_client_id(client_id)
        )

    async def _sync_client_roles(
        self, result: SyncResult, source_uuid: str, destination_uuid: str
    ) -> None:
        """Create client roles present in source but not in destination."""
        source_roles = await self._best_effort(
            result, "list client roles", "source", self.source.list_client_roles(source_uuid)
        )
        destination_roles = await self._best_effort(
            result,
            "list client roles",
            "destination",
            self.destination.list_client_roles(destination_uuid),
        )
        if source_roles is _FAILED or destination_roles is _FAILED:
            return

        present = {r["name"] for r in destination_roles}
        for role in source_roles:
            name = role["name"]
            if name in present:
                continue
            full = await self._best_effort(
                result, "fetch client role", name, self.source.get_client_role(source_uuid, name)
            )
            if full is _FAILED:
                continue
            done = await self._best_effort(
                result,
                "create client role",
                name,
                self.destination.create_client_role(destination_uuid, _role_payload(full)),
            )
            if done is not _FAILED:
                result.created.append(f"client-role:{name}")

    async def _source_scope_assignments(
        self, result: SyncResult, source_uuid: str
    ) -> dict[ScopeBucket, list[dict[str, Any]]]:
        """Default and optional scopes assigned to the source client."""
        assignments: dict[ScopeBucket, list[dict[str, Any]]] = {}
        for bucket in ScopeBucket:
            scopes = await self._best_effort(
                result,
                f"list {bucket.value} client scopes",
                "source",
                self.source.list_client_scopes(source_uuid, bucket),
            )
            assignments[bucket] = [] if scopes is _FAILED else scopes
        return assignments

    async def _sync_client_scopes(
        self,
        result: SyncResult,
        assignments: dict[ScopeBucket, list[dict[str, Any]]],
    ) -> dict[str, str]:
        """Make every referenced scope exist in destination with its mappers.

        Returns destination scope ids by name.
        """
        realm_scopes = await self._best_effort(
            result, "list client scopes", "destination", self.destination.list_realm_client_scopes()
        )
        if realm_scopes is _FAILED:
            return {}
        scope_ids = {s["name"]: s["id"] for s in realm_scopes if s.get("name")}

        referenced: dict[str, dict[str, Any]] = {}
        for scopes in assignments.values():
            for scope in scopes:
                referenced.setdefault(scope["name"], scope)

        for name, scope in referenced.items():
            source_mappers = await self._best_effort(
                result, "list scope mappers", name, self.source.list_scope_mappers(scope["id"])
            )
            if source_mappers is _FAILED:
                continue

            if name not in scope_ids:
                new_id = await self._create_scope(result, name, scope["id"], source_mappers)
                if new_id is not None:
                    scope_ids[name] = new_id
            else:
                await self._add_missing_mappers(result, name, scope_ids[name], source_mappers)

        return scope_ids

    async def _create_scope(
        self,
        result: SyncResult,
        name: str,
        source_scope_id: str,
        source_mappers: list[dict[str, Any]],
    ) -> str | None:
        full = await self._best_effort(
            result, "fetch client scope", name, self.source.get_client_scope(source_scope_id)
        )
        if full is _FAILED:
            return None
        payload = export_representation({**full, "protocolMappers": source_mappers})
        new_id = await self._best_effort(
            result, "create client scope", name, self.destination.create_client_scope(payload)
        )
        if new_id is _FAILED:
            return None
        result.created.append(f"client-scope:{name}")
        if new_id is None:
            created = await self._best_effort(
                result, "lookup client scope", name, self.destination.get_client_scope_by_name(name)
            )
            if created is _FAILED or created is None:
                return None
            new_id = created["id"]
        return new_id

    async def _add_missing_mappers(
        self,
        result: SyncResult,
        scope_name: str,
        scope_id: str,
        source_mappers: list[dict[str, Any]],
    ) -> None:
        """Add source mappers absent in destination. Existing ones are never changed."""
        existing = await self._best_effort(
            result,
            "list scope mappers",
            f"{scope_name} (destination)",
            self.destination.list_scope_mappers(scope_id),
        )
        if existing is _FAILED:
            return
        by_name = {m["name"]: m for m in existing if m.get("name")}

        for mapper in source_mappers:
            mapper_name = mapper.get("name")
            if not mapper_name:
                continue
            target = f"{scope_name}/{mapper_name}"
            current = by_name.get(mapper_name)
            if current is not None:
                if mapper_signature(current) != mapper_signature(mapper):
                    logger.warning("Mapper %s differs in destination, leaving it unchanged", target)
                    result.skipped.append(f"mapper:{target}")
                continue
            done = await self._best_effort(
                result,
                "create mapper",
                target,
                self.destination.create_scope_mapper(scope_id, export_representation(mapper)),
            )
            if done is not _FAILED:
                result.created.append(f"mapper:{target}")

    async def _apply_scope_assignments(
        self,
        result: SyncResult,
        destination_uuid: str,
        assignments: dict[ScopeBucket, list[dict[str, Any]]],
        scope_ids: dict[str, str],
    ) -> None:
        """Re-apply the source default/optional scope lists to the destination client."""
        for bucket, scopes in assignments.items():
            for scope in scopes:
                name = scope["name"]
                scope_id = scope_ids.get(name)
                if scope_id is None:
                    self._warn(
                        result,
                        f"assign {bucket.value} scope",
                        name,
                        "scope not available in destination",
                    )
                    continue
                await self._best_effort(
                    result,
                    f"assign {bucket.value} scope",
                    name,
                    self.destination.add_client_scope(destination_uuid, bucket, scope_id),
                )
