"""Diff aggregation across two realms.

A ``RealmDiffer`` holds one admin client per realm and compares full
collections of one entity kind. Records are emitted in three passes:

1. source entities absent from destination (``missing_in_destination``)
2. destination entities absent from source (``missing_in_source``)
3. entities on both sides whose comparator reports differences
   (``different_config``)

Either collection failing to load fails the whole diff.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from celine.realmsync.engine.compare import (
    Comparison,
    compare_clients,
    compare_groups,
    compare_roles,
    compare_users,
    mapper_names,
    mappers_differ,
)
from celine.realmsync.keycloak.client import KeycloakAdminClient
from celine.realmsync.models import (
    ClientDetail,
    ClientDiff,
    DiffRecord,
    DiffSide,
    DiffStatus,
    EntityKind,
    GroupDiff,
    RoleDiff,
    UserDiff,
)

logger = logging.getLogger(__name__)

SCOPE_MAPPERS_PREFIX = "scopeMappers_"

AsyncComparator = Callable[[Any, Any], Awaitable[Comparison]]


def _index(entities: Sequence[Any]) -> dict[str, Any]:
    """Key entities by identity, keeping the first of any duplicates."""
    indexed: dict[str, Any] = {}
    for entity in entities:
        indexed.setdefault(entity.identity, entity)
    return indexed


async def aggregate(
    source: Sequence[Any],
    destination: Sequence[Any],
    compare: AsyncComparator,
    record_type: type[DiffRecord] = DiffRecord,
) -> list[DiffRecord]:
    """Build diff records for two already-fetched collections."""
    source_index = _index(source)
    destination_index = _index(destination)
    records: list[DiffRecord] = []

    for identity, entity in source_index.items():
        if identity not in destination_index:
            records.append(
                record_type(
                    entity=entity,
                    status=DiffStatus.MISSING_IN_DESTINATION,
                    side=DiffSide.SOURCE,
                )
            )

    for identity, entity in destination_index.items():
        if identity not in source_index:
            records.append(
                record_type(
                    entity=entity,
                    status=DiffStatus.MISSING_IN_SOURCE,
                    side=DiffSide.DESTINATION,
                )
            )

    for identity, entity in source_index.items():
        other = destination_index.get(identity)
        if other is None:
            continue
        differences, source_values, destination_values = await compare(entity, other)
        if differences:
            records.append(
                record_type(
                    entity=entity,
                    status=DiffStatus.DIFFERENT_CONFIG,
                    side=DiffSide.BOTH,
                    differences=differences,
                    source_value=source_values,
                    destination_value=destination_values,
                )
            )

    return records


def _sync_comparator(func: Callable[[Any, Any], Comparison]) -> AsyncComparator:
    async def compare(source: Any, destination: Any) -> Comparison:
        return func(source, destination)

    return compare


class _ScopeMapperLookup:
    """Per-realm memo of client scope ids and mapper lists for one diff call."""

    def __init__(self, client: KeycloakAdminClient):
        self._client = client
        self._scope_ids: dict[str, str] | None = None
        self._mappers: dict[str, list[dict[str, Any]]] = {}

    async def mappers(self, scope_name: str) -> list[dict[str, Any]] | None:
        if self._scope_ids is None:
            scopes = await self._client.list_realm_client_scopes()
            self._scope_ids = {s["name"]: s["id"] for s in scopes if s.get("name")}
        scope_id = self._scope_ids.get(scope_name)
        if scope_id is None:
            return None
        if scope_name not in self._mappers:
            self._mappers[scope_name] = await self._client.list_scope_mappers(scope_id)
        return self._mappers[scope_name]


class RealmDiffer:
    """Compares one entity kind between a source and a destination realm."""

    def __init__(self, source: KeycloakAdminClient, destination: KeycloakAdminClient):
        self.source = source
        self.destination = destination

    async def diff(self, kind: EntityKind | str) -> list[DiffRecord]:
        """Diff the given entity kind."""
        kind = EntityKind(kind)
        if kind is EntityKind.ROLE:
            return await self.diff_roles()
        if kind is EntityKind.CLIENT:
            return await self.diff_clients()
        if kind is EntityKind.GROUP:
            return await self.diff_groups()
        return await self.diff_users()

    async def diff_roles(self) -> list[RoleDiff]:
        source = await self.source.fetch_roles()
        destination = await self.destination.fetch_roles()
        return await aggregate(source, destination, _sync_comparator(compare_roles), RoleDiff)

    async def diff_groups(self) -> list[GroupDiff]:
        source = await self.source.fetch_group_details()
        destination = await self.destination.fetch_group_details()
        return await aggregate(source, destination, _sync_comparator(compare_groups), GroupDiff)

    async def diff_users(self) -> list[UserDiff]:
        source = await self.source.fetch_user_details()
        destination = await self.destination.fetch_user_details()
        return await aggregate(source, destination, _sync_comparator(compare_users), UserDiff)

    async def diff_clients(self) -> list[ClientDiff]:
        """Diff clients, including protocol mapper drift in shared scopes."""
        source = await self.source.fetch_client_details()
        destination = await self.destination.fetch_client_details()

        source_scopes = _ScopeMapperLookup(self.source)
        destination_scopes = _ScopeMapperLookup(self.destination)

        async def compare(src: ClientDetail, dst: ClientDetail) -> Comparison:
            differences, source_values, destination_values = compare_clients(src, dst)
            destination_names = set(dst.all_client_scopes)
            shared = [s for s in src.all_client_scopes if s in destination_names]
            for scope_name in shared:
                source_mappers = await source_scopes.mappers(scope_name)
                destination_mappers = await destination_scopes.mappers(scope_name)
                if source_mappers is None or destination_mappers is None:
                    logger.debug("Scope %s not listed in both realms, skipping", scope_name)
                    continue
                if mappers_differ(source_mappers, destination_mappers):
                    key = f"{SCOPE_MAPPERS_PREFIX}{scope_name}"
                    differences.append(key)
                    source_values[key] = mapper_names(source_mappers)
                    destination_values[key] = mapper_names(destination_mappers)
            return differences, source_values, destination_values

        return await aggregate(source, destination, compare, ClientDiff)
