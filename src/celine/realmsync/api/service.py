"""Reconciliation service API layer.

This module centralizes:
- admin client construction per realm handle
- diff, sync and RBAC analysis calls
- one structured log event per operation
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable
from typing import Any

import structlog

from celine.realmsync.config import settings
from celine.realmsync.engine import (
    RBACTreeBuilder,
    RealmDiffer,
    SyncOrchestrator,
    SyncResult,
    compute_stats,
)
from celine.realmsync.keycloak import KeycloakAdminClient, RealmSettings
from celine.realmsync.models import (
    DiffRecord,
    EntityKind,
    RBACAnalysis,
    RBACNode,
    RBACStats,
)

ClientFactory = Callable[[RealmSettings], KeycloakAdminClient]


def default_client_factory(realm: RealmSettings) -> KeycloakAdminClient:
    return KeycloakAdminClient(realm, page_size=settings.page_size)


class RealmSyncAPI:
    def __init__(self, *, client_factory: ClientFactory | None = None, logger: Any = None):
        self._client_factory = client_factory or default_client_factory
        self._logger = logger or structlog.get_logger("realmsync")

    async def diff(
        self,
        kind: EntityKind | str,
        source: RealmSettings,
        destination: RealmSettings,
    ) -> list[DiffRecord]:
        """Compare one entity kind between two realms."""
        kind = EntityKind(kind)
        start = time.perf_counter()
        context = {
            "kind": kind.value,
            "source": source.label,
            "destination": destination.label,
        }
        try:
            async with self._client_factory(source) as src, self._client_factory(destination) as dst:
                records = await RealmDiffer(src, dst).diff(kind)
        except Exception as e:
            self._log_error("realm_diff", e, start, **context)
            raise

        statuses = Counter(r.status.value for r in records)
        self._logger.info(
            event="realm_diff",
            records=len(records),
            missing_in_destination=statuses["missing_in_destination"],
            missing_in_source=statuses["missing_in_source"],
            different_config=statuses["different_config"],
            latency_ms=self._elapsed(start),
            **context,
        )
        return records

    async def sync(
        self,
        kind: EntityKind | str,
        identity: str,
        source: RealmSettings,
        destination: RealmSettings,
    ) -> SyncResult:
        """Replicate one entity from source into destination."""
        kind = EntityKind(kind)
        start = time.perf_counter()
        context = {
            "kind": kind.value,
            "identity": identity,
            "source": source.label,
            "destination": destination.label,
        }
        try:
            async with self._client_factory(source) as src, self._client_factory(destination) as dst:
                result = await SyncOrchestrator(src, dst).sync(kind, identity)
        except Exception as e:
            self._log_error("realm_sync", e, start, **context)
            raise

        self._logger.info(
            event="realm_sync",
            action=result.action,
            created=len(result.created),
            assigned=len(result.assigned),
            skipped=len(result.skipped),
            warnings=len(result.warnings),
            partial=result.partial,
            latency_ms=self._elapsed(start),
            **context,
        )
        return result

    async def build_rbac_tree(
        self, kind: EntityKind | str, identity: str, realm: RealmSettings
    ) -> RBACNode:
        """Build the RBAC tree of a role, user or client."""
        return (await self.analyze(kind, identity, realm)).root

    def stats(self, tree: RBACNode) -> RBACStats:
        """Count tree nodes by type."""
        return compute_stats(tree)

    async def analyze(
        self, kind: EntityKind | str, identity: str, realm: RealmSettings
    ) -> RBACAnalysis:
        """Build an RBAC tree together with its statistics."""
        kind = EntityKind(kind)
        start = time.perf_counter()
        context = {"kind": kind.value, "identity": identity, "realm": realm.label}
        try:
            async with self._client_factory(realm) as client:
                analysis = await RBACTreeBuilder(client).analyze(kind, identity)
        except Exception as e:
            self._log_error("rbac_analysis", e, start, **context)
            raise

        self._logger.info(
            event="rbac_analysis",
            latency_ms=self._elapsed(start),
            **analysis.statistics.model_dump(),
            **context,
        )
        return analysis

    def _log_error(self, event: str, error: Exception, start: float, **context: Any) -> None:
        self._logger.error(
            event=f"{event}_error",
            error=str(error),
            error_type=type(error).__name__,
            latency_ms=self._elapsed(start),
            **context,
        )

    @staticmethod
    def _elapsed(start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 2)
