"""Reconciliation engine: comparators, diff, sync and RBAC analysis."""

from .compare import MultiMap, StringSet, compare_clients, compare_groups, compare_roles, compare_users
from .diff import RealmDiffer
from .rbac import MAX_RBAC_DEPTH, RBACTreeBuilder, compute_stats
from .sync import CallPolicy, SyncOrchestrator, SyncResult, SyncWarning

__all__ = [
    "CallPolicy",
    "MAX_RBAC_DEPTH",
    "MultiMap",
    "RBACTreeBuilder",
    "RealmDiffer",
    "StringSet",
    "SyncOrchestrator",
    "SyncResult",
    "SyncWarning",
    "compare_clients",
    "compare_groups",
    "compare_roles",
    "compare_users",
    "compute_stats",
]
