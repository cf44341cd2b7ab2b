"""Domain models for realm reconciliation."""

from .diff import (
    ClientDiff,
    DiffRecord,
    DiffSide,
    DiffStatus,
    GroupDiff,
    RoleDiff,
    UserDiff,
)
from .entities import (
    ClientDetail,
    EntityKind,
    GroupDetail,
    Role,
    ScopeBucket,
    UserDetail,
    coerce_attributes,
)
from .rbac import NodeType, RBACAnalysis, RBACNode, RBACStats

__all__ = [
    "ClientDetail",
    "ClientDiff",
    "DiffRecord",
    "DiffSide",
    "DiffStatus",
    "EntityKind",
    "GroupDetail",
    "GroupDiff",
    "NodeType",
    "RBACAnalysis",
    "RBACNode",
    "RBACStats",
    "Role",
    "RoleDiff",
    "ScopeBucket",
    "UserDetail",
    "UserDiff",
    "coerce_attributes",
]
