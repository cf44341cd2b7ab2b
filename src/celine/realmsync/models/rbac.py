"""Authorization graph models."""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum

from pydantic import BaseModel, Field


class NodeType(str, Enum):
    """Kind of node in an RBAC tree."""

    ROLE = "role"
    COMPOSITE = "composite"
    CLIENT = "client"
    CLIENT_ROLE = "client-role"
    SCOPE = "scope"
    PERMISSION = "permission"
    POLICY = "policy"
    USER = "user"


class RBACNode(BaseModel):
    """A node in an RBAC tree.

    The tree never shares nodes: a role reachable through two paths is
    expanded twice. A node without a type is the sentinel returned when the
    depth limit is exceeded.
    """

    id: str = ""
    name: str = ""
    type: NodeType | None = None
    description: str = ""
    policy_type: str | None = None
    children: list[RBACNode] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "RBACNode":
        """Sentinel for a truncated expansion."""
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.type is None and not self.id and not self.children

    def walk(self) -> Iterator["RBACNode"]:
        """Yield every node of the subtree in post-order."""
        for child in self.children:
            yield from child.walk()
        yield self


class RBACStats(BaseModel):
    """Node counts by type."""

    roles: int = 0
    composites: int = 0
    client_roles: int = 0
    scopes: int = 0
    permissions: int = 0
    policies: int = 0


class RBACAnalysis(BaseModel):
    """An RBAC tree together with its statistics."""

    root: RBACNode
    statistics: RBACStats
