"""Diff record models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import Field, model_validator

from celine.realmsync.models.entities import (
    ClientDetail,
    GroupDetail,
    KeycloakModel,
    Role,
    UserDetail,
)

EntityT = TypeVar("EntityT", Role, ClientDetail, GroupDetail, UserDetail)


class DiffStatus(str, Enum):
    """Why an entity shows up in a diff."""

    MISSING_IN_DESTINATION = "missing_in_destination"
    MISSING_IN_SOURCE = "missing_in_source"
    DIFFERENT_CONFIG = "different_config"


class DiffSide(str, Enum):
    """Which realm the diffed entity was taken from."""

    SOURCE = "source"
    DESTINATION = "destination"
    BOTH = "both"


class DiffRecord(KeycloakModel, Generic[EntityT]):
    """One entity that differs between source and destination.

    ``differences`` is non-empty exactly when ``status`` is
    ``different_config``, and both value maps are keyed by ``differences``.
    """

    entity: EntityT
    status: DiffStatus
    side: DiffSide
    differences: list[str] = Field(default_factory=list)
    source_value: dict[str, Any] = Field(default_factory=dict)
    destination_value: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_differences(self) -> "DiffRecord[EntityT]":
        if self.status is DiffStatus.DIFFERENT_CONFIG:
            if not self.differences:
                raise ValueError("different_config record requires differences")
        elif self.differences:
            raise ValueError(f"{self.status.value} record cannot carry differences")

        keys = set(self.differences)
        if set(self.source_value) != keys or set(self.destination_value) != keys:
            raise ValueError("value maps must be keyed by exactly the differences")
        return self

    @property
    def identity(self) -> str:
        return self.entity.identity


RoleDiff = DiffRecord[Role]
ClientDiff = DiffRecord[ClientDetail]
GroupDiff = DiffRecord[GroupDetail]
UserDiff = DiffRecord[UserDetail]
