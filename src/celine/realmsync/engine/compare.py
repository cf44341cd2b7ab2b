"""Entity comparators.

Pure functions computing a field-level diff between two entities of the same
kind. Each comparator returns ``(differences, source_values, destination_values)``
where both value maps are keyed by exactly the names in ``differences``.

Remote listings come back in no guaranteed order, so list-valued fields are
compared as unordered sets (``StringSet``) and role/attribute maps as
``MultiMap`` (same key set, unordered-equal values per key).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from celine.realmsync.models import ClientDetail, GroupDetail, Role, UserDetail

Comparison = tuple[list[str], dict[str, Any], dict[str, Any]]


@dataclass(frozen=True)
class StringSet:
    """Unordered set of strings. Duplicates and order are ignored."""

    items: frozenset[str] = frozenset()

    @classmethod
    def of(cls, values: Iterable[str] | None) -> "StringSet":
        return cls(frozenset(values or ()))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(sorted(self.items))


@dataclass(frozen=True, eq=False)
class MultiMap:
    """Map of key to unordered value set.

    Two maps are equal when they have the same keys and each key's values are
    equal as sets.
    """

    entries: Mapping[str, frozenset[str]] = field(default_factory=dict)

    @classmethod
    def of(cls, mapping: Mapping[str, Iterable[str]] | None) -> "MultiMap":
        return cls({key: frozenset(values or ()) for key, values in (mapping or {}).items()})

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultiMap):
            return NotImplemented
        return dict(self.entries) == dict(other.entries)

    def __hash__(self) -> int:
        return hash(frozenset(self.entries.items()))


class _FieldDiff:
    """Accumulates differing fields in comparison order."""

    def __init__(self) -> None:
        self.differences: list[str] = []
        self.source_values: dict[str, Any] = {}
        self.destination_values: dict[str, Any] = {}

    def add(self, name: str, source: Any, destination: Any) -> None:
        self.differences.append(name)
        self.source_values[name] = source
        self.destination_values[name] = destination

    def scalar(self, name: str, source: Any, destination: Any) -> None:
        if source != destination:
            self.add(name, source, destination)

    def set(self, name: str, source: list[str], destination: list[str]) -> None:
        if StringSet.of(source) != StringSet.of(destination):
            self.add(name, list(source), list(destination))

    def multimap(
        self,
        name: str,
        source: Mapping[str, list[str]],
        destination: Mapping[str, list[str]],
    ) -> None:
        if MultiMap.of(source) != MultiMap.of(destination):
            self.add(name, _copy_map(source), _copy_map(destination))

    def result(self) -> Comparison:
        return self.differences, self.source_values, self.destination_values


def _copy_map(mapping: Mapping[str, list[str]]) -> dict[str, list[str]]:
    return {key: list(values) for key, values in mapping.items()}


def compare_roles(source: Role, destination: Role) -> Comparison:
    """Roles are diffed by presence only."""
    return [], {}, {}


def compare_clients(source: ClientDetail, destination: ClientDetail) -> Comparison:
    """Compare the reconcilable configuration of two clients.

    ``publicClient`` and ``bearerOnly`` together make up Keycloak's access
    type and are reported under the single ``accessType`` tag.
    """
    diff = _FieldDiff()
    diff.scalar("protocol", source.protocol, destination.protocol)
    diff.set("redirectUris", source.redirect_uris, destination.redirect_uris)
    diff.set("webOrigins", source.web_origins, destination.web_origins)

    source_access = {"publicClient": source.public_client, "bearerOnly": source.bearer_only}
    destination_access = {
        "publicClient": destination.public_client,
        "bearerOnly": destination.bearer_only,
    }
    diff.scalar("accessType", source_access, destination_access)

    diff.scalar(
        "directAccessGrantsEnabled",
        source.direct_access_grants_enabled,
        destination.direct_access_grants_enabled,
    )
    diff.scalar(
        "serviceAccountsEnabled",
        source.service_accounts_enabled,
        destination.service_accounts_enabled,
    )
    diff.set("defaultClientScopes", source.default_client_scopes, destination.default_client_scopes)
    diff.set(
        "optionalClientScopes", source.optional_client_scopes, destination.optional_client_scopes
    )
    diff.set("clientRoles", source.client_roles, destination.client_roles)
    return diff.result()


def compare_groups(source: GroupDetail, destination: GroupDetail) -> Comparison:
    """Compare role mappings and attributes of two groups."""
    diff = _FieldDiff()
    diff.set("realmRoles", source.realm_roles, destination.realm_roles)
    diff.multimap("clientRoles", source.client_roles, destination.client_roles)
    diff.multimap("attributes", source.attributes, destination.attributes)
    return diff.result()


def compare_users(source: UserDetail, destination: UserDetail) -> Comparison:
    """Compare role mappings, memberships, attributes and required actions."""
    diff = _FieldDiff()
    diff.set("realmRoles", source.realm_roles, destination.realm_roles)
    diff.multimap("clientRoles", source.client_roles, destination.client_roles)
    diff.set("groups", source.groups, destination.groups)
    diff.multimap("attributes", source.attributes, destination.attributes)
    diff.set("requiredActions", source.required_actions, destination.required_actions)
    return diff.result()


# -----------------------------------------------------------------------------
# Protocol mappers
# -----------------------------------------------------------------------------


def mapper_names(mappers: Iterable[Mapping[str, Any]]) -> list[str]:
    """Sorted mapper names of a client scope."""
    return sorted(m["name"] for m in mappers if m.get("name"))


def mapper_signature(mapper: Mapping[str, Any]) -> dict[str, Any]:
    """Mapper definition without its realm-local id."""
    return {key: value for key, value in mapper.items() if key != "id"}


def mappers_differ(
    source: Iterable[Mapping[str, Any]], destination: Iterable[Mapping[str, Any]]
) -> bool:
    """Whether two copies of a client scope carry different protocol mappers.

    Differs when the mapper name sets differ, or when a mapper present on
    both sides has a different definition.
    """
    source_by_name = {m["name"]: m for m in source if m.get("name")}
    destination_by_name = {m["name"]: m for m in destination if m.get("name")}
    if set(source_by_name) != set(destination_by_name):
        return True
    return any(
        mapper_signature(mapper) != mapper_signature(destination_by_name[name])
        for name, mapper in source_by_name.items()
    )
