import pytest

from celine.realmsync.engine.diff import RealmDiffer
from celine.realmsync.engine.sync import (
    SyncOrchestrator,
    SyncResult,
    SyncWarning,
    export_representation,
)
from celine.realmsync.keycloak import KeycloakAuthError, KeycloakNotFoundError
from celine.realmsync.models import EntityKind

EMAIL = {
    "name": "email",
    "protocol": "openid-connect",
    "protocolMapper": "oidc-usermodel-property-mapper",
    "config": {"claim.name": "email"},
}
GIVEN_NAME = {
    "name": "given name",
    "protocol": "openid-connect",
    "protocolMapper": "oidc-usermodel-property-mapper",
    "config": {"claim.name": "given_name"},
}
INVOICE = {
    "name": "invoice-claim",
    "protocol": "openid-connect",
    "protocolMapper": "oidc-hardcoded-claim-mapper",
    "config": {"claim.name": "invoice"},
}


async def _sync(keycloak, kind, identity):
    async with keycloak.admin("staging") as src, keycloak.admin("production") as dst:
        return await SyncOrchestrator(src, dst).sync(kind, identity)


def _seed_portal(source):
    source.add_client_scope("profile", mappers=[EMAIL, GIVEN_NAME])
    source.add_client_scope("billing", mappers=[INVOICE])
    source.add_client("portal", redirectUris=["https://portal/*"], publicClient=True)
    source.add_client_role("portal", "viewer", "Read access")
    source.add_client_role("portal", "editor")
    source.assign_scope("portal", "default", "profile")
    source.assign_scope("portal", "optional", "billing")


# -----------------------------------------------------------------------------
# Roles
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_role_is_created_without_composites(keycloak, source, destination):
    source.add_client("billing")
    source.add_client_role("billing", "invoices:write")
    source.add_role(
        "billing-admin",
        description="Billing administrators",
        composites=[("billing", "invoices:write")],
        attributes={"tier": ["gold"]},
    )

    result = await _sync(keycloak, "role", "billing-admin")

    assert result.action == "created"
    assert result.partial is False
    role = destination.roles["billing-admin"]
    assert role["description"] == "Billing administrators"
    assert role["attributes"] == {"tier": ["gold"]}
    assert role["composite"] is False
    assert "billing-admin" not in destination.composites


@pytest.mark.asyncio
async def test_second_role_sync_changes_nothing(keycloak, source, destination):
    source.add_role("viewer", description="Read only")

    await _sync(keycloak, "role", "viewer")
    before = destination.snapshot()
    result = await _sync(keycloak, "role", "viewer")

    assert result.action == "exists"
    assert destination.snapshot() == before


@pytest.mark.asyncio
async def test_missing_source_role_is_fatal(keycloak, source, destination):
    with pytest.raises(KeycloakNotFoundError):
        await _sync(keycloak, "role", "ghost")

    assert destination.roles == {}


# -----------------------------------------------------------------------------
# Clients
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_new_client_brings_roles_scopes_and_mappers(keycloak, source, destination):
    _seed_portal(source)
    destination.add_client_scope("profile", mappers=[EMAIL])

    result = await _sync(keycloak, "client", "portal")

    assert result.action == "created"
    assert result.warnings == []
    assert result.created == [
        "client-role:viewer",
        "client-role:editor",
        "mapper:profile/given name",
        "client-scope:billing",
    ]

    uuid = destination.client_uuid("portal")
    client = destination.clients[uuid]
    assert client["redirectUris"] == ["https://portal/*"]
    assert client["publicClient"] is True
    assert set(destination.client_roles[uuid]) == {"viewer", "editor"}
    assert destination.client_roles[uuid]["viewer"]["description"] == "Read access"

    billing_id = destination.scope_id("billing")
    assert [m["name"] for m in destination.scope_mappers[billing_id]] == ["invoice-claim"]
    profile_id = destination.scope_id("profile")
    assert [m["name"] for m in destination.scope_mappers[profile_id]] == ["email", "given name"]
    assert destination.scope_assignments[uuid] == {
        "default": [profile_id],
        "optional": [billing_id],
    }


@pytest.mark.asyncio
async def test_synced_client_no_longer_shows_in_diff(keycloak, source, destination):
    _seed_portal(source)
    destination.add_client_scope("profile", mappers=[EMAIL])

    await _sync(keycloak, "client", "portal")

    async with keycloak.admin("staging") as src, keycloak.admin("production") as dst:
        records = await RealmDiffer(src, dst).diff_clients()
    assert records == []


@pytest.mark.asyncio
async def test_existing_client_is_updated_in_place(keycloak, source, destination):
    _seed_portal(source)
    uuid = destination.add_client("portal", redirectUris=["https://old/*"])

    result = await _sync(keycloak, "client", "portal")

    assert result.action == "updated"
    assert destination.client_uuid("portal") == uuid
    assert destination.clients[uuid]["redirectUris"] == ["https://portal/*"]
    assert len(destination.clients) == 1


@pytest.mark.asyncio
async def test_differing_mapper_is_skipped_not_overwritten(keycloak, source, destination):
    _seed_portal(source)
    changed = {**EMAIL, "config": {"claim.name": "mail"}}
    destination.add_client_scope("profile", mappers=[changed, GIVEN_NAME])

    result = await _sync(keycloak, "client", "portal")

    assert result.skipped == ["mapper:profile/email"]
    assert "mapper:profile/email" not in result.created
    mappers = destination.scope_mappers[destination.scope_id("profile")]
    assert [m["config"] for m in mappers if m["name"] == "email"] == [{"claim.name": "mail"}]


@pytest.mark.asyncio
async def test_failed_client_role_creation_is_a_warning(keycloak, source, destination):
    _seed_portal(source)
    destination.fail("POST", r"/clients/[^/]+/roles", status=500)

    result = await _sync(keycloak, "client", "portal")

    assert result.action == "created"
    assert result.partial is True
    assert [w.step for w in result.warnings] == ["create client role", "create client role"]
    assert all(w.status_code == 500 for w in result.warnings)
    assert not any(item.startswith("client-role:") for item in result.created)
    assert "client-scope:billing" in result.created
    assert destination.client_roles[destination.client_uuid("portal")] == {}


@pytest.mark.asyncio
async def test_auth_failure_in_dependent_step_propagates(keycloak, source, destination):
    _seed_portal(source)
    destination.fail("GET", r"/client-scopes", status=401)

    with pytest.raises(KeycloakAuthError):
        await _sync(keycloak, "client", "portal")


@pytest.mark.asyncio
async def test_missing_source_client_is_fatal(keycloak, source, destination):
    with pytest.raises(KeycloakNotFoundError):
        await _sync(keycloak, "client", "portal")

    assert destination.clients == {}


@pytest.mark.asyncio
async def test_second_client_sync_changes_nothing(keycloak, source, destination):
    _seed_portal(source)
    destination.add_client_scope("profile", mappers=[EMAIL])

    await _sync(keycloak, "client", "portal")
    before = destination.snapshot()
    result = await _sync(keycloak, "client", "portal")

    assert result.action == "updated"
    assert result.created == []
    assert result.warnings == []
    assert destination.snapshot() == before


# -----------------------------------------------------------------------------
# Users and groups
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_user_sync_assigns_what_it_can(keycloak, source, destination):
    for realm in (source, destination):
        realm.add_role("viewer")
        realm.add_client("billing")
        realm.add_client_role("billing", "read")
    source.add_role("ghost")
    source.add_group("/ops")
    source.add_user(
        "alice",
        realm_roles=["viewer", "ghost"],
        client_roles={"billing": ["read"]},
        groups=["/ops"],
        email="alice@example.org",
    )

    result = await _sync(keycloak, "user", "alice")

    assert result.action == "created"
    assert result.assigned == ["realm-role:viewer", "client-role:billing/read"]
    assert [(w.step, w.target, w.status_code) for w in result.warnings] == [
        ("resolve realm role", "ghost", 404),
        ("add to group", "/ops", 404),
    ]
    (user_id,) = [u for u, rep in destination.users.items() if rep["username"] == "alice"]
    assert destination.users[user_id]["email"] == "alice@example.org"
    assert destination.user_realm_roles[user_id] == ["viewer"]

    again = await _sync(keycloak, "user", "alice")
    assert again.action == "exists"
    assert again.assigned == []


@pytest.mark.asyncio
async def test_user_joins_existing_group(keycloak, source, destination):
    for realm in (source, destination):
        realm.add_group("/ops")
    source.add_user("bob", groups=["/ops"])

    result = await _sync(keycloak, "user", "bob")

    assert result.assigned == ["group:/ops"]
    (user_id,) = destination.users
    assert destination.user_groups[user_id] == [destination.group_id("/ops")]


@pytest.mark.asyncio
async def test_nested_group_is_created_under_its_parent(keycloak, source, destination):
    for realm in (source, destination):
        realm.add_role("viewer")
    source.add_group("/engineering")
    source.add_group("/engineering/backend", realm_roles=["viewer"], attributes={"site": ["milan"]})
    destination.add_group("/engineering")

    result = await _sync(keycloak, "group", "/engineering/backend")

    assert result.action == "created"
    assert result.assigned == ["realm-role:viewer"]
    group_id = destination.group_id("/engineering/backend")
    assert destination.group_parent[group_id] == destination.group_id("/engineering")
    assert destination.group_realm_roles[group_id] == ["viewer"]
    assert destination.groups[group_id]["attributes"] == {"site": ["milan"]}


@pytest.mark.asyncio
async def test_group_without_parent_in_destination_fails(keycloak, source, destination):
    source.add_group("/engineering")
    source.add_group("/engineering/backend")

    with pytest.raises(KeycloakNotFoundError):
        await _sync(keycloak, "group", "/engineering/backend")

    assert destination.groups == {}


@pytest.mark.asyncio
async def test_existing_group_is_left_alone(keycloak, source, destination):
    source.add_group("/ops")
    destination.add_group("/ops")
    before = destination.snapshot()

    result = await _sync(keycloak, "group", "/ops")

    assert result.action == "exists"
    assert destination.snapshot() == before


# -----------------------------------------------------------------------------
# Result helpers
# -----------------------------------------------------------------------------


def test_summary_lists_created_skipped_and_warnings():
    result = SyncResult(
        kind=EntityKind.CLIENT,
        identity="portal",
        action="created",
        created=["client-role:viewer"],
        skipped=["mapper:profile/email"],
        warnings=[SyncWarning("create mapper", "profile/x", "boom", 500)],
    )

    summary = result.summary()

    assert summary.splitlines()[0] == "client 'portal': created"
    assert "  + client-role:viewer" in summary
    assert "  ~ mapper:profile/email" in summary
    assert "  ! create mapper profile/x: boom" in summary
    assert result.partial is True


def test_export_representation_drops_ids():
    rep = {
        "id": "abc",
        "name": "profile",
        "protocolMappers": [{"id": "m1", "name": "email"}],
    }

    exported = export_representation(rep)

    assert exported == {"name": "profile", "protocolMappers": [{"name": "email"}]}
    assert rep["id"] == "abc"
    assert rep["protocolMappers"][0]["id"] == "m1"
