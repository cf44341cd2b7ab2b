import pytest

from celine.realmsync.api import RealmSyncAPI
from celine.realmsync.keycloak import KeycloakNotFoundError
from celine.realmsync.models import DiffStatus, NodeType


class FakeStructLogger:
    def __init__(self):
        self.calls = []

    def info(self, **kwargs):
        self.calls.append(("info", kwargs))

    def warning(self, **kwargs):
        self.calls.append(("warning", kwargs))

    def error(self, **kwargs):
        self.calls.append(("error", kwargs))


@pytest.fixture
def fake_logger():
    return FakeStructLogger()


@pytest.fixture
def api(keycloak, fake_logger):
    return RealmSyncAPI(client_factory=keycloak.admin, logger=fake_logger)


@pytest.mark.asyncio
async def test_diff_logs_counts_by_status(api, keycloak, source, destination, fake_logger):
    source.add_role("viewer")
    destination.add_role("ops")

    records = await api.diff(
        "role", keycloak.settings("staging"), keycloak.settings("production")
    )

    assert {r.status for r in records} == {
        DiffStatus.MISSING_IN_DESTINATION,
        DiffStatus.MISSING_IN_SOURCE,
    }
    assert len(fake_logger.calls) == 1
    level, payload = fake_logger.calls[0]
    assert level == "info"
    assert payload["event"] == "realm_diff"
    assert payload["kind"] == "role"
    assert payload["records"] == 2
    assert payload["missing_in_destination"] == 1
    assert payload["missing_in_source"] == 1
    assert payload["different_config"] == 0
    assert payload["source"].endswith("/staging")
    assert payload["latency_ms"] >= 0


@pytest.mark.asyncio
async def test_sync_logs_action(api, keycloak, source, destination, fake_logger):
    source.add_role("viewer")

    result = await api.sync(
        "role", "viewer", keycloak.settings("staging"), keycloak.settings("production")
    )

    assert result.action == "created"
    assert "viewer" in destination.roles
    level, payload = fake_logger.calls[0]
    assert (level, payload["event"], payload["action"]) == ("info", "realm_sync", "created")
    assert payload["partial"] is False
    assert payload["identity"] == "viewer"


@pytest.mark.asyncio
async def test_failed_sync_logs_error_and_reraises(api, keycloak, source, destination, fake_logger):
    with pytest.raises(KeycloakNotFoundError):
        await api.sync(
            "role", "ghost", keycloak.settings("staging"), keycloak.settings("production")
        )

    level, payload = fake_logger.calls[0]
    assert level == "error"
    assert payload["event"] == "realm_sync_error"
    assert payload["error_type"] == "KeycloakNotFoundError"


@pytest.mark.asyncio
async def test_rbac_tree_and_stats(api, keycloak, source, fake_logger):
    source.add_role("member")
    source.add_role("lead", composites=["member"])

    tree = await api.build_rbac_tree("role", "lead", keycloak.settings("staging"))
    stats = api.stats(tree)

    assert tree.type is NodeType.ROLE
    assert [c.name for c in tree.children] == ["member"]
    assert (stats.roles, stats.composites) == (1, 1)
    level, payload = fake_logger.calls[0]
    assert payload["event"] == "rbac_analysis"
    assert payload["composites"] == 1


@pytest.mark.asyncio
async def test_invalid_kind_is_rejected_before_any_call(api, keycloak, fake_logger):
    with pytest.raises(ValueError):
        await api.diff("realm", keycloak.settings("staging"), keycloak.settings("production"))

    assert fake_logger.calls == []
