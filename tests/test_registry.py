import pytest

from celine.realmsync.cli.registry import RealmRegistry, UnknownRealmError, _resolve_env


def _write(tmp_path, text):
    path = tmp_path / "realms.yaml"
    path.write_text(text)
    return path


def test_registry_loads_realms_with_env_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("STAGING_SECRET", "s3cret")
    monkeypatch.delenv("PROD_URL", raising=False)
    path = _write(
        tmp_path,
        """
realms:
  staging:
    base_url: https://sso.staging.example.org
    realm: celine
    admin_client_id: realmsync
    admin_client_secret: ${STAGING_SECRET}
  production:
    base_url: ${PROD_URL:-https://sso.example.org}
    realm: celine
    admin_user: admin
    admin_password: pw
    timeout: 30
""",
    )

    registry = RealmRegistry.from_yaml(path, default_timeout=5.0)

    staging = registry.get("staging")
    assert staging.admin_client_secret == "s3cret"
    assert staging.has_client_credentials
    assert staging.timeout == 5.0
    production = registry.get("production")
    assert production.base_url == "https://sso.example.org"
    assert production.timeout == 30
    assert registry.names() == ["production", "staging"]


def test_unknown_realm_lists_registered_names(tmp_path):
    path = _write(tmp_path, "realms:\n  staging:\n    base_url: http://kc\n    realm: a\n")
    registry = RealmRegistry.from_yaml(path)

    with pytest.raises(UnknownRealmError, match="registered: staging"):
        registry.get("production")


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        RealmRegistry.from_yaml(tmp_path / "absent.yaml")


def test_non_mapping_file_raises(tmp_path):
    path = _write(tmp_path, "- staging\n- production\n")

    with pytest.raises(ValueError):
        RealmRegistry.from_yaml(path)


def test_empty_file_gives_empty_registry(tmp_path):
    registry = RealmRegistry.from_yaml(_write(tmp_path, ""))

    assert registry.names() == []


def test_resolve_env_walks_nested_values(monkeypatch):
    monkeypatch.setenv("REALM", "celine")
    monkeypatch.delenv("MISSING", raising=False)

    resolved = _resolve_env({"a": ["${REALM}", 3], "b": {"c": "${MISSING}", "d": "${MISSING:-x}"}})

    assert resolved == {"a": ["celine", 3], "b": {"c": "", "d": "x"}}
