"""Realm registry loaded from YAML.

Example ``realms.yaml``::

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
        admin_password: ${PROD_ADMIN_PASSWORD}

``${VAR}`` and ``${VAR:-default}`` placeholders are resolved from the
environment before validation.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from celine.realmsync.keycloak.settings import RealmSettings

# Pattern for ${VAR} and ${VAR:-default} interpolation
_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(:-([^}]*))?\}")


def _resolve_env_str(s: str) -> str:
    """Resolve environment variable placeholders in a string."""
    def repl(m: re.Match[str]) -> str:
        val = os.getenv(m.group(1))
        if val is None or val == "":
            default = m.group(3)
            return default if default is not None else ""
        return val

    # Resolve repeatedly until stable (handles nested defaults)
    prev = None
    cur = s
    for _ in range(5):
        if cur == prev:
            break
        prev = cur
        cur = _ENV_PATTERN.sub(repl, cur)
    return cur


def _resolve_env(value: Any) -> Any:
    """Recursively resolve environment variables in a data structure."""
    if isinstance(value, str):
        return _resolve_env_str(value)
    if isinstance(value, list):
        return [_resolve_env(v) for v in value]
    if isinstance(value, dict):
        return {k: _resolve_env(v) for k, v in value.items()}
    return value


class UnknownRealmError(LookupError):
    pass


class RealmRegistry(BaseModel):
    """Named realm connection settings."""

    realms: dict[str, RealmSettings] = Field(default_factory=dict)

    @classmethod
    def from_yaml(
        cls, path: str | Path, default_timeout: float | None = None
    ) -> "RealmRegistry":
        """Load the registry from a YAML file with env var interpolation.

        ``default_timeout`` applies to realms that do not set ``timeout``.
        """
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Realms file not found: {path}")

        raw = yaml.safe_load(p.read_text()) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Realms file must be a YAML mapping: {path}")

        resolved = _resolve_env(raw)
        if default_timeout is not None:
            for entry in (resolved.get("realms") or {}).values():
                if isinstance(entry, dict):
                    entry.setdefault("timeout", default_timeout)

        return cls.model_validate(resolved)

    def get(self, name: str) -> RealmSettings:
        try:
            return self.realms[name]
        except KeyError:
            known = ", ".join(sorted(self.realms)) or "none"
            raise UnknownRealmError(f"Unknown realm '{name}' (registered: {known})") from None

    def names(self) -> list[str]:
        return sorted(self.realms)
