"""API layer for realm reconciliation."""

from .service import ClientFactory, RealmSyncAPI, default_client_factory

__all__ = [
    "ClientFactory",
    "RealmSyncAPI",
    "default_client_factory",
]
