"""Reconciliation engine for Keycloak realms: diff, sync and RBAC analysis."""

__version__ = "0.1.0"
