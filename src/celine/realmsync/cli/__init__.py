"""Command line interface for realm reconciliation."""
