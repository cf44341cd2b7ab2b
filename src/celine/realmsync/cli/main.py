"""CELINE RealmSync CLI - Main entrypoint.

Usage:
    celine-realmsync diff role --source staging --destination production
    celine-realmsync rbac user alice --realm staging
"""

from __future__ import annotations

from celine.realmsync.cli.commands import app


def create_app() -> None:
    """CLI entrypoint."""
    app()


if __name__ == "__main__":
    create_app()
