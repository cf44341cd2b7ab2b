"""Realm reconciliation CLI commands.

Commands:
    celine-realmsync diff <kind> --source <name> --destination <name>
    celine-realmsync sync <kind> <identity> --source <name> --destination <name>
    celine-realmsync rbac <kind> <identity> --realm <name>
    celine-realmsync realms
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine
from pathlib import Path
from typing import Annotated, Any, Optional

import typer

from celine.realmsync.api import RealmSyncAPI
from celine.realmsync.cli.registry import RealmRegistry
from celine.realmsync.config import settings
from celine.realmsync.keycloak import KeycloakAuthError, KeycloakError
from celine.realmsync.logs import configure_logging, get_logger
from celine.realmsync.models import DiffRecord, EntityKind, RBACNode

logger = get_logger(__name__)

app = typer.Typer(
    name="celine-realmsync",
    help="Compare, sync and analyze Keycloak realms",
    add_completion=False,
)

RealmsFile = Annotated[
    Optional[Path],
    typer.Option("--realms-file", "-f", help="Realm registry YAML file"),
]
Verbose = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose output"),
]
Source = Annotated[str, typer.Option("--source", "-s", help="Source realm name")]
Destination = Annotated[str, typer.Option("--destination", "-d", help="Destination realm name")]
JsonOutput = Annotated[bool, typer.Option("--json", help="Print JSON instead of text")]


def _configure_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    configure_logging("DEBUG" if verbose else settings.log_level)


def _load_registry(realms_file: Path | None) -> RealmRegistry:
    path = realms_file or settings.realms_file
    try:
        registry = RealmRegistry.from_yaml(path, default_timeout=settings.http_timeout)
    except Exception as e:
        typer.secho(f"Error loading realms: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    logger.debug("Loaded %d realms from %s", len(registry.realms), path)
    return registry


def _run(coro: Coroutine[Any, Any, Any], verbose: bool) -> Any:
    """Run an API call and map failures to exit code 1."""
    try:
        return asyncio.run(coro)
    except KeycloakAuthError as e:
        typer.secho(f"Authentication failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except KeycloakError as e:
        typer.secho(f"Keycloak error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except Exception as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        if verbose:
            import traceback

            traceback.print_exc()
        raise typer.Exit(1)


def _resolve_realms(registry: RealmRegistry, *names: str):
    try:
        return [registry.get(name) for name in names]
    except LookupError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


def format_record(record: DiffRecord) -> str:
    line = f"{record.status.value:<24} {record.identity}"
    if record.differences:
        line += f"  [{', '.join(record.differences)}]"
    return line


def format_tree(node: RBACNode, level: int = 0) -> list[str]:
    indent = "  " * level
    if node.is_empty:
        return [f"{indent}... (depth limit)"]
    label = f"{indent}{node.type.value}: {node.name}"
    if node.policy_type:
        label += f" ({node.policy_type})"
    lines = [label]
    for child in node.children:
        lines.extend(format_tree(child, level + 1))
    return lines


@app.command("diff")
def diff(
    kind: Annotated[EntityKind, typer.Argument(help="Entity kind to compare")],
    source: Source,
    destination: Destination,
    json_output: JsonOutput = False,
    realms_file: RealmsFile = None,
    verbose: Verbose = False,
) -> None:
    """Compare one entity kind between two registered realms.

    Example:
        celine-realmsync diff client --source staging --destination production
    """
    _configure_logging(verbose)
    registry = _load_registry(realms_file)
    src, dst = _resolve_realms(registry, source, destination)

    records = _run(RealmSyncAPI().diff(kind, src, dst), verbose)

    if json_output:
        payload = [r.model_dump(mode="json", by_alias=True) for r in records]
        typer.echo(json.dumps(payload, indent=2))
        return

    if not records:
        typer.secho(f"No {kind.value} differences", fg=typer.colors.GREEN)
        return
    for record in records:
        typer.echo(format_record(record))
    typer.echo(f"\n{len(records)} {kind.value} differences")


@app.command("sync")
def sync(
    kind: Annotated[EntityKind, typer.Argument(help="Entity kind to sync")],
    identity: Annotated[
        str, typer.Argument(help="Role name, clientId, group path or username")
    ],
    source: Source,
    destination: Destination,
    realms_file: RealmsFile = None,
    verbose: Verbose = False,
) -> None:
    """Replicate one entity from the source realm into the destination realm.

    Only the entity itself must succeed; skipped dependent resources are
    listed as warnings.

    Example:
        celine-realmsync sync client portal --source staging --destination production
    """
    _configure_logging(verbose)
    registry = _load_registry(realms_file)
    src, dst = _resolve_realms(registry, source, destination)

    result = _run(RealmSyncAPI().sync(kind, identity, src, dst), verbose)

    typer.echo(result.summary())
    if result.partial:
        typer.secho(
            "Sync completed with skipped dependent resources",
            fg=typer.colors.YELLOW,
        )


@app.command("rbac")
def rbac(
    kind: Annotated[EntityKind, typer.Argument(help="role, user or client")],
    identity: Annotated[str, typer.Argument(help="Role name, username or clientId")],
    realm: Annotated[str, typer.Option("--realm", "-r", help="Realm name")],
    json_output: JsonOutput = False,
    realms_file: RealmsFile = None,
    verbose: Verbose = False,
) -> None:
    """Show the RBAC tree of a role, user or client with node statistics.

    Example:
        celine-realmsync rbac role billing-admin --realm staging
    """
    _configure_logging(verbose)
    registry = _load_registry(realms_file)
    (target,) = _resolve_realms(registry, realm)

    analysis = _run(RealmSyncAPI().analyze(kind, identity, target), verbose)

    if json_output:
        typer.echo(analysis.model_dump_json(indent=2))
        return

    typer.echo("\n".join(format_tree(analysis.root)))
    stats = analysis.statistics
    typer.echo(
        f"\nroles={stats.roles} composites={stats.composites} "
        f"client_roles={stats.client_roles} scopes={stats.scopes} "
        f"permissions={stats.permissions} policies={stats.policies}"
    )


@app.command("realms")
def realms(realms_file: RealmsFile = None) -> None:
    """List registered realms."""
    registry = _load_registry(realms_file)
    for name in registry.names():
        typer.echo(f"{name}\t{registry.realms[name].label}")
