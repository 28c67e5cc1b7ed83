"""Kafka Connect Operator CLI (kco).

Usage:
    kco run                      # Run the operator (configured from the environment)
    kco validate ./specs         # Validate Connector and ProviderConfig documents
    kco diff sink1 ./specs       # Show drift for one connector without changing it
    kco status sink1 ./status    # Print the last persisted status of a connector
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from .client import ConnectionPool, KafkaConnectError, NotFoundError
from .config import DEFAULT_REQUEST_TIMEOUT_SECONDS
from .diff import ChangeKind, desired_config, diff_config, ignored_keys
from .registry import build_registry
from .resolver import DEFAULT_SECRETS_DIR, ConnectionResolver, ResolverError
from .store import FileResourceStore, load_documents

_CHANGE_SYMBOLS = {
    ChangeKind.ADDED: ("+", "green"),
    ChangeKind.REMOVED: ("-", "red"),
    ChangeKind.CHANGED: ("~", "yellow"),
}

existing_dir = click.Path(exists=True, file_okay=False, path_type=Path)


@click.group()
@click.version_option(version="0.1.0", prog_name="kco")
def cli() -> None:
    """Kafka Connect connector operator."""


@cli.command()
def run() -> None:
    """Run the operator until SIGTERM/SIGINT."""
    from .main import run as run_operator

    run_operator()


@cli.command()
@click.argument("specs_dir", type=existing_dir)
def validate(specs_dir: Path) -> None:
    """Validate every resource document in SPECS_DIR."""
    result = load_documents(specs_dir, build_registry())

    for error in result.errors:
        click.secho(error, fg="red", err=True)

    click.echo(
        f"{len(result.connectors)} connector(s), "
        f"{len(result.provider_configs)} provider config(s)"
    )
    if not result.success:
        raise click.ClickException(f"{len(result.errors)} invalid document(s)")
    click.secho("✓ All documents valid", fg="green")


@cli.command()
@click.argument("name")
@click.argument("specs_dir", type=existing_dir)
@click.option(
    "--secrets-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_SECRETS_DIR,
    show_default=True,
    help="Root of mounted credential secrets",
)
@click.option(
    "--status-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Operator status directory; the recorded connector name takes precedence",
)
@click.option(
    "--ignore-key",
    "extra_ignored",
    multiple=True,
    help="Additional config key to exclude from comparison",
)
@click.option(
    "--timeout",
    type=float,
    default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
    show_default=True,
    help="Per-request timeout in seconds",
)
def diff(
    name: str,
    specs_dir: Path,
    secrets_dir: Path,
    status_dir: Path | None,
    extra_ignored: tuple[str, ...],
    timeout: float,
) -> None:
    """Compare connector NAME in SPECS_DIR with the live connector."""
    store = FileResourceStore(specs_dir, status_dir or Path("."), build_registry())
    store.refresh()

    connector = store.get_connector(name)
    if connector is None:
        raise click.ClickException(f"Connector resource {name!r} not found in {specs_dir}")

    resolver = ConnectionResolver(secrets_dir=secrets_dir)
    try:
        details = resolver.resolve(
            connector, store.get_provider_config(resolver.provider_config_name(connector))
        )
    except ResolverError as e:
        raise click.ClickException(str(e)) from e

    params = connector.spec.for_provider
    desired = desired_config(params)

    # The operator never renames; it keeps managing the recorded connector
    target = params.name
    if status_dir is not None:
        recorded = store.get_status(name).connector_name
        if recorded is not None and recorded != params.name:
            click.secho(
                f"Name change to {params.name!r} is refused; comparing with the managed "
                f"connector {recorded!r}",
                fg="yellow",
                err=True,
            )
            target = recorded

    async def observe() -> dict[str, str] | None:
        async with ConnectionPool(timeout_seconds=timeout) as pool:
            client = pool.client(
                details.endpoint,
                username=details.username,
                password=details.password,
                ssl_context=details.ssl_context,
            )
            try:
                info = await client.get(target)
            except NotFoundError:
                return None
            return info.config

    try:
        observed = asyncio.run(observe())
    except KafkaConnectError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}") from e

    if observed is None:
        click.secho(f"Connector {target!r} does not exist; it would be created", fg="yellow")
        return

    changes = diff_config(desired, observed, ignored_keys(extra_ignored))
    if not changes:
        click.secho(f"✓ Connector {target!r} is up to date", fg="green")
        return

    for change in changes:
        symbol, color = _CHANGE_SYMBOLS[change.kind]
        if change.kind == ChangeKind.CHANGED:
            line = f"{symbol} {change.key}: {change.observed!r} -> {change.desired!r}"
        elif change.kind == ChangeKind.ADDED:
            line = f"{symbol} {change.key}: {change.desired!r}"
        else:
            line = f"{symbol} {change.key}: {change.observed!r}"
        click.secho(line, fg=color)
    click.echo(f"{len(changes)} difference(s)")


@cli.command()
@click.argument("name")
@click.argument("status_dir", type=existing_dir)
def status(name: str, status_dir: Path) -> None:
    """Print the persisted status of connector NAME."""
    store = FileResourceStore(status_dir, status_dir, build_registry())
    current = store.get_status(name)
    if current.connector_name is None and not current.conditions:
        raise click.ClickException(f"No status recorded for {name!r} in {status_dir}")
    click.echo(json.dumps(current.to_dict(), indent=2))


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
