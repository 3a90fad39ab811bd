# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Command-line interface for pgapi."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from pgapi import __version__
from pgapi.config import GatewayConfig, load_configuration, read_environment, resolve_port
from pgapi.errors import ConfigError, GatewayError

console = Console()


def _load_config(config: Optional[str]) -> tuple[GatewayConfig, dict[str, str]]:
    env = read_environment()
    try:
        return load_configuration(env, config), env
    except (ConfigError, FileNotFoundError) as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)


def _require_database(cfg: GatewayConfig) -> None:
    if not cfg.connection_string:
        console.print("[red]Config error:[/red] DATABASE_URL is not set")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="pgapi")
def cli():
    """pgapi - GraphQL API generated from a database schema.

    Reads DATABASE_URL (and PORT) from the environment or a .env file.

    \b
    Quick start:
        DATABASE_URL=postgres://localhost/app pgapi serve
        pgapi export-schema -o schema.graphql
    """
    pass


@cli.command()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to a pgapi YAML file (default: $PGAPI_CONFIG).",
)
@click.option(
    "--port", "-p",
    type=int,
    default=None,
    help="Port to bind the server to (default: $PORT or 4000).",
)
@click.option(
    "--host", "-h",
    default=None,
    help="Host address to bind the server to.",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging.",
)
def serve(config: Optional[str], port: Optional[int], host: Optional[str], debug: bool):
    """Start the GraphQL server.

    \b
    Examples:
        pgapi serve
        pgapi serve -c pgapi.yaml --port 5050
        pgapi serve --debug
    """
    from pgapi.server.runner import start

    cfg, env = _load_config(config)
    if host:
        cfg = cfg.model_copy(update={"host": host})
    if port is None:
        try:
            port = resolve_port(env)
        except ConfigError as e:
            console.print(f"[red]Config error:[/red] {e}")
            sys.exit(1)

    if debug:
        logging.getLogger('pgapi').setLevel(logging.DEBUG)

    start(cfg, port, log_level="debug" if debug else "info")


@cli.command("export-schema")
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to a pgapi YAML file (default: $PGAPI_CONFIG).",
)
@click.option(
    "--output", "-o",
    type=click.Path(),
    help="Where to write the SDL (default: schema_export_path).",
)
def export_schema_command(config: Optional[str], output: Optional[str]):
    """Write the GraphQL schema of the database to a file and exit."""
    from pgapi.catalog import CatalogIntrospector
    from pgapi.db import create_database_engine
    from pgapi.graphql import SchemaBuilder, export_schema

    cfg, _ = _load_config(config)
    _require_database(cfg)

    target = Path(output) if output else cfg.schema_export_path
    if target is None:
        console.print("[red]Config error:[/red] no output path (use --output)")
        sys.exit(1)

    engine = create_database_engine(cfg.owner_connection_string or cfg.connection_string)
    try:
        with console.status("[bold]Introspecting database...", spinner="dots"):
            catalog = CatalogIntrospector(
                engine, schemas=cfg.schemas, enforce_rbac=cfg.enforce_rbac
            ).introspect()
            schema = SchemaBuilder(catalog, cfg).build()
        export_schema(schema, target)
    except GatewayError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        engine.dispose()

    console.print(f"[green]Exported:[/green] {target}")


@cli.command()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to a pgapi YAML file (default: $PGAPI_CONFIG).",
)
def validate(config: Optional[str]):
    """Validate the configuration and the database connection.

    \b
    Examples:
        pgapi validate
        pgapi validate -c pgapi.yaml
    """
    from pgapi.catalog import CatalogIntrospector
    from pgapi.db import create_database_engine
    from pgapi.plugins import load_plugins

    console.print(f"Validating: {config or '(environment)'}\n")
    cfg, _ = _load_config(config)
    console.print("[green]OK[/green] Configuration parsed")

    try:
        plugins = load_plugins(cfg.plugins)
        console.print(f"[green]OK[/green] Plugins: {', '.join(p.name for p in plugins) or '(none)'}")
    except GatewayError as e:
        console.print(f"[red]FAIL[/red] Plugins: {e}")
        sys.exit(1)

    if not cfg.connection_string:
        console.print("[red]FAIL[/red] DATABASE_URL is not set")
        sys.exit(1)

    engine = create_database_engine(cfg.owner_connection_string or cfg.connection_string)
    try:
        catalog = CatalogIntrospector(engine, schemas=cfg.schemas, enforce_rbac=cfg.enforce_rbac).introspect()
        console.print(
            f"[green]OK[/green] Database: {len(catalog.tables)} tables/views, "
            f"{len(catalog.functions)} functions"
        )
    except GatewayError as e:
        console.print(f"[red]FAIL[/red] Database: {e}")
        sys.exit(1)
    finally:
        engine.dispose()

    console.print()


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
