"""
Command-line interface for sqlalchemy-bulk-upsert.
"""

import json
import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from sqlalchemy import MetaData, Table as SQLTable, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from sqlalchemy_bulk_upsert.core import BulkUpsertEngine, DuplicatePolicy, UpsertResult
from sqlalchemy_bulk_upsert.exceptions import BulkUpsertError
from sqlalchemy_bulk_upsert.utils import Config

logger = logging.getLogger(__name__)
console = Console()


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.option(
    "--database-url",
    type=str,
    envvar="DATABASE_URL",
    help="Database URL",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[str],
    database_url: Optional[str],
    debug: bool,
) -> None:
    """Bulk Upsert - batched insert-or-update for SQL tables."""

    # Load configuration
    cfg = Config(config_file=config)

    # Override with CLI options
    if database_url:
        cfg.set("database_url", database_url)

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)

    # Store in context for subcommands
    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


@cli.command()
@click.argument("data_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--table", "-t", "table_name", required=True, help="Target table")
@click.option(
    "--unique",
    "-u",
    multiple=True,
    required=True,
    help="Unique attribute (repeat for composite keys)",
)
@click.option(
    "--update",
    "update_attributes",
    multiple=True,
    help="Attribute allowed to change on existing rows",
)
@click.option(
    "--exclude",
    "exclude_attributes",
    multiple=True,
    help="Attribute never written on update",
)
@click.option(
    "--mode",
    type=click.Choice(["upsert", "insert", "update"]),
    default="upsert",
    help="Insert and update, insert only, or update only",
)
@click.option(
    "--on-duplicate",
    type=click.Choice([policy.value for policy in DuplicatePolicy]),
    help="How to resolve rows sharing a unique key",
)
@click.option("--chunk-size", type=int, help="Maximum rows per statement")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show the statements without executing them",
)
@click.pass_context
def run(
    ctx: click.Context,
    data_file: str,
    table_name: str,
    unique: tuple,
    update_attributes: tuple,
    exclude_attributes: tuple,
    mode: str,
    on_duplicate: Optional[str],
    chunk_size: Optional[int],
    dry_run: bool,
) -> None:
    """Upsert the JSON array of objects in DATA_FILE into a table."""

    config = ctx.obj["config"]
    if on_duplicate:
        config.set("duplicate_policy", on_duplicate)
    if chunk_size:
        config.set("chunk_size", chunk_size)

    rows = _load_rows(data_file)

    # Get database session
    session = _get_session(config)

    try:
        table = SQLTable(table_name, MetaData(), autoload_with=session.get_bind())
        engine = BulkUpsertEngine.for_session(session, table, config=config.settings)

        if mode == "insert":
            result = engine.insert(
                rows, list(unique), exclude_attributes=exclude_attributes, dry_run=dry_run
            )
        else:
            operation = engine.update if mode == "update" else engine.upsert
            result = operation(
                rows,
                list(unique),
                update_attributes=list(update_attributes) or None,
                exclude_attributes=exclude_attributes,
                dry_run=dry_run,
            )

        _display_upsert_result(result)

        if dry_run:
            session.rollback()
            for sql in result.sql:
                console.print(sql, markup=False)
        else:
            session.commit()
            console.print("[bold green]✓ Upsert completed successfully![/bold green]")

    except (BulkUpsertError, SQLAlchemyError, ValueError) as e:
        session.rollback()
        console.print(f"[bold red]Error: {e}[/bold red]")
        sys.exit(1)
    finally:
        session.close()


@cli.command(name="config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Show the effective configuration."""

    config = ctx.obj["config"]

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    for key, value in config.to_dict().items():
        if key == "custom_settings" and not value:
            continue
        table.add_row(key, "-" if value is None else str(value))

    console.print(table)


def _load_rows(data_file: str) -> list:
    """Read a JSON array of objects."""

    try:
        with open(data_file) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON in {data_file}: {e}")

    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise click.ClickException(f"{data_file} must contain a JSON array of objects")
    return data


def _get_session(config: Config):
    """Get database session from configuration."""

    database_url = config.database_url
    if not database_url:
        raise click.ClickException(
            "No database URL configured. "
            "Set DATABASE_URL environment variable or use --database-url option."
        )

    engine = create_engine(database_url, echo=config.get("echo_sql", False))
    Session = sessionmaker(bind=engine)
    return Session()


def _display_upsert_result(result: UpsertResult) -> None:
    """Display batch counts in a table."""

    prefix = "[DRY RUN] " if result.dry_run else ""

    table = Table(title=f"{prefix}Upsert Results ({result.table})")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="white")

    table.add_row("Created", f"[green]{result.created}[/green]")
    table.add_row("Updated", f"[yellow]{result.updated}[/yellow]")
    table.add_row("Restored", str(result.restored))
    table.add_row("Unchanged", str(result.unchanged))
    table.add_row("Excluded", str(result.excluded))
    table.add_row("Skipped", str(result.skipped))
    table.add_row("Statements", str(result.statements))
    table.add_row("Duration", f"{result.duration:.2f}s")

    console.print(table)


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
