#!/usr/bin/env python3
"""
ROAM Bridge Database Migration CLI

Creates, lists and applies control database migrations.
"""

import asyncio
import re
from datetime import datetime

import asyncpg
import typer
from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.table import Table

from src.migrations.core import (
    MigrationError,
    extract_version_from_filename,
    get_applied_migrations,
    get_control_migrations_dir,
    get_migration_files,
    migrate_database,
)
from src.utils.config import get_control_database_url

load_dotenv()

app = typer.Typer(
    name="migrations",
    help="Database migration management for the ROAM bridge",
    add_completion=False,
)
console = Console()


def log_info(message: str) -> None:
    console.print(f"ℹ️  {message}", style="blue")


def log_success(message: str) -> None:
    console.print(f"✅ {message}", style="green")


def log_warning(message: str) -> None:
    console.print(f"⚠️  {message}", style="yellow")


def log_error(message: str) -> None:
    console.print(f"❌ {message}", style="red")


def slugify(text: str) -> str:
    """Convert text to a slug suitable for filenames."""
    slug = re.sub(r"[^a-z0-9]+", "_", text.lower())
    return re.sub(r"_+", "_", slug).strip("_")


def _database_url() -> str:
    try:
        return get_control_database_url()
    except ValueError as e:
        log_error(str(e))
        raise typer.Exit(1)


@app.command()
def create(
    description: str = typer.Argument(..., help="Brief description of the migration"),
) -> None:
    """Create a new, empty control migration file."""
    target_dir = get_control_migrations_dir()
    target_dir.mkdir(parents=True, exist_ok=True)

    slug = slugify(description)
    if not slug:
        log_error("Description must contain at least one letter or digit")
        raise typer.Exit(1)

    filepath = target_dir / f"{datetime.now().strftime('%Y%m%d%H%M%S')}_{slug}.sql"
    if filepath.exists():
        log_error(f"File already exists: {filepath}")
        raise typer.Exit(1)

    filepath.write_text(
        f"-- Control DB Migration: {description}\n"
        f"-- Created: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n"
    )
    log_success(f"Created migration file: {filepath}")


@app.command("list")
def list_command() -> None:
    """List available migration files."""
    files = get_migration_files(get_control_migrations_dir())
    if not files:
        log_warning("No migrations found")
        return
    for file in files:
        console.print(f"  {file.name}")


@app.command()
def migrate(
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show what would be done without executing"
    ),
    retries: int = typer.Option(3, "--retries", help="Number of connection attempts"),
    timeout: int = typer.Option(300, "--timeout", help="Per-migration timeout in seconds"),
) -> None:
    """Apply pending control database migrations."""
    db_url = _database_url()

    try:
        result = asyncio.run(
            migrate_database(db_url, timeout=timeout, retries=retries, dry_run=dry_run)
        )
    except MigrationError as e:
        log_error(str(e))
        raise typer.Exit(1)

    if dry_run:
        for name in result.pending:
            log_info(f"Would apply {name}")
        log_info(f"{len(result.pending)} migration(s) pending")
        return

    for name in result.applied:
        log_success(f"Applied {name}")

    if not result.success:
        log_error(f"Migration {result.failed} failed; {len(result.pending)} left pending")
        raise typer.Exit(1)

    if not result.applied:
        log_info("Control database is up to date")


@app.command()
def status() -> None:
    """Show which migrations have been applied to the control database."""
    asyncio.run(show_migration_status(_database_url()))


async def show_migration_status(db_url: str) -> None:
    files = get_migration_files(get_control_migrations_dir())

    try:
        conn = await asyncpg.connect(db_url)
    except (OSError, asyncpg.PostgresError) as e:
        log_error(f"Cannot connect to control database: {e}")
        raise typer.Exit(1)

    try:
        applied = await get_applied_migrations(conn)
    finally:
        await conn.close()

    table = Table(title="Control Database", box=box.SIMPLE)
    table.add_column("Version")
    table.add_column("File")
    table.add_column("Status")
    for file in files:
        version = extract_version_from_filename(file.name)
        table.add_row(
            version,
            file.name,
            "[green]applied[/green]" if version in applied else "[yellow]pending[/yellow]",
        )
    console.print(table)


if __name__ == "__main__":
    app()
