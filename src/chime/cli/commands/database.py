"""Database management commands."""

from __future__ import annotations

import asyncio
import subprocess
import sys
from pathlib import Path
from typing import Annotated

import typer

from chime.cli.console import console, dim, error, success, warning


def _alembic(*args: str) -> int:
    result = subprocess.run(
        [sys.executable, "-m", "alembic", *args],
        capture_output=False,
    )
    return result.returncode


def register(app: typer.Typer) -> None:
    """Register the db command group."""
    db_app = typer.Typer(help="Database management commands")

    @db_app.command("init")
    def db_init(
        config_path: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
    ) -> None:
        """Create any missing tables and mark the schema as current."""
        from chime.config import load_config
        from chime.service import create_database

        chime_config = load_config(config_path)
        database = create_database(chime_config)

        async def do_init() -> None:
            await database.connect()
            try:
                await database.create_all()
            finally:
                await database.disconnect()

        asyncio.run(do_init())
        success(f"Tables ready at {database.url}")

        if _alembic("stamp", "head") != 0:
            warning("Could not stamp migration head (run from the project root)")
            dim("Later 'chime db migrate' runs may try to recreate tables")

    @db_app.command("migrate")
    def db_migrate(
        revision: Annotated[
            str,
            typer.Option(
                "--revision",
                "-r",
                help="Target revision",
            ),
        ] = "head",
    ) -> None:
        """Run database migrations."""
        console.print(f"[bold]Running migrations to {revision}...[/bold]")
        if _alembic("upgrade", revision) == 0:
            success("Migrations completed successfully")
        else:
            error("Migration failed")
            raise typer.Exit(1)

    @db_app.command("status")
    def db_status() -> None:
        """Show migration status."""
        console.print("[bold]Migration status:[/bold]")
        _alembic("current")
        console.print("\n[bold]Pending migrations:[/bold]")
        _alembic("history", "--indicate-current")

    app.add_typer(db_app, name="db")
