#!/usr/bin/env python3
"""
Database management script for the Solana event indexer.
"""

import asyncio
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from alembic.config import Config
from alembic import command
from solana_indexer.core.config import settings
from solana_indexer.core.database import init_database, close_database, get_session_maker, DatabaseManager
from solana_indexer.core.logging import setup_logging
from solana_indexer.database.transaction_repository import TransactionRepository
from solana_indexer.models.event import EventType

console = Console()
app = typer.Typer(help="Database management commands")


@app.command()
def init():
    """Initialize database with tables."""
    async def _init():
        setup_logging()
        await init_database()
        await DatabaseManager.create_tables()
        await close_database()
        console.print("✅ Database initialized successfully!")

    asyncio.run(_init())


@app.command()
def upgrade(revision: str = "head"):
    """Apply migrations."""
    alembic_cfg = Config("alembic.ini")
    command.upgrade(alembic_cfg, revision)

    console.print(f"✅ Database upgraded to: {revision}")


@app.command()
def reset():
    """Reset database (drop all tables)."""
    confirm = typer.confirm("Are you sure you want to drop all tables?")
    if not confirm:
        console.print("❌ Operation cancelled")
        return

    async def _reset():
        setup_logging()
        await init_database()
        await DatabaseManager.drop_tables()
        await close_database()
        console.print("🗑️ All tables dropped!")

    asyncio.run(_reset())


@app.command()
def health():
    """Check database health."""
    async def _health():
        setup_logging()
        await init_database()
        is_healthy = await DatabaseManager.health_check()
        await close_database()
        return is_healthy

    if asyncio.run(_health()):
        console.print("✅ Database is healthy!")
    else:
        console.print("❌ Database health check failed!")
        sys.exit(1)


@app.command()
def status():
    """Show indexing progress for every configured program."""
    async def _status():
        setup_logging()
        await init_database()
        repository = TransactionRepository(get_session_maker())

        table = Table(title="Indexing status")
        table.add_column("Program", style="cyan")
        table.add_column("Address")
        table.add_column("Modes")
        table.add_column("Transactions", justify="right")
        table.add_column("Last slot", justify="right", style="green")

        for program in settings.programs:
            count = await repository.count_transactions(program.id)
            last_slot = await repository.last_indexed_slot(program.id)
            modes = ", ".join(
                mode for mode, enabled in (("historical", program.historical), ("realtime", program.realtime))
                if enabled
            )
            table.add_row(program.name, program.id, modes, str(count), str(last_slot) if last_slot is not None else "-")

        await close_database()
        console.print(table)

    asyncio.run(_status())


@app.command()
def events(
    address: str,
    limit: int = 20,
    offset: int = 0,
    event_type: Optional[str] = typer.Option(None, help="deposit, withdraw or fee_update"),
):
    """Show recent events for a staker address."""
    async def _events():
        setup_logging()
        await init_database()
        repository = TransactionRepository(get_session_maker())
        rows = await repository.events_for_address(
            address,
            limit=limit,
            offset=offset,
            event_type=EventType(event_type) if event_type else None
        )
        await close_database()
        return rows

    rows = asyncio.run(_events())

    table = Table(title=f"Events for {address}")
    table.add_column("Slot", justify="right")
    table.add_column("Type", style="cyan")
    table.add_column("Summary")
    table.add_column("Signature")

    for row in rows:
        table.add_row(str(row.slot), row.event_type.value, row.get_event_summary(), row.signature)

    console.print(table)


if __name__ == "__main__":
    app()
