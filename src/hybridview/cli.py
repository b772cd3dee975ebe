"""
Hybrid views CLI
Materialized aggregates over an event log, merged with a live query over the tail
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import asyncpg
from rich.console import Console
from rich.table import Table

from hybridview import settings
from hybridview.log import configure_logging
from hybridview.migrate import run_all_migrations
from hybridview.registry import ViewRegistry
from hybridview.reset import drop_schema, reset
from hybridview.scheduler import refresh_job
from hybridview.templates import load_definitions

VIEWS_DIR = Path(__file__).parent / "views"

logger = logging.getLogger(__name__)
console = Console()


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with nested subcommands"""
    parser = argparse.ArgumentParser(
        description="""
╭─────────────────────────────────────────────────────────────────╮
│ Hybrid views                                                    │
│ Materialized aggregates + live tail, versioned by query hash    │
╰─────────────────────────────────────────────────────────────────╯
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--dsn", default=settings.DSN, help="Analytics database DSN")
    parser.add_argument(
        "--views-dir",
        type=Path,
        default=VIEWS_DIR,
        help=f"Directory with view templates (default: {VIEWS_DIR})",
    )
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ===== DB COMMAND GROUP =====
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database operations")
    db_subparsers.add_parser("drop", help="Drop and recreate the public schema")
    db_subparsers.add_parser("migrate", help="Run database migrations")
    db_subparsers.add_parser("reset", help="Drop and migrate (drop + migrate)")

    # ===== VIEWS COMMAND GROUP =====
    views_parser = subparsers.add_parser("views", help="Hybrid view operations")
    views_subparsers = views_parser.add_subparsers(dest="views_command", help="View operations")
    views_subparsers.add_parser("ensure", help="Create missing materialized views and indexes")
    views_subparsers.add_parser("refresh", help="Refresh all materialized views")
    views_subparsers.add_parser("list", help="Show views, their versions and crossover times")
    views_subparsers.add_parser("drop-stale", help="Drop materialized views of old query versions")
    views_query_parser = views_subparsers.add_parser("query", help="Show the hybrid query or its rows")
    views_query_parser.add_argument("identifier", help="View identifier")
    views_query_parser.add_argument("--sql", action="store_true", help="Only print the composed SQL")
    views_query_parser.add_argument("--limit", type=int, default=50, help="Rows to show (default: 50)")

    # ===== SERVE COMMAND =====
    serve_parser = subparsers.add_parser("serve", help="Keep refreshing views periodically")
    serve_parser.add_argument(
        "--interval",
        type=float,
        default=settings.REFRESH_INTERVAL,
        help=f"Seconds between refreshes (default: {settings.REFRESH_INTERVAL:g})",
    )

    return parser


async def handle_db_commands(args: argparse.Namespace) -> None:
    """Handle database management commands"""
    if args.db_command == "reset":
        await reset(args.dsn)
        return

    connection = await asyncpg.connect(args.dsn)
    try:
        if args.db_command == "drop":
            await drop_schema(connection)
        elif args.db_command == "migrate":
            await run_all_migrations(connection)
    finally:
        await connection.close()


def build_registry(pool: asyncpg.Pool, views_dir: Path) -> ViewRegistry:
    # The CLI is an explicit request to work on the views, so ignore HYBRIDVIEW_ENABLED
    registry = ViewRegistry(pool, enabled=True)
    for definition in load_definitions(views_dir):
        registry.register(definition)
    return registry


def print_status_table(statuses) -> None:
    table = Table(title="Hybrid views")
    table.add_column("Identifier", style="cyan")
    table.add_column("Materialized view")
    table.add_column("Exists")
    table.add_column("Crossover (UTC)")
    for status in statuses:
        table.add_row(
            status.identifier,
            status.materialized_view_name,
            "✓" if status.exists else "✗",
            status.crossover_time.isoformat() if status.crossover_time else "-",
        )
    console.print(table)


async def handle_views_commands(args: argparse.Namespace, pool: asyncpg.Pool) -> None:
    """Handle view commands"""
    registry = build_registry(pool, args.views_dir)
    try:
        # Registration already started ensure() for every view
        await registry.join()

        if args.views_command == "refresh":
            registry.refresh_all()
            await registry.join()
        elif args.views_command == "list":
            print_status_table(await registry.status())
        elif args.views_command == "drop-stale":
            for identifier, dropped in (await registry.drop_stale_versions()).items():
                console.print(f"{identifier}: dropped {len(dropped)} old version(s)")
        elif args.views_command == "query":
            view = registry.get(args.identifier)
            if view is None:
                console.print(f"[red]Error: unknown view {args.identifier!r}[/red]")
                sys.exit(1)
            if args.sql:
                console.print(await view.composed_query())
                return
            rows = await view.fetch()
            table = Table(title=f"{args.identifier} ({len(rows)} rows)")
            if rows:
                for column in rows[0].keys():
                    table.add_column(column)
            for row in rows[: args.limit]:
                table.add_row(*(str(value) for value in row.values()))
            console.print(table)
    finally:
        await registry.close()


async def serve(args: argparse.Namespace, pool: asyncpg.Pool) -> None:
    registry = build_registry(pool, args.views_dir)
    job = refresh_job(registry, interval=args.interval)
    try:
        await registry.join()
        await job.start()
    finally:
        await job.stop()
        await registry.close()


async def run(args: argparse.Namespace) -> None:
    if args.command == "db":
        await handle_db_commands(args)
        return

    pool = await asyncpg.create_pool(args.dsn)
    try:
        if args.command == "views":
            await handle_views_commands(args, pool)
        elif args.command == "serve":
            await serve(args, pool)
    finally:
        await pool.close()


def main() -> None:
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)
    if args.command == "db" and not args.db_command:
        print("Error: No database command specified. Use 'hybridview db --help' for available commands.")
        sys.exit(1)
    if args.command == "views" and not args.views_command:
        print("Error: No views command specified. Use 'hybridview views --help' for available commands.")
        sys.exit(1)

    configure_logging(args.log_level)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
