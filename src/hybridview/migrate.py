import asyncio
import logging
from pathlib import Path

import asyncpg
from jinja2 import Template

from hybridview import settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


async def run_all_migrations(
    connection: asyncpg.Connection, migrations_dir: Path = MIGRATIONS_DIR
) -> None:
    """Run all database migrations (`*.sql` as-is, `*.sql.j2` rendered with Jinja2)."""
    migration_files = sorted(
        [f for f in migrations_dir.iterdir() if f.suffix == ".sql" or f.name.endswith(".sql.j2")]
    )
    logger.info("Found %d migration files", len(migration_files))
    for migration_file in migration_files:
        logger.info("Running migration: %s", migration_file.name)
        content = migration_file.read_text()
        if migration_file.suffix == ".j2":
            template = Template(content)
            content = template.render(settings=settings)
        await connection.execute(content)

    logger.info("All migrations completed successfully")


async def main() -> None:
    connection = await asyncpg.connect(settings.DSN)
    try:
        await run_all_migrations(connection)
    finally:
        await connection.close()


if __name__ == "__main__":
    asyncio.run(main())
