import asyncio
import logging

import asyncpg

from hybridview import settings
from hybridview.migrate import run_all_migrations

logger = logging.getLogger(__name__)


async def drop_schema(connection: asyncpg.Connection) -> None:
    """Recreate an empty `public` schema. Materialized views and their indexes go with it."""
    async with connection.transaction():
        await connection.execute("DROP SCHEMA public CASCADE; CREATE SCHEMA public")
    logger.info("Recreated schema public")


async def reset(dsn: str = settings.DSN) -> None:
    """Drop the database schema and run all migrations.

    Migrations run on a fresh connection, so no cached statement or type from the old schema
    survives.
    """
    connection = await asyncpg.connect(dsn)
    try:
        await drop_schema(connection)
    finally:
        await connection.close()

    connection = await asyncpg.connect(dsn)
    try:
        await run_all_migrations(connection)
    finally:
        await connection.close()


if __name__ == "__main__":
    asyncio.run(reset())
