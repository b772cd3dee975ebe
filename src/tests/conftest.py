import datetime
from typing import AsyncGenerator, Awaitable, Callable

import asyncpg
import pytest
import pytest_asyncio
from testcontainers.postgres import PostgresContainer

from hybridview.cli import VIEWS_DIR
from hybridview.migrate import run_all_migrations
from hybridview.models import ViewDefinition
from hybridview.templates import load_definitions
from tests.utils import FakePool


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def postgres() -> AsyncGenerator[PostgresContainer, None]:
    with PostgresContainer("postgres:16", driver=None) as postgres:
        conn: asyncpg.Connection = await asyncpg.connect(postgres.get_connection_url())
        try:
            await run_all_migrations(conn)
        finally:
            await conn.close()
        yield postgres


@pytest_asyncio.fixture
async def connection(postgres) -> AsyncGenerator[asyncpg.Connection, None]:
    conn: asyncpg.Connection = await asyncpg.connect(postgres.get_connection_url())
    try:
        yield conn
        await conn.execute("""
            DO $$
            DECLARE r record;
            BEGIN
                FOR r IN SELECT matviewname FROM pg_matviews WHERE schemaname = 'public' LOOP
                    EXECUTE format('DROP MATERIALIZED VIEW IF EXISTS %I CASCADE', r.matviewname);
                END LOOP;
            END $$;
        """)
        await conn.execute("TRUNCATE TABLE page_view RESTART IDENTITY")
    finally:
        await conn.close()


@pytest_asyncio.fixture
async def pool(postgres, connection: asyncpg.Connection) -> AsyncGenerator[asyncpg.Pool, None]:
    # Depends on `connection` so that its cleanup runs after the pool is closed
    pool = await asyncpg.create_pool(postgres.get_connection_url(), min_size=1, max_size=4)
    try:
        yield pool
    finally:
        await pool.close()


@pytest_asyncio.fixture
async def page_view(
    connection: asyncpg.Connection,
) -> Callable[..., Awaitable[None]]:
    """Insert page views: `await page_view(timestamp, post_id="p1", count=1)`"""

    async def fn(timestamp: datetime.datetime, post_id: str = "p1", count: int = 1) -> None:
        await connection.executemany(
            'INSERT INTO page_view (post_id, user_id, "timestamp") VALUES ($1, $2, $3)',
            [(post_id, f"u{i}", timestamp) for i in range(count)],
        )

    return fn


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()


@pytest.fixture
def daily_post_views() -> ViewDefinition:
    (definition,) = [d for d in load_definitions(VIEWS_DIR) if d.identifier == "daily_post_views"]
    return definition
