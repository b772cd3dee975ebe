import datetime
import logging
from collections.abc import AsyncIterator
from typing import Any

import asyncpg

from hybridview import settings, sql
from hybridview.identity import derive_name, stale_name_pattern, version_hash
from hybridview.models import EPOCH, ActiveQuery, ViewDefinition, ViewStatus

logger = logging.getLogger(__name__)


def to_utc(value: datetime.date | datetime.datetime) -> datetime.datetime:
    """Normalize a window_end value to an aware UTC datetime.

    `timestamp` columns come back naive and are taken to be in UTC, `timestamptz` columns come
    back aware in whatever zone asyncpg chose, `date` columns become midnight UTC.
    """
    if not isinstance(value, datetime.datetime):
        return datetime.datetime.combine(value, datetime.time(), tzinfo=datetime.timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class HybridView:
    """A materialized aggregate over an event log, combined with a live query over its tail.

    Reads go through `composed_query()`: rows up to the crossover time come from the
    materialized view, rows after it are computed live. The materialized view is named after a
    hash of its query, so editing the query creates a fresh view on the next `ensure()`.

    `pool` is anything with asyncpg's `execute`/`fetch`/`fetchrow`/`fetchval` coroutines,
    normally an `asyncpg.Pool` shared by all views.
    """

    def __init__(
        self,
        definition: ViewDefinition,
        pool: asyncpg.Pool,
        prefix: str = settings.VIEW_NAME_PREFIX,
    ) -> None:
        self.definition = definition
        self.pool = pool
        self.prefix = prefix
        # Filter by a date in the distant past to include all rows
        self.all_time_query = definition.query_generator(EPOCH, True)
        self.name = derive_name(definition.identifier, self.all_time_query, prefix)
        self.version_hash = version_hash(self.all_time_query)

    @property
    def identifier(self) -> str:
        return self.definition.identifier

    def __repr__(self) -> str:
        return f"HybridView({self.identifier!r}, name={self.name!r})"

    # Lifecycle

    async def exists(self) -> bool:
        return await self.pool.fetchrow(sql.VIEW_EXISTS, self.name) is not None

    async def active_queries(self, verb: str) -> list[ActiveQuery]:
        """Statements of kind `verb` ("CREATE" or "REFRESH") currently running against this view.

        This is an advisory check on query text: two processes can both see an empty result
        and go ahead at the same time, so the statements that follow must tolerate that.
        """
        rows = await self.pool.fetch(sql.ACTIVE_QUERIES, sql.active_query_pattern(verb, self.name))
        return [ActiveQuery(*row) for row in rows]

    async def is_create_in_progress(self) -> bool:
        return bool(await self.active_queries("CREATE"))

    async def is_refresh_in_progress(self) -> bool:
        return bool(await self.active_queries("REFRESH"))

    async def ensure(self) -> None:
        """Create the materialized view unless it exists or is being created elsewhere"""
        if await self.exists():
            return

        if await self.is_create_in_progress():
            logger.info(
                "Materialized view for %s is already in the process of being created",
                self.identifier,
            )
            return

        try:
            await self.pool.execute(sql.create_view(self.name, self.all_time_query))
        except (asyncpg.DuplicateTableError, asyncpg.UniqueViolationError):
            # Another process won the race between our checks and the CREATE
            logger.info("Materialized view %s was created concurrently", self.name)
            return
        logger.info("Created materialized view %s", self.name)

    async def ensure_indexes(self) -> None:
        if not await self.exists():
            logger.error("Cannot ensure indexes for %r as it doesn't exist", self.name)
            return

        for i, index_generator in enumerate(self.definition.index_generators):
            try:
                await self.pool.execute(index_generator(self.name))
            except Exception:
                logger.exception("Failed to apply index generator %d for %r", i, self.name)

    async def refresh(self) -> None:
        if not await self.exists():
            await self.ensure()
            await self.ensure_indexes()
            return

        if await self.is_refresh_in_progress():
            logger.info(
                "Materialized view %s is already in the process of being refreshed", self.name
            )
            return

        await self.ensure_indexes()
        try:
            await self.pool.execute(sql.refresh_view(self.name, concurrently=True))
        except asyncpg.PostgresError:
            logger.error(
                "Failed to refresh materialized view %r. This may be because there is no unique "
                "index, which is required to refresh CONCURRENTLY (without locking out reads)",
                self.name,
            )
            raise
        logger.info("Refreshed materialized view %s", self.name)

    async def drop_stale_versions(self) -> list[str]:
        """Drop materialized views left behind by earlier versions of the query.

        Best effort: failures are logged and skipped. Returns the names that were dropped.
        """
        try:
            rows = await self.pool.fetch(
                sql.MATCHING_VIEWS, stale_name_pattern(self.identifier, self.prefix)
            )
        except Exception:
            logger.exception("Failed to list old versions of %s", self.identifier)
            return []

        dropped = []
        for row in rows:
            view_name = row["matviewname"]
            if view_name == self.name:
                continue
            try:
                await self.pool.execute(sql.drop_view(view_name))
            except Exception:
                logger.exception("Failed to drop old materialized view %r", view_name)
                continue
            logger.info("Dropped old materialized view %s", view_name)
            dropped.append(view_name)
        return dropped

    # Reading

    async def get_crossover_time(self) -> datetime.datetime | None:
        """Return the penultimate window_end, or None if there's no safe crossover yet.

        The last window may contain incomplete data so it's never trusted. None is returned if
        the view doesn't exist, the query fails or there are fewer than two windows.
        """
        try:
            window_end = await self.pool.fetchval(sql.crossover_time(self.name))
        except asyncpg.PostgresError as exc:
            # This can happen if the view doesn't exist yet
            logger.debug("Could not get crossover time for %s: %s", self.name, exc)
            return None
        if window_end is None:
            return None
        return to_utc(window_end)

    async def composed_query(self) -> str:
        crossover_time = await self.get_crossover_time()

        if crossover_time is None:
            if not await self.exists():
                logger.info(
                    "Falling back to live view: materialized view for %s doesn't exist yet",
                    self.identifier,
                )
            else:
                logger.error(
                    "Falling back to live view: unexpected error getting crossover time for %s",
                    self.identifier,
                )
            return sql.live_query(self.definition.query_generator(EPOCH, False))

        return sql.hybrid_query(
            self.name, crossover_time, self.definition.query_generator(crossover_time, False)
        )

    async def fetch(self, *args: Any) -> list[asyncpg.Record]:
        return await self.pool.fetch(sql.select_all(await self.composed_query()), *args)

    async def stream(
        self, connection: asyncpg.Connection, *args: Any
    ) -> AsyncIterator[asyncpg.Record]:
        """Iterate over the composed query with a server-side cursor"""
        query = sql.select_all(await self.composed_query())
        async with connection.transaction():
            async for record in connection.cursor(
                query, *args, prefetch=settings.PREFETCH_COUNT
            ):
                yield record

    async def status(self) -> ViewStatus:
        return ViewStatus(
            identifier=self.identifier,
            materialized_view_name=self.name,
            exists=await self.exists(),
            crossover_time=await self.get_crossover_time(),
        )
