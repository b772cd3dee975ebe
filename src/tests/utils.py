import datetime
import re
from typing import Any

import asyncpg


def utc(*args: int) -> datetime.datetime:
    return datetime.datetime(*args, tzinfo=datetime.timezone.utc)


def normalize_sql(text: str) -> str:
    return " ".join(text.split())


def query_generator(table: str = "page_view"):
    """Daily count of `table` rows, the same shape as hybridview/views/daily_post_views.sql.j2"""

    def generate(after: datetime.datetime, materialized: bool) -> str:
        return f"""
            SELECT
                count(*) AS view_count,
                date_trunc('day', "timestamp", 'UTC') + interval '1 day' AS window_end
            FROM {table}
            WHERE "timestamp" > '{after.isoformat()}'
                  {'AND "timestamp" < now()' if materialized else ''}
            GROUP BY date_trunc('day', "timestamp", 'UTC')
        """

    return generate


class FakePool:
    """In-memory stand-in for asyncpg.Pool that understands the statements HybridView issues.

    `window_ends` are the values a newly created materialized view will contain. Statements
    containing a key of `failures` raise the mapped exception.
    """

    def __init__(self, window_ends: list[datetime.datetime] | None = None) -> None:
        self.window_ends = list(window_ends or [])
        self.views: dict[str, list[datetime.datetime]] = {}
        self.active: list[tuple[int, datetime.timedelta, str]] = []
        self.failures: dict[str, Exception] = {}
        self.executed: list[str] = []

    def statements(self, prefix: str) -> list[str]:
        return [q for q in self.executed if q.lstrip().upper().startswith(prefix.upper())]

    def _maybe_fail(self, query: str) -> None:
        for fragment, exc in self.failures.items():
            if fragment in query:
                raise exc

    async def execute(self, query: str, *args: Any) -> str:
        self.executed.append(query)
        self._maybe_fail(query)
        if match := re.match(r'CREATE MATERIALIZED VIEW "([^"]+)"', query):
            name = match.group(1)
            if name in self.views:
                raise asyncpg.DuplicateTableError(f'relation "{name}" already exists')
            self.views[name] = list(self.window_ends)
            return "SELECT"
        if match := re.match(r'DROP MATERIALIZED VIEW IF EXISTS "([^"]+)"', query):
            self.views.pop(match.group(1), None)
            return "DROP MATERIALIZED VIEW"
        return "OK"

    async def fetchrow(self, query: str, *args: Any) -> tuple | None:
        self._maybe_fail(query)
        if "pg_matviews" in query:
            return (1,) if args[0] in self.views else None
        raise NotImplementedError(query)

    async def fetch(self, query: str, *args: Any) -> list:
        self._maybe_fail(query)
        if "pg_stat_activity" in query:
            return [row for row in self.active if re.search(args[0], row[2], re.IGNORECASE)]
        if "pg_matviews" in query:
            return [{"matviewname": name} for name in sorted(self.views) if re.search(args[0], name)]
        raise NotImplementedError(query)

    async def fetchval(self, query: str, *args: Any) -> Any:
        self._maybe_fail(query)
        match = re.search(r'FROM "([^"]+)"', query)
        if match is None:
            raise NotImplementedError(query)
        name = match.group(1)
        if name not in self.views:
            raise asyncpg.UndefinedTableError(f'relation "{name}" does not exist')
        distinct = sorted(set(self.views[name]), reverse=True)
        return distinct[1] if len(distinct) >= 2 else None
