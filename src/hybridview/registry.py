import asyncio
import logging
from collections.abc import Coroutine, Iterator, Sequence
from typing import Any

import asyncpg

from hybridview import settings, sql
from hybridview.models import IndexGenerator, QueryGenerator, ViewDefinition, ViewStatus
from hybridview.view import HybridView

logger = logging.getLogger(__name__)


class ViewRegistry:
    """Maps view identifiers to HybridViews and owns the background work they spawn.

    Construct one per process and pass it to whatever needs it (the refresh job, query call
    sites). With `pool=None` or `enabled=False` registration is a no-op, which is how tests and
    deployments without an analytics database run.
    """

    def __init__(
        self,
        pool: asyncpg.Pool | None,
        *,
        enabled: bool = settings.ENABLED,
        prefix: str = settings.VIEW_NAME_PREFIX,
    ) -> None:
        self.pool = pool
        self.enabled = enabled
        self.prefix = prefix
        self._views: dict[str, HybridView] = {}
        self._tasks: set[asyncio.Task] = set()
        self._pending: list[HybridView] = []

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._views

    def __iter__(self) -> Iterator[HybridView]:
        return iter(list(self._views.values()))

    def __len__(self) -> int:
        return len(self._views)

    def get(self, identifier: str) -> HybridView | None:
        return self._views.get(identifier)

    def register(self, definition: ViewDefinition) -> asyncio.Task | None:
        """Add a view and start creating its materialized view and indexes in the background.

        Registering an identifier again replaces the previous view. Views registered before the
        event loop runs (at import time, say) are queued and ensured on the first `join()` or
        `refresh_all()`. Returns the background task, or None if nothing was started.
        """
        if not self.enabled:
            logger.info("Hybrid views are disabled, ignoring %s", definition.identifier)
            return None
        if self.pool is None:
            logger.info("No analytics DB configured, ignoring hybrid view %s", definition.identifier)
            return None

        view = HybridView(definition, self.pool, prefix=self.prefix)
        self._views[definition.identifier] = view
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, deferring creation of %s", view.name)
            self._pending.append(view)
            return None
        return self._spawn_ensure(view)

    def register_view(
        self,
        identifier: str,
        query_generator: QueryGenerator,
        index_generators: Sequence[IndexGenerator] = (),
    ) -> asyncio.Task | None:
        return self.register(ViewDefinition(identifier, query_generator, tuple(index_generators)))

    def refresh_all(self) -> list[asyncio.Task]:
        """Start an independent refresh of every view, followed by a VACUUM ANALYZE.

        Returns the spawned tasks. A failing view is logged and doesn't affect the others.
        """
        self._start_pending()
        tasks = [self._spawn(view.refresh(), f"refresh {view.name}") for view in self]

        if self.pool is None:
            logger.info("No analytics DB configured, not performing VACUUM ANALYZE")
            return tasks

        tasks.append(self._spawn(self.pool.execute(sql.MAINTENANCE), "VACUUM ANALYZE"))
        return tasks

    async def drop_stale_versions(self) -> dict[str, list[str]]:
        result = {}
        for view in self:
            result[view.identifier] = await view.drop_stale_versions()
        return result

    async def status(self) -> list[ViewStatus]:
        return [await view.status() for view in self]

    async def join(self) -> None:
        """Start deferred registrations and wait for all background work started so far"""
        self._start_pending()
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._pending.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _start_pending(self) -> None:
        pending, self._pending = self._pending, []
        for view in pending:
            # Skip views replaced by a later registration
            if self._views.get(view.identifier) is view:
                self._spawn_ensure(view)

    def _spawn_ensure(self, view: HybridView) -> asyncio.Task:
        return self._spawn(self._ensure_view_and_indexes(view), f"ensure {view.name}")

    @staticmethod
    async def _ensure_view_and_indexes(view: HybridView) -> None:
        await view.ensure()
        await view.ensure_indexes()

    def _spawn(self, coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task:
        task = asyncio.create_task(self._supervise(coro, description), name=description)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _supervise(coro: Coroutine[Any, Any, Any], description: str) -> None:
        try:
            await coro
        except Exception:
            logger.exception("Background task failed: %s", description)
