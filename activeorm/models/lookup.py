"""
Batched primary-key lookups.

Every id requested during one event-loop tick is fetched with a single
``where pk in (...)`` query. Cached rows are served first when the model
caches. Results are raw rows; turning them into records is left to the
caller.
"""

import asyncio
import logging
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from activeorm.models.model import Model

logger = logging.getLogger(__name__)


class LookupIds:
    """
    Id batcher for one model.

    Example:
        >>> rows = await model._lookup.lookup([1, 2])
        >>> rows[0]["id"]
        1
    """

    def __init__(self, model: "Model"):
        self.model = model
        self._pending: dict[Any, asyncio.Future] = {}
        self._scheduled = False
        self._tasks: set[asyncio.Task] = set()

    async def lookup(self, ids: list[Any]) -> list[Optional[dict[str, Any]]]:
        """
        Fetch rows by primary key.

        Args:
            ids: Primary key values

        Returns:
            One row per id, in request order; None where no row exists
        """
        loop = asyncio.get_running_loop()
        futures = []
        for pk in ids:
            future = self._pending.get(pk)
            if future is None:
                future = loop.create_future()
                self._pending[pk] = future
            futures.append(future)
        if not self._scheduled:
            self._scheduled = True
            loop.call_soon(self._dispatch)
        return list(await asyncio.gather(*futures))

    def _dispatch(self) -> None:
        pending, self._pending = self._pending, {}
        self._scheduled = False
        task = asyncio.ensure_future(self._fetch(pending))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fetch(self, pending: dict[Any, asyncio.Future]) -> None:
        model = self.model
        try:
            rows: dict[Any, dict[str, Any]] = {}
            missing = list(pending)
            cache = model.cache
            if cache is not None:
                marker = model._eviction_marker()
                for pk in missing:
                    cached = cache.get(model.cache_key(pk), marker)
                    if cached is not None:
                        rows[pk] = cached
                missing = [pk for pk in missing if pk not in rows]
                logger.debug(f"{model.name} lookup: {len(rows)} cached, {len(missing)} to fetch")

            if missing:
                column = model.primary_field.column
                columns = [f"{model.table}.{c}" for c in model.columns]
                fetched = await (
                    model.repo.query_builder(model.table)
                    .select(columns)
                    .where({f"{model.table}.{column}": missing})
                )
                for row in fetched:
                    rows[row[column]] = row
                    if cache is not None:
                        cache.set(model.cache_key(row[column]), row, model.cache_ttl)
        except Exception as e:
            for future in pending.values():
                if not future.done():
                    future.set_exception(e)
            return
        for pk, future in pending.items():
            if not future.done():
                future.set_result(rows.get(pk))
