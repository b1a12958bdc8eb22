"""
At-most-one concurrent run per query within this process.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Set
import logging

from core.exceptions import QueryAlreadyRunning

logger = logging.getLogger(__name__)


class QueryRunRegistry:
    """
    Set of query ids with a run in progress.

    The check and the insert happen without an intervening await, so on a
    single event loop they are atomic.
    """

    def __init__(self):
        self._running: Set[int] = set()

    def __len__(self) -> int:
        return len(self._running)

    def is_running(self, query_id: int) -> bool:
        return query_id in self._running

    @asynccontextmanager
    async def hold(self, query_id: int) -> AsyncIterator[None]:
        if query_id in self._running:
            raise QueryAlreadyRunning(
                f"Query {query_id} is already running",
                context={"query_id": query_id}
            )
        self._running.add(query_id)
        try:
            yield
        finally:
            self._running.discard(query_id)


# Shared by the API and the scheduler
query_runs = QueryRunRegistry()
