"""Caller-side filter session with debounce and supersede.

Query edits are debounced; badge filter changes are issued at once.
A completed request is delivered only if no newer request was issued
after it and the session is still open.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Iterable

from core.cancellation import CancelToken
from core.errors import LensFilterError
from core.logging_config import get_logger
from core.types import BadgeKey
from filtering.engine import FilterEngine

_LOGGER = get_logger(__name__)

ResultCallback = Callable[[list[int]], None]


class FilterSession:
    """Tracks the latest (query, badge filters) pair for one dataset view.

    Must be used from a running event loop.
    """

    def __init__(
        self,
        engine: FilterEngine,
        debounce_seconds: float,
        on_result: ResultCallback | None = None,
    ) -> None:
        self._engine = engine
        self._debounce_seconds = debounce_seconds
        self._on_result = on_result
        self._query = ""
        self._badge_filters: frozenset[BadgeKey] = frozenset()
        self._token: CancelToken | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._request_task: asyncio.Task[None] | None = None
        self._closed = False
        self.latest_indices: list[int] | None = None

    @property
    def query(self) -> str:
        return self._query

    @property
    def badge_filters(self) -> frozenset[BadgeKey]:
        return self._badge_filters

    def set_query(self, query: str) -> None:
        """Record a query edit and issue it after the debounce delay."""
        if self._closed:
            return
        self._query = query
        self._supersede()
        self._debounce_task = asyncio.get_running_loop().create_task(self._issue_after_delay())

    def set_badge_filters(self, badge_filters: Iterable[BadgeKey]) -> None:
        """Replace the badge filter set and issue a request immediately."""
        if self._closed:
            return
        self._badge_filters = frozenset(badge_filters)
        self._supersede()
        self._issue()

    def refresh(self) -> None:
        """Issue the current (query, badge filters) pair immediately."""
        if self._closed:
            return
        self._supersede()
        self._issue()

    async def wait_until_idle(self) -> None:
        """Wait for the pending debounce and request, if any, to finish."""
        if self._debounce_task is not None:
            await asyncio.gather(self._debounce_task, return_exceptions=True)
        if self._request_task is not None:
            await asyncio.gather(self._request_task, return_exceptions=True)

    def close(self) -> None:
        """Stop delivering results; in-flight completions become no-ops."""
        self._closed = True
        self._supersede()

    def _supersede(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    async def _issue_after_delay(self) -> None:
        await asyncio.sleep(self._debounce_seconds)
        self._debounce_task = None
        self._issue()

    def _issue(self) -> None:
        token = CancelToken()
        self._token = token
        self._request_task = asyncio.get_running_loop().create_task(
            self._run_request(token, self._query, self._badge_filters)
        )

    async def _run_request(
        self,
        token: CancelToken,
        query: str,
        badge_filters: frozenset[BadgeKey],
    ) -> None:
        try:
            indices = await self._engine.filter_to_indices(query, badge_filters)
        except LensFilterError as error:
            _LOGGER.error("filter_request_failed", query=query, error=str(error))
            return
        if token.cancelled or self._closed:
            return
        self.latest_indices = indices
        if self._on_result is not None:
            self._on_result(indices)
