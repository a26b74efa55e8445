"""Filter engine selection with transparent inline fallback."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, TypeVar

from core.config import LensConfig
from core.errors import LensFilterError, LensWorkerError
from core.logging_config import get_logger
from core.types import BadgeKey, BadgeStats
from filtering.engine import FilterEngine, InlineFilterEngine
from filtering.worker_engine import WorkerFilterEngine, worker_supported
from store.record_store import LocalRecordStore

_LOGGER = get_logger(__name__)
_ResultT = TypeVar("_ResultT")


class ResilientFilterEngine:
    """Filter engine that swaps a failed primary engine for an inline one.

    Worker failures (start-up, timeout, crash) replace the primary engine
    with an ``InlineFilterEngine`` re-initialized for the bound dataset, and
    the failed request is retried once on it. Errors from the fallback
    propagate as ``LensFilterError``.
    """

    def __init__(self, primary: FilterEngine, store: LocalRecordStore) -> None:
        self._engine = primary
        self._store = store
        self._fallback_active = isinstance(primary, InlineFilterEngine)
        self._identity: str | None = None
        self._total_accounts = 0

    @property
    def using_fallback(self) -> bool:
        return self._fallback_active

    @property
    def engine_name(self) -> str:
        return type(self._engine).__name__

    async def initialize(self, identity: str, total_accounts: int) -> None:
        await self._run(
            lambda engine: engine.initialize(identity, total_accounts),
            rebind=False,
        )
        self._identity = identity
        self._total_accounts = total_accounts

    async def is_ready(self) -> bool:
        return await self._run(lambda engine: engine.is_ready())

    async def filter_to_indices(
        self,
        query: str,
        badge_filters: Iterable[BadgeKey],
    ) -> list[int]:
        badges = frozenset(badge_filters)
        return await self._run(lambda engine: engine.filter_to_indices(query, badges))

    async def get_stats(self) -> BadgeStats:
        return await self._run(lambda engine: engine.get_stats())

    async def reset(self) -> None:
        await self._run(lambda engine: engine.reset())
        self._identity = None
        self._total_accounts = 0

    async def dispose(self) -> None:
        await self._engine.dispose()
        self._identity = None

    async def _run(
        self,
        call: Callable[[Any], Awaitable[_ResultT]],
        rebind: bool = True,
    ) -> _ResultT:
        try:
            return await call(self._engine)
        except LensWorkerError as error:
            if self._fallback_active:
                raise LensFilterError(f"Inline filter engine failed: {error}") from error
            await self._fall_back(error, rebind)
        return await call(self._engine)

    async def _fall_back(self, error: LensWorkerError, rebind: bool) -> None:
        _LOGGER.warning(
            "filter_engine_fallback",
            failed_engine=self.engine_name,
            identity=self._identity,
            error=str(error),
        )
        failed = self._engine
        self._engine = InlineFilterEngine(self._store)
        self._fallback_active = True
        try:
            await failed.dispose()
        except LensWorkerError as dispose_error:
            _LOGGER.warning("filter_engine_dispose_failed", error=str(dispose_error))
        # A failed initialize is retried on its own dataset, not the previous one.
        if rebind and self._identity is not None:
            await self._engine.initialize(self._identity, self._total_accounts)


def create_filter_engine(config: LensConfig, store: LocalRecordStore) -> ResilientFilterEngine:
    """Build the filter engine selected by config and runtime capability.

    Args:
        config: Runtime configuration; ``filter_engine_mode`` picks the engine.
        store: Record store the engine reads datasets from.

    Returns:
        Engine that prefers process isolation and falls back to inline.
    """
    if config.filter_engine_mode == "inline":
        return ResilientFilterEngine(InlineFilterEngine(store), store)
    if not worker_supported():
        _LOGGER.warning("filter_worker_unsupported", mode=config.filter_engine_mode)
        return ResilientFilterEngine(InlineFilterEngine(store), store)
    return ResilientFilterEngine(WorkerFilterEngine(config), store)
