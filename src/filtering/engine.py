"""Filter engine contract and inline implementation.

``DatasetFilterCore`` owns the synchronous per-dataset state; the inline
engine runs it on the calling thread and the worker engine runs it in a
separate process.
"""

from __future__ import annotations

from typing import Iterable, Protocol

from core.errors import LensFilterError, LensStoreError
from core.logging_config import get_logger
from core.types import BadgeKey, BadgeStats
from filtering.account_index import AccountIndex
from store.record_store import LocalRecordStore

_LOGGER = get_logger(__name__)


class FilterEngine(Protocol):
    """Asynchronous filtering operations bound to one dataset at a time."""

    async def initialize(self, identity: str, total_accounts: int) -> None:
        ...

    async def is_ready(self) -> bool:
        ...

    async def filter_to_indices(
        self,
        query: str,
        badge_filters: Iterable[BadgeKey],
    ) -> list[int]:
        ...

    async def get_stats(self) -> BadgeStats:
        ...

    async def reset(self) -> None:
        ...

    async def dispose(self) -> None:
        ...


class DatasetFilterCore:
    """Synchronous filter state for the currently bound dataset."""

    def __init__(self, store: LocalRecordStore) -> None:
        self._store = store
        self._identity: str | None = None
        self._index: AccountIndex | None = None
        self._stats: dict[BadgeKey, int] | None = None

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def ready(self) -> bool:
        return self._index is not None and self._stats is not None

    def initialize(self, identity: str, total_accounts: int) -> None:
        """Bind to a dataset, discarding state of any other dataset.

        Args:
            identity: Committed dataset identity.
            total_accounts: Account count expected by the caller.

        Raises:
            LensFilterError: If the dataset cannot be loaded.
        """
        if self.ready and identity == self._identity:
            return
        self.reset()
        try:
            index = AccountIndex.from_store(self._store, identity)
            stats = self._store.get_badge_stats(identity)
        except LensStoreError as error:
            raise LensFilterError(
                f"Failed to load dataset {identity} for filtering: {error}"
            ) from error
        if stats is None:
            raise LensFilterError(
                f"Dataset {identity} has no badge stats. Ingest the archive again."
            )
        if len(index) != total_accounts:
            _LOGGER.warning(
                "filter_account_count_mismatch",
                identity=identity,
                expected=total_accounts,
                loaded=len(index),
            )
        self._identity = identity
        self._index = index
        self._stats = stats
        _LOGGER.info("filter_engine_initialized", identity=identity, account_count=len(index))

    def filter_to_indices(self, query: str, badge_filters: Iterable[BadgeKey]) -> list[int]:
        """Run one filter request against the bound dataset.

        Raises:
            LensFilterError: If no dataset is bound.
        """
        return self._require_index().filter_to_indices(query, badge_filters)

    def get_stats(self) -> dict[BadgeKey, int]:
        """Return the precomputed badge stats of the bound dataset.

        Raises:
            LensFilterError: If no dataset is bound.
        """
        if self._stats is None:
            raise _not_initialized_error()
        return dict(self._stats)

    def reset(self) -> None:
        self._identity = None
        self._index = None
        self._stats = None

    def _require_index(self) -> AccountIndex:
        if self._index is None:
            raise _not_initialized_error()
        return self._index


class InlineFilterEngine:
    """Filter engine that evaluates requests on the calling thread."""

    def __init__(self, store: LocalRecordStore) -> None:
        self._core = DatasetFilterCore(store)

    async def initialize(self, identity: str, total_accounts: int) -> None:
        self._core.initialize(identity, total_accounts)

    async def is_ready(self) -> bool:
        return self._core.ready

    async def filter_to_indices(
        self,
        query: str,
        badge_filters: Iterable[BadgeKey],
    ) -> list[int]:
        return self._core.filter_to_indices(query, badge_filters)

    async def get_stats(self) -> BadgeStats:
        return self._core.get_stats()

    async def reset(self) -> None:
        self._core.reset()

    async def dispose(self) -> None:
        self._core.reset()


def _not_initialized_error() -> LensFilterError:
    return LensFilterError(
        "Filter engine is not initialized. Call initialize with a dataset identity first."
    )
