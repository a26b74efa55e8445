"""Windowed, cache-backed account source.

This module resolves account indices to records for a virtualized list.
Records are fetched from the store in fixed-size slices on a thread pool
and kept in a bounded cache evicted by last-touch time.
"""

from __future__ import annotations

import asyncio
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable

from core.constants import SLICE_EVICTION_FACTOR
from core.errors import LensStoreError
from core.logging_config import get_logger
from core.types import AccountRecord, IndexSlice
from store.record_store import LocalRecordStore

_LOGGER = get_logger(__name__)

SliceListener = Callable[[int, int], None]


class WindowedAccountSource:
    """Slice cache over one committed dataset.

    ``get_account`` never blocks: a miss schedules a background fetch and
    returns None, and ``on_slice_loaded`` fires once the slice is resident.
    """

    def __init__(
        self,
        store: LocalRecordStore,
        slice_size: int = 500,
        max_slices: int = 20,
        executor: ThreadPoolExecutor | None = None,
        on_slice_loaded: SliceListener | None = None,
    ) -> None:
        if slice_size < 1 or max_slices < 1:
            raise ValueError("slice_size and max_slices must be positive.")
        self._store = store
        self._slice_size = slice_size
        self._max_slices = max_slices
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="followlens-slice"
        )
        self._on_slice_loaded = on_slice_loaded
        self._lock = threading.RLock()
        self._slices: dict[int, IndexSlice] = {}
        self._loading: dict[int, Future[None]] = {}
        self._identity: str | None = None
        self._account_count = 0
        self._generation = 0
        self._closed = False

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def account_count(self) -> int:
        return self._account_count

    def set_dataset(self, identity: str, account_count: int) -> None:
        """Bind to a dataset; clears the cache and orphans in-flight fetches."""
        with self._lock:
            self._identity = identity
            self._account_count = max(0, account_count)
            self._reset_locked()

    def get_account(self, index: int) -> AccountRecord | None:
        """Return a cached record, scheduling its slice fetch on a miss.

        Args:
            index: Account index.

        Returns:
            The record when its slice is resident, else None.
        """
        with self._lock:
            if self._closed or self._identity is None:
                return None
            if index < 0 or index >= self._account_count:
                return None
            slice_start = self._slice_start(index)
            cached = self._slices.get(slice_start)
            if cached is not None:
                cached.last_touched_at = time.monotonic()
                return cached.records[index - slice_start]
            self._schedule_fetch_locked(slice_start)
        return None

    async def get_by_indices(self, indices: Iterable[int]) -> list[AccountRecord]:
        """Resolve arbitrary indices with one store read per merged range.

        Indices are sorted, deduplicated, and merged into contiguous ranges
        whenever the gap to the next index is below half a slice.

        Args:
            indices: Account indices in any order.

        Returns:
            Records for the valid requested indices, in ascending index order.
        """
        with self._lock:
            identity = self._identity
            account_count = self._account_count
        if identity is None:
            return []
        wanted = sorted({index for index in indices if 0 <= index < account_count})
        if not wanted:
            return []
        loop = asyncio.get_running_loop()
        records: list[AccountRecord] = []
        for range_start, range_end in merge_index_ranges(wanted, max(1, self._slice_size // 2)):
            range_records = await loop.run_in_executor(
                self._executor,
                self._store.get_account_range,
                identity,
                range_start,
                range_end,
            )
            records.extend(range_records)
        wanted_set = set(wanted)
        return [record for record in records if record.index in wanted_set]

    def preload_adjacent(self, visible_start: int, visible_end: int) -> None:
        """Prefetch the slices just before and after a visible window.

        Args:
            visible_start: First visible index.
            visible_end: Index one past the last visible index.
        """
        with self._lock:
            if self._closed or self._identity is None or self._account_count == 0:
                return
            before = self._slice_start(max(0, visible_start)) - self._slice_size
            after = self._slice_start(max(0, visible_end - 1)) + self._slice_size
            for slice_start in (before, after):
                if 0 <= slice_start < self._account_count:
                    self._schedule_fetch_locked(slice_start)

    def clear_cache(self) -> None:
        """Drop every resident slice and orphan in-flight fetches."""
        with self._lock:
            self._reset_locked()

    def cache_stats(self) -> dict[str, int]:
        """Return resident slice count, target size, and in-flight fetches."""
        with self._lock:
            return {
                "size": len(self._slices),
                "max_size": self._max_slices,
                "loading": len(self._loading),
            }

    def is_loading(self, index: int) -> bool:
        with self._lock:
            return self._slice_start(index) in self._loading

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no fetch is in flight.

        Returns:
            Whether the source went idle before the timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = list(self._loading.values())
            if not pending:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            _, not_done = wait(pending, timeout=remaining)
            if not_done:
                return False

    def close(self) -> None:
        """Stop accepting work; later completions become no-ops."""
        with self._lock:
            self._closed = True
            self._reset_locked()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _slice_start(self, index: int) -> int:
        return (index // self._slice_size) * self._slice_size

    def _reset_locked(self) -> None:
        self._generation += 1
        self._slices.clear()
        self._loading.clear()

    def _schedule_fetch_locked(self, slice_start: int) -> None:
        if slice_start in self._slices or slice_start in self._loading:
            return
        identity = self._identity
        if identity is None:
            return
        slice_end = min(slice_start + self._slice_size, self._account_count)
        future = self._executor.submit(
            self._fetch_slice, identity, self._generation, slice_start, slice_end
        )
        self._loading[slice_start] = future
        future.add_done_callback(lambda done: self._forget_fetch(slice_start, done))

    def _forget_fetch(self, slice_start: int, future: Future[None]) -> None:
        with self._lock:
            if self._loading.get(slice_start) is future:
                del self._loading[slice_start]

    def _fetch_slice(
        self,
        identity: str,
        generation: int,
        slice_start: int,
        slice_end: int,
    ) -> None:
        """Load one slice in the background and publish it if still current."""
        try:
            records = self._store.get_account_range(identity, slice_start, slice_end)
        except (LensStoreError, OSError) as error:
            _LOGGER.warning(
                "slice_fetch_failed",
                identity=identity,
                range_start=slice_start,
                range_end=slice_end,
                error=str(error),
            )
            records = []
        with self._lock:
            if generation != self._generation or self._closed:
                return
            if len(records) != slice_end - slice_start:
                return
            self._slices[slice_start] = IndexSlice(
                range_start=slice_start,
                range_end=slice_end,
                records=records,
                last_touched_at=time.monotonic(),
            )
            self._evict_locked()
        if self._on_slice_loaded is not None:
            self._on_slice_loaded(slice_start, slice_end)

    def _evict_locked(self) -> None:
        if len(self._slices) <= self._max_slices * SLICE_EVICTION_FACTOR:
            return
        by_age = sorted(self._slices.values(), key=lambda item: item.last_touched_at)
        for stale in by_age[: len(self._slices) - self._max_slices]:
            del self._slices[stale.range_start]
        _LOGGER.debug("slices_evicted", resident=len(self._slices))


def merge_index_ranges(sorted_indices: list[int], max_gap: int) -> list[tuple[int, int]]:
    """Merge ascending indices into ``[start, end)`` ranges.

    An index joins the current range when its distance past the range end
    is below ``max_gap``.
    """
    ranges: list[tuple[int, int]] = []
    for index in sorted_indices:
        if ranges and index - ranges[-1][1] < max_gap:
            ranges[-1] = (ranges[-1][0], index + 1)
        else:
            ranges.append((index, index + 1))
    return ranges
