"""Unit tests for the windowed account source."""

from __future__ import annotations

import asyncio
import threading

from core.errors import LensStoreError
from core.types import AccountRecord, BadgeKey
from browse.windowed_source import WindowedAccountSource, merge_index_ranges

_IDENTITY = "ab" * 32


class _FakeStore:
    """Store double serving synthetic records and counting range reads."""

    def __init__(self, account_count: int, failing_starts: set[int] | None = None) -> None:
        self.account_count = account_count
        self.reads: list[tuple[int, int]] = []
        self._failing_starts = failing_starts or set()
        self._lock = threading.Lock()

    def get_account_range(self, identity: str, start: int, end: int) -> list[AccountRecord]:
        with self._lock:
            self.reads.append((start, end))
        if start in self._failing_starts:
            raise LensStoreError("range file unreadable")
        end = min(end, self.account_count)
        return [
            AccountRecord(index, f"user{index}", frozenset({BadgeKey.FOLLOWING}))
            for index in range(start, end)
        ]


def _source(store: _FakeStore, slice_size: int = 10, max_slices: int = 2, **kwargs):
    source = WindowedAccountSource(store, slice_size=slice_size, max_slices=max_slices, **kwargs)
    source.set_dataset(_IDENTITY, store.account_count)
    return source


def test_get_account_misses_then_hits() -> None:
    """A miss should schedule a fetch and later calls should hit the cache."""
    source = _source(_FakeStore(25))

    first = source.get_account(12)
    source.wait_until_idle(5)
    second = source.get_account(12)
    source.close()

    assert (first, second.username) == (None, "user12")


def test_get_account_fetches_slice_once() -> None:
    """Repeated misses on one slice should not duplicate the fetch."""
    store = _FakeStore(25)
    source = _source(store)

    for index in (10, 11, 19):
        source.get_account(index)
    source.wait_until_idle(5)
    source.close()

    assert store.reads == [(10, 20)]


def test_last_slice_is_clipped_to_account_count() -> None:
    """The owning slice of the last index should end at the account count."""
    store = _FakeStore(25)
    source = _source(store)

    source.get_account(24)
    source.wait_until_idle(5)
    source.close()

    assert store.reads == [(20, 25)]


def test_out_of_range_index_returns_none() -> None:
    """Indices outside the dataset should not trigger fetches."""
    store = _FakeStore(5)
    source = _source(store)

    result = (source.get_account(-1), source.get_account(5))
    source.close()

    assert (result, store.reads) == ((None, None), [])


def test_cache_is_bounded_after_eviction() -> None:
    """Resident slices should drop back to the target once they exceed 1.5x of it."""
    store = _FakeStore(100)
    source = _source(store, slice_size=10, max_slices=2)
    sizes = []

    for index in range(0, 60, 10):
        source.get_account(index)
        source.wait_until_idle(5)
        sizes.append(source.cache_stats()["size"])
    source.close()

    assert sizes == [1, 2, 3, 2, 3, 2]



def test_eviction_keeps_recently_touched_slices() -> None:
    """The most recently touched slice should survive eviction."""
    store = _FakeStore(100)
    source = _source(store, slice_size=10, max_slices=2)
    source.get_account(0)
    source.wait_until_idle(5)
    for index in (10, 20):
        source.get_account(index)
        source.wait_until_idle(5)
    source.get_account(0)

    source.get_account(30)
    source.wait_until_idle(5)
    kept = source.get_account(0)
    source.close()

    assert kept is not None and kept.index == 0


def test_failed_fetch_is_not_cached() -> None:
    """A failed slice read should be treated as no data and retried later."""
    store = _FakeStore(20, failing_starts={0})
    source = _source(store)

    source.get_account(3)
    source.wait_until_idle(5)
    stats = source.cache_stats()
    source.get_account(3)
    source.wait_until_idle(5)
    source.close()

    assert (stats["size"], len(store.reads)) == (0, 2)


def test_set_dataset_clears_cache() -> None:
    """Switching datasets should clear resident slices."""
    source = _source(_FakeStore(25))
    source.get_account(0)
    source.wait_until_idle(5)

    source.set_dataset("cd" * 32, 25)
    stats = source.cache_stats()
    source.close()

    assert stats["size"] == 0


def test_slice_listener_fires_on_load() -> None:
    """Loaded slices should notify the listener with their range."""
    loaded: list[tuple[int, int]] = []
    source = _source(_FakeStore(25), on_slice_loaded=lambda start, end: loaded.append((start, end)))

    source.get_account(5)
    source.wait_until_idle(5)
    source.close()

    assert loaded == [(0, 10)]


def test_preload_adjacent_fetches_neighbor_slices() -> None:
    """Preloading should fetch the slices around the visible window."""
    store = _FakeStore(50)
    source = _source(store)

    source.preload_adjacent(20, 29)
    source.wait_until_idle(5)
    source.close()

    assert sorted(store.reads) == [(10, 20), (30, 40)]


def test_preload_adjacent_treats_window_end_as_exclusive() -> None:
    """A window ending on a slice boundary should preload the slice right after it."""
    store = _FakeStore(50)
    source = _source(store)

    source.preload_adjacent(20, 30)
    source.wait_until_idle(5)
    source.close()

    assert sorted(store.reads) == [(10, 20), (30, 40)]



def test_get_by_indices_merges_ranges() -> None:
    """Nearby indices should be read with a single range request."""
    store = _FakeStore(100)
    source = _source(store, slice_size=10)

    records = asyncio.run(source.get_by_indices([7, 3, 5, 60]))
    source.close()

    assert ([record.index for record in records], store.reads) == (
        [3, 5, 7, 60],
        [(3, 8), (60, 61)],
    )


def test_get_by_indices_skips_invalid_indices() -> None:
    """Out-of-range and duplicate indices should be ignored."""
    source = _source(_FakeStore(10))

    records = asyncio.run(source.get_by_indices([2, 2, -1, 99]))
    source.close()

    assert [record.index for record in records] == [2]


def test_closed_source_returns_none() -> None:
    """A closed source should not serve or fetch records."""
    store = _FakeStore(10)
    source = _source(store)
    source.close()

    result = source.get_account(1)

    assert (result, store.reads) == (None, [])


def test_merge_index_ranges_respects_gap() -> None:
    """Indices closer than the gap should share a range."""
    ranges = merge_index_ranges([1, 2, 4, 20, 21], 3)

    assert ranges == [(1, 5), (20, 22)]
