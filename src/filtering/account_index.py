"""Columnar account index for filter queries.

This module holds the (index, username, badge_mask) columns of one
dataset in Arrow arrays and evaluates query and badge predicates with
pyarrow compute kernels.
"""

from __future__ import annotations

from typing import Iterable

import pyarrow as pa
import pyarrow.compute as pc

from core.types import BadgeKey, badge_mask
from store.record_store import LocalRecordStore

INDEX_COLUMNS = ["index", "username", "badge_mask"]


class AccountIndex:
    """Immutable in-memory index over one dataset's accounts."""

    def __init__(self, table: pa.Table) -> None:
        self._indices = table.column("index").combine_chunks()
        self._usernames = table.column("username").combine_chunks()
        self._badge_masks = table.column("badge_mask").combine_chunks()

    @classmethod
    def from_store(cls, store: LocalRecordStore, identity: str) -> "AccountIndex":
        """Load the index columns of a committed dataset.

        Raises:
            LensStoreError: If the dataset is missing or unreadable.
        """
        return cls(store.read_account_table(identity, columns=INDEX_COLUMNS))

    def __len__(self) -> int:
        return len(self._indices)

    def filter_to_indices(self, query: str, badge_filters: Iterable[BadgeKey]) -> list[int]:
        """Return ascending indices of matching accounts.

        An account matches when ``badge_filters`` is empty or shares at least
        one badge with it, and the stripped ``query`` is empty or occurs in its
        username, ignoring case.

        Args:
            query: Free-text username query.
            badge_filters: Badges of which at least one must be present.

        Returns:
            Matching indices in ascending order.
        """
        needle = query.strip()
        filter_mask = badge_mask(badge_filters)
        if not needle and not filter_mask:
            return self._indices.to_pylist()
        predicate: pa.Array | None = None
        if filter_mask:
            masked = pc.bit_wise_and(self._badge_masks, pa.scalar(filter_mask, pa.int32()))
            predicate = pc.not_equal(masked, pa.scalar(0, pa.int32()))
        if needle:
            matches = pc.match_substring(self._usernames, pattern=needle, ignore_case=True)
            predicate = matches if predicate is None else pc.and_(predicate, matches)
        positions = pc.indices_nonzero(predicate)
        return self._indices.take(positions).to_pylist()
