"""Unified account index construction.

This module merges raw relationship lists into account records in
first-seen order, derives the relationship badges, and computes the
per-badge statistics stored alongside a dataset.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from core.types import (
    SOURCE_BADGES,
    AccountRecord,
    BadgeKey,
    BadgeStats,
    empty_badge_stats,
)
from ingest.export_reader import RawEntry


class AccountIndexBuilder:
    """Incremental builder that assigns stable indices in first-seen order.

    Entries can be fed in arbitrary batches; an account seen again in any
    category keeps its original index and gains the new badge.
    """

    def __init__(self) -> None:
        self._positions: dict[str, int] = {}
        self._usernames: list[str] = []
        self._badges: list[set[BadgeKey]] = []
        self._timestamps: list[dict[BadgeKey, int]] = []

    @property
    def account_count(self) -> int:
        return len(self._usernames)

    def add(self, badge: BadgeKey, entries: Iterable[RawEntry]) -> int:
        """Merge one batch of entries carrying ``badge``.

        Args:
            badge: Source badge of the batch.
            entries: Raw entries with normalized usernames.

        Returns:
            Number of entries consumed.
        """
        consumed = 0
        for entry in entries:
            consumed += 1
            position = self._positions.get(entry.username)
            if position is None:
                position = len(self._usernames)
                self._positions[entry.username] = position
                self._usernames.append(entry.username)
                self._badges.append(set())
                self._timestamps.append({})
            self._badges[position].add(badge)
            if entry.timestamp is not None:
                self._timestamps[position].setdefault(badge, entry.timestamp)
        return consumed

    def build(self) -> list[AccountRecord]:
        """Return account records with derived badges in index order."""
        return [
            AccountRecord(
                index=position,
                username=username,
                badges=derive_badges(self._badges[position]),
                timestamps=dict(self._timestamps[position]),
            )
            for position, username in enumerate(self._usernames)
        ]


def iter_source_batches(
    entries: Mapping[BadgeKey, tuple[RawEntry, ...]],
    batch_size: int,
) -> Iterator[tuple[BadgeKey, tuple[RawEntry, ...]]]:
    """Yield ``(badge, batch)`` pairs over every source list in merge order."""
    for badge in SOURCE_BADGES:
        items = entries.get(badge, ())
        for start in range(0, len(items), batch_size):
            yield badge, items[start : start + batch_size]


def derive_badges(source_badges: Iterable[BadgeKey]) -> frozenset[BadgeKey]:
    """Add the derived relationship badges to a set of source badges."""
    badges = set(source_badges)
    follows = BadgeKey.FOLLOWING in badges
    followed_by = BadgeKey.FOLLOWERS in badges
    if follows and followed_by:
        badges.add(BadgeKey.MUTUALS)
    if follows and not followed_by:
        badges.add(BadgeKey.NOT_FOLLOWING_BACK)
    if followed_by and not follows:
        badges.add(BadgeKey.NOT_FOLLOWED_BACK)
    return frozenset(badges)


def compute_badge_stats(records: Iterable[AccountRecord]) -> BadgeStats:
    """Count accounts per badge, with every badge present."""
    stats = empty_badge_stats()
    for record in records:
        for badge in record.badges:
            stats[badge] += 1
    return stats
