"""Shared typed models.

This module defines immutable data models used by ingest, store,
filtering, and browsing layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping


class BadgeKey(str, Enum):
    """Relationship category flag attached to an account record.

    Member order is the display order and defines each badge's bit position
    in the persisted badge mask.
    """

    FOLLOWING = "following"
    FOLLOWERS = "followers"
    MUTUALS = "mutuals"
    NOT_FOLLOWING_BACK = "notFollowingBack"
    NOT_FOLLOWED_BACK = "notFollowedBack"
    PENDING = "pending"
    PERMANENT = "permanent"
    RESTRICTED = "restricted"
    CLOSE = "close"
    UNFOLLOWED = "unfollowed"
    DISMISSED = "dismissed"

    @property
    def bit(self) -> int:
        """Return the single-bit mask for this badge."""
        return 1 << _BADGE_POSITIONS[self]


_BADGE_POSITIONS = {badge: position for position, badge in enumerate(BadgeKey)}

# Badges populated from archive members rather than derived.
SOURCE_BADGES: tuple[BadgeKey, ...] = (
    BadgeKey.FOLLOWING,
    BadgeKey.FOLLOWERS,
    BadgeKey.PENDING,
    BadgeKey.PERMANENT,
    BadgeKey.RESTRICTED,
    BadgeKey.CLOSE,
    BadgeKey.UNFOLLOWED,
    BadgeKey.DISMISSED,
)

BadgeStats = Mapping[BadgeKey, int]


def badge_mask(badges: Iterable[BadgeKey]) -> int:
    """Pack badges into an integer bit mask."""
    mask = 0
    for badge in badges:
        mask |= badge.bit
    return mask


def badges_from_mask(mask: int) -> frozenset[BadgeKey]:
    """Unpack an integer bit mask into a badge set."""
    return frozenset(badge for badge in BadgeKey if mask & badge.bit)


def parse_badge_key(raw_value: str) -> BadgeKey:
    """Resolve a badge key from its value or enum name, case-insensitively.

    Raises:
        ValueError: If no badge matches.
    """
    lowered = raw_value.strip().lower()
    for badge in BadgeKey:
        if lowered in (badge.value.lower(), badge.name.lower()):
            return badge
    raise ValueError(
        f"Unknown badge '{raw_value}'. "
        f"Use one of: {', '.join(badge.value for badge in BadgeKey)}."
    )


def empty_badge_stats() -> dict[BadgeKey, int]:
    """Return a stats mapping with every badge at zero."""
    return {badge: 0 for badge in BadgeKey}


@dataclass(frozen=True)
class ArchiveBlob:
    """Raw export archive owned transiently by the ingestion pipeline.

    Attributes:
        name: Display name of the uploaded file.
        data: Full archive bytes.
    """

    name: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        """Archive size in bytes."""
        return len(self.data)

    @classmethod
    def from_path(cls, path: str | Path) -> "ArchiveBlob":
        """Load an archive blob from a local file."""
        archive_path = Path(path).expanduser()
        return cls(name=archive_path.name, data=archive_path.read_bytes())


@dataclass(frozen=True)
class AccountRecord:
    """Unified per-account record.

    Attributes:
        index: 0-based position, stable for the dataset lifetime.
        username: Normalized (trimmed, lowercased) account name.
        badges: Relationship categories the account belongs to.
        timestamps: First timestamp seen per source category, when present.
    """

    index: int
    username: str
    badges: frozenset[BadgeKey]
    timestamps: Mapping[BadgeKey, int] = field(default_factory=dict)

    def has_badge(self, badge: BadgeKey) -> bool:
        """Return whether the account carries ``badge``."""
        return badge in self.badges


@dataclass(frozen=True)
class DatasetMetadata:
    """Per-dataset metadata; its presence marks a committed dataset.

    Attributes:
        identity: Content-derived dataset identity.
        display_name: Original archive file name.
        byte_size: Archive size in bytes.
        ingested_at: UTC ingestion completion time.
        account_count: Number of account records in the dataset.
    """

    identity: str
    display_name: str
    byte_size: int
    ingested_at: datetime
    account_count: int


class WarningSeverity(str, Enum):
    """Severity of a parse warning."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class ParseWarning:
    """Diagnostic emitted while validating or parsing an archive.

    Attributes:
        code: Stable code for programmatic handling.
        message: Human-readable description.
        severity: Error, warning, or info.
        fix: Optional remediation hint.
    """

    code: str
    message: str
    severity: WarningSeverity
    fix: str | None = None


@dataclass(frozen=True)
class FileExpectation:
    """Discovery status of one expected export member."""

    name: str
    description: str
    required: bool
    found: bool
    item_count: int | None = None
    found_path: str | None = None


@dataclass(frozen=True)
class FileDiscovery:
    """Report of which expected export members were found.

    Attributes:
        format: ``json``, ``html`` or ``unknown``.
        is_export: Whether the archive looks like a relationship export.
        base_path: Folder where relationship members were found.
        files: Expected members and their status.
    """

    format: str
    is_export: bool
    base_path: str | None
    files: tuple[FileExpectation, ...]


class IngestStatus(str, Enum):
    """Terminal state of one ingestion call."""

    COMPLETED = "completed"
    CACHED = "cached"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class IngestReport:
    """Outcome of ingesting one archive.

    Attributes:
        status: Terminal state.
        identity: Dataset identity when the archive could be identified.
        account_count: Accounts available for the dataset.
        warnings: Collected diagnostics, errors first for failures.
        discovery: Member discovery report when the archive was opened.
    """

    status: IngestStatus
    identity: str | None = None
    account_count: int = 0
    warnings: tuple[ParseWarning, ...] = ()
    discovery: FileDiscovery | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the dataset is available in the store."""
        return self.status in (IngestStatus.COMPLETED, IngestStatus.CACHED)

    @property
    def primary_error(self) -> ParseWarning | None:
        """First error-severity warning, if any."""
        for warning in self.warnings:
            if warning.severity is WarningSeverity.ERROR:
                return warning
        return None


@dataclass
class IndexSlice:
    """Contiguous range of account records cached by the windowed source.

    Attributes:
        range_start: First index in the slice.
        range_end: Exclusive end index.
        records: Records in index order.
        last_touched_at: Monotonic time of the latest cache hit.
    """

    range_start: int
    range_end: int
    records: list[AccountRecord]
    last_touched_at: float
