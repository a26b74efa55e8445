"""Public SDK surface for followlens.

This module provides a stable import path for SDK users.
It re-exports the primary client and typed models.
"""

from __future__ import annotations

from core.cancellation import CancelToken
from core.config import LensConfig
from core.types import (
    AccountRecord,
    ArchiveBlob,
    BadgeKey,
    DatasetMetadata,
    IngestReport,
    IngestStatus,
    ParseWarning,
    parse_badge_key,
)
from filtering.filter_session import FilterSession
from store.dataset_sdk import DatasetBrowser, LensClient

__all__ = [
    "AccountRecord",
    "ArchiveBlob",
    "BadgeKey",
    "CancelToken",
    "DatasetBrowser",
    "DatasetMetadata",
    "FilterSession",
    "IngestReport",
    "IngestStatus",
    "LensClient",
    "LensConfig",
    "ParseWarning",
    "parse_badge_key",
]
