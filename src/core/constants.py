"""Core constants used across followlens modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".followlens")
DATASETS_DIR_NAME = "datasets"
STAGING_DIR_NAME = "staging"
ACCOUNTS_DIR_NAME = "accounts"
METADATA_FILE_NAME = "metadata.json"
BADGE_STATS_FILE_NAME = "badge_stats.json"
ACCOUNT_RANGE_FILE_PREFIX = "range-"
ACCOUNT_RANGE_FILE_SUFFIX = ".parquet"
HASH_ALGORITHM = "sha256"
ZIP_SIGNATURE = b"PK\x03\x04"
DEFAULT_BATCH_SIZE = 500
DEFAULT_MIN_ACCOUNT_COUNT = 1
DEFAULT_MAX_ARCHIVE_MB = 500
DEFAULT_SLICE_SIZE = 500
DEFAULT_MAX_CACHED_SLICES = 20
SLICE_EVICTION_FACTOR = 1.5
DEFAULT_SEARCH_DEBOUNCE_MS = 300
DEFAULT_FILTER_ENGINE_MODE = "auto"
SUPPORTED_FILTER_ENGINE_MODES = ("auto", "worker", "inline")
DEFAULT_WORKER_TIMEOUT_SECONDS = 30.0
WORKER_STARTUP_TIMEOUT_SECONDS = 10.0
EXPORT_FOLDER_MARKER = "followers_and_following"
CONNECTIONS_FOLDER_MARKER = "connections/"
