"""Runtime configuration model for followlens.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_DATA_ROOT,
    DEFAULT_FILTER_ENGINE_MODE,
    DEFAULT_MAX_ARCHIVE_MB,
    DEFAULT_MAX_CACHED_SLICES,
    DEFAULT_MIN_ACCOUNT_COUNT,
    DEFAULT_SEARCH_DEBOUNCE_MS,
    DEFAULT_SLICE_SIZE,
    DEFAULT_WORKER_TIMEOUT_SECONDS,
    SUPPORTED_FILTER_ENGINE_MODES,
)
from core.errors import LensConfigError


@dataclass(frozen=True)
class LensConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for the record store.
        batch_size: Accounts merged or persisted per ingestion batch.
        min_account_count: Minimum distinct accounts for a usable dataset.
        max_archive_bytes: Largest archive accepted for ingestion.
        slice_size: Accounts per windowed cache slice.
        max_cached_slices: Resident slice target after eviction.
        search_debounce_seconds: Delay applied to query changes.
        filter_engine_mode: ``auto``, ``worker`` or ``inline``.
        worker_timeout_seconds: Timeout for one worker round trip.
    """

    data_root: Path
    batch_size: int = DEFAULT_BATCH_SIZE
    min_account_count: int = DEFAULT_MIN_ACCOUNT_COUNT
    max_archive_bytes: int = DEFAULT_MAX_ARCHIVE_MB * 1024 * 1024
    slice_size: int = DEFAULT_SLICE_SIZE
    max_cached_slices: int = DEFAULT_MAX_CACHED_SLICES
    search_debounce_seconds: float = DEFAULT_SEARCH_DEBOUNCE_MS / 1000
    filter_engine_mode: str = DEFAULT_FILTER_ENGINE_MODE
    worker_timeout_seconds: float = DEFAULT_WORKER_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "LensConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            LensConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("FOLLOWLENS_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        max_archive_mb = _parse_positive_int(
            "FOLLOWLENS_MAX_ARCHIVE_MB", os.getenv("FOLLOWLENS_MAX_ARCHIVE_MB")
        )
        debounce_ms = _parse_positive_int(
            "FOLLOWLENS_SEARCH_DEBOUNCE_MS",
            os.getenv("FOLLOWLENS_SEARCH_DEBOUNCE_MS"),
            allow_zero=True,
        )
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            batch_size=_parse_positive_int(
                "FOLLOWLENS_BATCH_SIZE", os.getenv("FOLLOWLENS_BATCH_SIZE")
            )
            or DEFAULT_BATCH_SIZE,
            min_account_count=_parse_positive_int(
                "FOLLOWLENS_MIN_ACCOUNTS", os.getenv("FOLLOWLENS_MIN_ACCOUNTS")
            )
            or DEFAULT_MIN_ACCOUNT_COUNT,
            max_archive_bytes=(max_archive_mb or DEFAULT_MAX_ARCHIVE_MB) * 1024 * 1024,
            slice_size=_parse_positive_int(
                "FOLLOWLENS_SLICE_SIZE", os.getenv("FOLLOWLENS_SLICE_SIZE")
            )
            or DEFAULT_SLICE_SIZE,
            max_cached_slices=_parse_positive_int(
                "FOLLOWLENS_MAX_SLICES", os.getenv("FOLLOWLENS_MAX_SLICES")
            )
            or DEFAULT_MAX_CACHED_SLICES,
            search_debounce_seconds=(
                DEFAULT_SEARCH_DEBOUNCE_MS if debounce_ms is None else debounce_ms
            )
            / 1000,
            filter_engine_mode=_parse_engine_mode(os.getenv("FOLLOWLENS_FILTER_ENGINE")),
            worker_timeout_seconds=_parse_timeout(os.getenv("FOLLOWLENS_WORKER_TIMEOUT")),
        )


def _parse_positive_int(
    name: str,
    raw_value: str | None,
    allow_zero: bool = False,
) -> int | None:
    """Parse an optional positive integer environment value.

    Args:
        name: Environment variable name for error context.
        raw_value: Raw string from environment, or None when unset.
        allow_zero: Whether zero is an accepted value.

    Returns:
        Parsed integer, or None when the variable is unset.

    Raises:
        LensConfigError: If value is not a positive integer.
    """
    if raw_value is None or not raw_value.strip():
        return None
    try:
        value = int(raw_value)
    except ValueError as error:
        raise LensConfigError(
            f"Invalid {name} value: expected integer, got '{raw_value}'. "
            f"Set {name} to a numeric value."
        ) from error
    minimum = 0 if allow_zero else 1
    if value < minimum:
        raise LensConfigError(
            f"Invalid {name} value: expected integer >= {minimum}, got {value}. "
            f"Set {name} to a larger value."
        )
    return value


def _parse_engine_mode(raw_value: str | None) -> str:
    """Parse the filter engine mode environment value.

    Args:
        raw_value: Raw string from environment, or None when unset.

    Returns:
        Normalized engine mode.

    Raises:
        LensConfigError: If mode is not supported.
    """
    if raw_value is None or not raw_value.strip():
        return DEFAULT_FILTER_ENGINE_MODE
    mode = raw_value.strip().lower()
    if mode not in SUPPORTED_FILTER_ENGINE_MODES:
        raise LensConfigError(
            f"Invalid FOLLOWLENS_FILTER_ENGINE value '{raw_value}'. "
            f"Use one of: {', '.join(SUPPORTED_FILTER_ENGINE_MODES)}."
        )
    return mode


def _parse_timeout(raw_value: str | None) -> float:
    """Parse the worker timeout environment value.

    Args:
        raw_value: Raw string from environment, or None when unset.

    Returns:
        Timeout in seconds.

    Raises:
        LensConfigError: If value is not a positive number.
    """
    if raw_value is None or not raw_value.strip():
        return DEFAULT_WORKER_TIMEOUT_SECONDS
    try:
        value = float(raw_value)
    except ValueError as error:
        raise LensConfigError(
            "Invalid FOLLOWLENS_WORKER_TIMEOUT value: "
            f"expected number of seconds, got '{raw_value}'. "
            "Set FOLLOWLENS_WORKER_TIMEOUT to a numeric value."
        ) from error
    if value <= 0:
        raise LensConfigError(
            f"Invalid FOLLOWLENS_WORKER_TIMEOUT value: expected > 0, got {value}. "
            "Set FOLLOWLENS_WORKER_TIMEOUT to a positive number of seconds."
        )
    return value
