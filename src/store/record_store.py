"""Local record store for ingested datasets.

This module persists per-dataset metadata, badge statistics, and account
records addressable by contiguous index ranges. Writes are staged and a
dataset becomes visible only when its metadata commits the staged directory.
"""

from __future__ import annotations

import json
import os
import re
import shutil
import threading
from pathlib import Path
from typing import Any

import pyarrow as pa
import pyarrow.parquet as pq

from core.config import LensConfig
from core.constants import (
    ACCOUNT_RANGE_FILE_PREFIX,
    ACCOUNT_RANGE_FILE_SUFFIX,
    ACCOUNTS_DIR_NAME,
    BADGE_STATS_FILE_NAME,
    DATASETS_DIR_NAME,
    METADATA_FILE_NAME,
    STAGING_DIR_NAME,
)
from core.errors import LensStoreError
from core.logging_config import get_logger
from core.types import AccountRecord, BadgeKey, BadgeStats, DatasetMetadata
from store.record_payload import (
    ACCOUNT_SCHEMA,
    account_records_from_table,
    account_records_to_table,
    badge_stats_from_payload,
    badge_stats_to_payload,
    metadata_from_payload,
    metadata_to_payload,
)

_LOGGER = get_logger(__name__)
_IDENTITY_PATTERN = re.compile(r"[0-9a-f]{8,128}")
_RANGE_FILE_PATTERN = re.compile(
    re.escape(ACCOUNT_RANGE_FILE_PREFIX)
    + r"(\d+)-(\d+)"
    + re.escape(ACCOUNT_RANGE_FILE_SUFFIX)
)


class LocalRecordStore:
    """Filesystem-backed key-range store.

    Layout per dataset identity::

        <data_root>/datasets/<identity>/metadata.json
        <data_root>/datasets/<identity>/badge_stats.json
        <data_root>/datasets/<identity>/accounts/range-<start>-<end>.parquet

    Staged writes live under ``<data_root>/staging/<identity>`` until
    ``put_metadata`` renames them into place.
    """

    def __init__(self, config: LensConfig) -> None:
        """Initialize store directories from config.

        Args:
            config: Runtime configuration.
        """
        self._datasets_root = config.data_root / DATASETS_DIR_NAME
        self._staging_root = config.data_root / STAGING_DIR_NAME
        self._datasets_root.mkdir(parents=True, exist_ok=True)
        self._staging_root.mkdir(parents=True, exist_ok=True)
        self._range_index: dict[str, list[tuple[int, int, Path]]] = {}
        self._lock = threading.Lock()

    def get_metadata(self, identity: str) -> DatasetMetadata | None:
        """Load metadata for a committed dataset.

        Args:
            identity: Dataset identity.

        Returns:
            Metadata, or None when the dataset is absent.

        Raises:
            LensStoreError: If the metadata record is unreadable.
        """
        metadata_path = self._dataset_dir(identity) / METADATA_FILE_NAME
        if not metadata_path.exists():
            return None
        payload = _read_json_object(metadata_path)
        try:
            return metadata_from_payload(payload)
        except (KeyError, ValueError) as error:
            raise LensStoreError(
                f"Invalid dataset metadata at {metadata_path}: {error}. "
                "Delete the dataset and ingest the archive again."
            ) from error

    def put_account_range(
        self,
        identity: str,
        start: int,
        records: list[AccountRecord],
    ) -> None:
        """Stage a contiguous range of account records.

        Args:
            identity: Dataset identity.
            start: Index of the first record.
            records: Records whose indices run ``start, start + 1, ...``.

        Raises:
            LensStoreError: If the range is not contiguous or cannot be written.
        """
        if not records:
            return
        for offset, record in enumerate(records):
            if record.index != start + offset:
                raise LensStoreError(
                    f"Non-contiguous account range for dataset {identity}: expected index "
                    f"{start + offset}, got {record.index}. Write ranges in index order."
                )
        end = start + len(records)
        accounts_dir = self._staging_dir(identity) / ACCOUNTS_DIR_NAME
        range_path = accounts_dir / _range_file_name(start, end)
        try:
            accounts_dir.mkdir(parents=True, exist_ok=True)
            pq.write_table(account_records_to_table(records), range_path)
        except OSError as error:
            raise LensStoreError(
                f"Failed to write account range {start}-{end} at {range_path}: {error}. "
                "Check write permissions and available disk space."
            ) from error

    def put_badge_stats(self, identity: str, stats: BadgeStats) -> None:
        """Stage the badge statistics record for a dataset.

        Raises:
            LensStoreError: If the record cannot be written.
        """
        stats_path = self._staging_dir(identity) / BADGE_STATS_FILE_NAME
        _write_json(stats_path, badge_stats_to_payload(stats))

    def put_metadata(self, metadata: DatasetMetadata) -> None:
        """Write metadata and atomically commit the staged dataset.

        Args:
            metadata: Final dataset metadata.

        Raises:
            LensStoreError: If staged data is missing, inconsistent, or cannot be moved.
        """
        identity = metadata.identity
        staging_dir = self._staging_dir(identity)
        dataset_dir = self._dataset_dir(identity)
        if not (staging_dir / BADGE_STATS_FILE_NAME).exists():
            raise LensStoreError(
                f"Cannot commit dataset {identity}: badge stats were not staged. "
                "Persist account ranges and badge stats before metadata."
            )
        staged_count = sum(end - start for start, end, _ in _list_range_files(staging_dir))
        if staged_count != metadata.account_count:
            raise LensStoreError(
                f"Cannot commit dataset {identity}: staged {staged_count} accounts but "
                f"metadata declares {metadata.account_count}. Re-run ingestion."
            )
        _write_json(staging_dir / METADATA_FILE_NAME, metadata_to_payload(metadata))
        if dataset_dir.exists():
            shutil.rmtree(staging_dir, ignore_errors=True)
            _LOGGER.info("dataset_already_committed", identity=identity)
            return
        try:
            os.replace(staging_dir, dataset_dir)
        except OSError as error:
            raise LensStoreError(
                f"Failed to commit dataset {identity} into {dataset_dir}: {error}. "
                "Check write permissions on the data root."
            ) from error
        _LOGGER.info(
            "dataset_committed",
            identity=identity,
            account_count=metadata.account_count,
            display_name=metadata.display_name,
        )

    def discard_staged(self, identity: str) -> None:
        """Remove any staged, uncommitted data for a dataset."""
        staging_dir = self._staging_dir(identity)
        if staging_dir.exists():
            shutil.rmtree(staging_dir, ignore_errors=True)
            _LOGGER.info("staged_dataset_discarded", identity=identity)

    def get_account_range(self, identity: str, start: int, end: int) -> list[AccountRecord]:
        """Read committed account records with ``start <= index < end``.

        Args:
            identity: Dataset identity.
            start: First index, inclusive.
            end: Last index, exclusive.

        Returns:
            Records in index order; indices beyond the dataset are omitted.

        Raises:
            LensStoreError: If the dataset is missing or a range file is unreadable.
        """
        start = max(0, start)
        if end <= start:
            return []
        pieces: list[pa.Table] = []
        for file_start, file_end, range_path in self._committed_ranges(identity):
            if file_end <= start or file_start >= end:
                continue
            table = _read_range_table(range_path)
            offset = max(start, file_start) - file_start
            length = min(end, file_end) - file_start - offset
            pieces.append(table.slice(offset, length))
        if not pieces:
            return []
        return account_records_from_table(pa.concat_tables(pieces))

    def read_account_table(
        self,
        identity: str,
        columns: list[str] | None = None,
    ) -> pa.Table:
        """Read every committed account row as one Arrow table in index order.

        Args:
            identity: Dataset identity.
            columns: Optional column projection.

        Returns:
            Concatenated account table.

        Raises:
            LensStoreError: If the dataset is missing or unreadable.
        """
        tables = [
            _read_range_table(range_path, columns)
            for _, _, range_path in self._committed_ranges(identity)
        ]
        if not tables:
            schema = ACCOUNT_SCHEMA
            if columns:
                schema = pa.schema([ACCOUNT_SCHEMA.field(name) for name in columns])
            return schema.empty_table()
        return pa.concat_tables(tables)

    def get_badge_stats(self, identity: str) -> dict[BadgeKey, int] | None:
        """Load the badge statistics record of a committed dataset."""
        stats_path = self._dataset_dir(identity) / BADGE_STATS_FILE_NAME
        if not stats_path.exists():
            return None
        payload = _read_json_object(stats_path)
        try:
            return badge_stats_from_payload(payload)
        except ValueError as error:
            raise LensStoreError(
                f"Invalid badge stats at {stats_path}: {error}. "
                "Delete the dataset and ingest the archive again."
            ) from error

    def list_datasets(self) -> list[DatasetMetadata]:
        """List committed datasets ordered by ingestion time."""
        datasets: list[DatasetMetadata] = []
        for dataset_dir in sorted(self._datasets_root.iterdir()):
            if not dataset_dir.is_dir():
                continue
            metadata = self.get_metadata(dataset_dir.name)
            if metadata is not None:
                datasets.append(metadata)
        return sorted(datasets, key=lambda item: item.ingested_at)

    def delete_dataset(self, identity: str) -> bool:
        """Delete a committed dataset and any staged data.

        Returns:
            Whether a committed dataset was removed.
        """
        dataset_dir = self._dataset_dir(identity)
        self.discard_staged(identity)
        with self._lock:
            self._range_index.pop(identity, None)
        if not dataset_dir.exists():
            return False
        shutil.rmtree(dataset_dir)
        _LOGGER.info("dataset_deleted", identity=identity)
        return True

    def _committed_ranges(self, identity: str) -> list[tuple[int, int, Path]]:
        """Return cached range file listing for a committed dataset.

        Raises:
            LensStoreError: If the dataset is not committed.
        """
        with self._lock:
            cached = self._range_index.get(identity)
        if cached is not None:
            return cached
        dataset_dir = self._dataset_dir(identity)
        if not (dataset_dir / METADATA_FILE_NAME).exists():
            raise LensStoreError(
                f"Dataset {identity} not found in {self._datasets_root}. "
                "Ingest the archive before reading accounts."
            )
        ranges = _list_range_files(dataset_dir)
        with self._lock:
            self._range_index[identity] = ranges
        return ranges

    def _dataset_dir(self, identity: str) -> Path:
        return self._datasets_root / _checked_identity(identity)

    def _staging_dir(self, identity: str) -> Path:
        return self._staging_root / _checked_identity(identity)


def _checked_identity(identity: str) -> str:
    """Validate that an identity is a safe hex digest path component.

    Raises:
        LensStoreError: If the identity is not a lowercase hex string.
    """
    if not _IDENTITY_PATTERN.fullmatch(identity):
        raise LensStoreError(
            f"Invalid dataset identity '{identity}': expected a lowercase hex digest."
        )
    return identity


def _range_file_name(start: int, end: int) -> str:
    return f"{ACCOUNT_RANGE_FILE_PREFIX}{start:012d}-{end:012d}{ACCOUNT_RANGE_FILE_SUFFIX}"


def _list_range_files(dataset_dir: Path) -> list[tuple[int, int, Path]]:
    """List account range files sorted by start index."""
    accounts_dir = dataset_dir / ACCOUNTS_DIR_NAME
    if not accounts_dir.exists():
        return []
    ranges: list[tuple[int, int, Path]] = []
    for range_path in accounts_dir.iterdir():
        match = _RANGE_FILE_PATTERN.fullmatch(range_path.name)
        if match:
            ranges.append((int(match.group(1)), int(match.group(2)), range_path))
    return sorted(ranges, key=lambda item: item[0])


def _read_range_table(range_path: Path, columns: list[str] | None = None) -> pa.Table:
    """Read one account range file.

    Raises:
        LensStoreError: If the file is missing or not valid Parquet.
    """
    try:
        return pq.read_table(range_path, columns=columns)
    except (OSError, pa.ArrowInvalid) as error:
        raise LensStoreError(
            f"Failed to read account range at {range_path}: {error}. "
            "Delete the dataset and ingest the archive again."
        ) from error


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    """Write one JSON record file.

    Raises:
        LensStoreError: If the write fails.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    except OSError as error:
        raise LensStoreError(
            f"Failed to write store record at {path}: {error}. "
            "Check write permissions and available disk space."
        ) from error


def _read_json_object(path: Path) -> dict[str, Any]:
    """Read and validate a JSON object record.

    Raises:
        LensStoreError: If the file is unreadable or not a JSON object.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as error:
        raise LensStoreError(f"Failed to read store record at {path}: {error}.") from error
    except json.JSONDecodeError as error:
        raise LensStoreError(
            f"Failed to parse store record at {path}: {error.msg}. "
            "Delete the dataset and ingest the archive again."
        ) from error
    if not isinstance(payload, dict):
        raise LensStoreError(
            f"Failed to parse store record at {path}: expected a JSON object. "
            "Delete the dataset and ingest the archive again."
        )
    return payload
