"""Ingest orchestration for export archives.

This module coordinates validation, identity lookup, member parsing,
batched merging, and staged persistence so that a dataset is either
fully committed to the store or absent.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable

from core.cancellation import CancelToken, is_cancelled
from core.config import LensConfig
from core.diagnostics import (
    STRUCTURAL_CODES,
    as_error,
    critical_structure_warning,
    empty_file_warning,
    file_too_large_warning,
    not_zip_warning,
    storage_warning,
)
from core.errors import LensStoreError
from core.logging_config import get_logger
from core.types import (
    AccountRecord,
    ArchiveBlob,
    DatasetMetadata,
    IngestReport,
    IngestStatus,
    ParseWarning,
)
from ingest.account_merge import AccountIndexBuilder, compute_badge_stats, iter_source_batches
from ingest.archive_validation import identify_archive, validate_archive
from ingest.export_reader import ParsedExport, read_export
from store.record_store import LocalRecordStore

_LOGGER = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


class _IngestCancelled(Exception):
    """Raised internally when the cancel token fires at a batch boundary."""


class IngestPipelineRunner:
    """Stateful runner for one archive ingestion."""

    def __init__(
        self,
        archive: ArchiveBlob,
        store: LocalRecordStore,
        config: LensConfig,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self._archive = archive
        self._store = store
        self._config = config
        self._on_progress = on_progress
        self._cancel_token = cancel_token
        self._processed = 0
        self._total = 0

    async def run(self) -> IngestReport:
        """Execute the pipeline and return its report."""
        rejection = self._check_upload()
        if rejection is not None:
            _log_ingest_rejected(self._archive, rejection)
            return IngestReport(status=IngestStatus.FAILED, warnings=(rejection,))
        identity = await asyncio.to_thread(identify_archive, self._archive.data)
        cached = await asyncio.to_thread(self._store.get_metadata, identity)
        if cached is not None:
            _LOGGER.info(
                "ingest_cache_hit",
                identity=identity,
                account_count=cached.account_count,
            )
            return IngestReport(
                status=IngestStatus.CACHED,
                identity=identity,
                account_count=cached.account_count,
            )
        parsed = await asyncio.to_thread(read_export, self._archive.data)
        failure = _select_failure(parsed, self._config.min_account_count)
        if failure is not None:
            _log_ingest_rejected(self._archive, failure)
            return IngestReport(
                status=IngestStatus.FAILED,
                identity=identity,
                warnings=_failure_warnings(failure, parsed.warnings),
                discovery=parsed.discovery,
            )
        return await self._persist(identity, parsed)

    def _check_upload(self) -> ParseWarning | None:
        """Validate size and signature before any parsing."""
        if self._archive.size == 0:
            return empty_file_warning(self._archive.name)
        if self._archive.size > self._config.max_archive_bytes:
            return file_too_large_warning(
                self._archive.name, self._archive.size, self._config.max_archive_bytes
            )
        if not validate_archive(self._archive.data):
            return not_zip_warning(self._archive.name)
        return None

    async def _persist(self, identity: str, parsed: ParsedExport) -> IngestReport:
        await asyncio.to_thread(self._store.discard_staged, identity)
        try:
            records = await self._merge(parsed)
            await self._write_ranges(identity, records)
            await asyncio.to_thread(
                self._store.put_badge_stats, identity, compute_badge_stats(records)
            )
            self._check_cancelled()
            metadata = DatasetMetadata(
                identity=identity,
                display_name=self._archive.name,
                byte_size=self._archive.size,
                ingested_at=datetime.now(timezone.utc),
                account_count=len(records),
            )
            await asyncio.to_thread(self._store.put_metadata, metadata)
        except _IngestCancelled:
            await asyncio.to_thread(self._store.discard_staged, identity)
            _LOGGER.info("ingest_cancelled", identity=identity, processed=self._processed)
            return IngestReport(
                status=IngestStatus.CANCELLED,
                identity=identity,
                discovery=parsed.discovery,
            )
        except (LensStoreError, OSError) as error:
            await asyncio.to_thread(self._store.discard_staged, identity)
            _LOGGER.error("ingest_storage_failed", identity=identity, error=str(error))
            return IngestReport(
                status=IngestStatus.FAILED,
                identity=identity,
                warnings=(storage_warning(str(error)),) + parsed.warnings,
                discovery=parsed.discovery,
            )
        _LOGGER.info(
            "ingest_completed",
            identity=identity,
            display_name=self._archive.name,
            byte_size=self._archive.size,
            raw_entry_count=parsed.raw_entry_count,
            account_count=len(records),
            warning_count=len(parsed.warnings),
        )
        return IngestReport(
            status=IngestStatus.COMPLETED,
            identity=identity,
            account_count=len(records),
            warnings=parsed.warnings,
            discovery=parsed.discovery,
        )

    async def _merge(self, parsed: ParsedExport) -> list[AccountRecord]:
        """Merge raw entries batch by batch, yielding between batches."""
        builder = AccountIndexBuilder()
        # Distinct usernames equal the final account count.
        self._total = parsed.raw_entry_count + len(_distinct_usernames(parsed))
        for badge, batch in iter_source_batches(parsed.entries, self._config.batch_size):
            self._check_cancelled()
            self._advance(builder.add(badge, batch))
            await asyncio.sleep(0)
        self._check_cancelled()
        return builder.build()

    async def _write_ranges(self, identity: str, records: list[AccountRecord]) -> None:
        batch_size = self._config.batch_size
        for start in range(0, len(records), batch_size):
            self._check_cancelled()
            batch = records[start : start + batch_size]
            await asyncio.to_thread(self._store.put_account_range, identity, start, batch)
            self._advance(len(batch))

    def _advance(self, count: int) -> None:
        self._processed += count
        if self._on_progress is not None:
            self._on_progress(self._processed, self._total)

    def _check_cancelled(self) -> None:
        if is_cancelled(self._cancel_token):
            raise _IngestCancelled()


async def ingest_archive(
    archive: ArchiveBlob,
    store: LocalRecordStore,
    config: LensConfig,
    on_progress: ProgressCallback | None = None,
    cancel_token: CancelToken | None = None,
) -> IngestReport:
    """Ingest one export archive into the record store.

    Args:
        archive: Archive bytes and display name.
        store: Target record store.
        config: Runtime configuration.
        on_progress: Optional ``(processed, total)`` callback per batch.
        cancel_token: Optional token checked between batches.

    Returns:
        Report with status, identity, account count, and warnings.
    """
    runner = IngestPipelineRunner(archive, store, config, on_progress, cancel_token)
    return await runner.run()


def has_minimal_data(parsed: ParsedExport, min_account_count: int) -> bool:
    """Return whether the required lists hold enough distinct accounts."""
    return len(parsed.required_usernames()) >= min_account_count


def _select_failure(parsed: ParsedExport, min_account_count: int) -> ParseWarning | None:
    """Pick the richest fatal warning, or None when ingestion can proceed."""
    if parsed.fatal is not None:
        return parsed.fatal
    if has_minimal_data(parsed, min_account_count):
        return None
    for warning in parsed.warnings:
        if warning.code in STRUCTURAL_CODES:
            return as_error(warning)
    layout = parsed.layout
    return critical_structure_warning(
        has_html=layout.has_html,
        has_json=layout.has_json,
        has_connections=layout.has_connections,
        has_export_folder=layout.has_export_folder,
        base_path=parsed.discovery.base_path,
        top_level_folders=layout.top_level_folders,
    )


def _distinct_usernames(parsed: ParsedExport) -> set[str]:
    usernames: set[str] = set()
    for items in parsed.entries.values():
        usernames.update(entry.username for entry in items)
    return usernames


def _log_ingest_rejected(archive: ArchiveBlob, warning: ParseWarning) -> None:
    _LOGGER.warning(
        "ingest_rejected",
        display_name=archive.name,
        byte_size=archive.size,
        code=warning.code,
    )


def _failure_warnings(
    failure: ParseWarning,
    collected: tuple[ParseWarning, ...],
) -> tuple[ParseWarning, ...]:
    """Order warnings with the fatal one first, without repeating it."""
    others = tuple(
        warning
        for warning in collected
        if (warning.code, warning.message) != (failure.code, failure.message)
    )
    return (failure,) + others
