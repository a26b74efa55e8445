"""Python SDK for dataset operations.

This module exposes high-level APIs for ingesting export archives,
listing cached datasets, and browsing one dataset through the filter
engine and the windowed account source.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from browse.windowed_source import SliceListener, WindowedAccountSource
from core.cancellation import CancelToken
from core.config import LensConfig
from core.errors import LensFilterError, LensIngestError, LensStoreError
from core.types import (
    AccountRecord,
    ArchiveBlob,
    BadgeKey,
    BadgeStats,
    DatasetMetadata,
    IngestReport,
)
from filtering.engine_factory import ResilientFilterEngine, create_filter_engine
from filtering.filter_session import FilterSession, ResultCallback
from ingest.pipeline import ProgressCallback, ingest_archive
from store.record_store import LocalRecordStore


class LensClient:
    """Primary SDK entry point."""

    def __init__(self, config: LensConfig | None = None) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration.
        """
        self._config = config or LensConfig.from_env()
        self._store = LocalRecordStore(self._config)

    @property
    def config(self) -> LensConfig:
        return self._config

    async def ingest(
        self,
        archive: ArchiveBlob | str | Path,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancelToken | None = None,
    ) -> IngestReport:
        """Ingest an export archive, reusing the cached dataset when present.

        Args:
            archive: Archive blob or path to a local archive file.
            on_progress: Optional ``(processed, total)`` callback.
            cancel_token: Optional cancellation token.

        Returns:
            Ingestion report.

        Raises:
            LensIngestError: If ``archive`` is a path that cannot be read.
        """
        blob = archive if isinstance(archive, ArchiveBlob) else _load_archive(archive)
        return await ingest_archive(blob, self._store, self._config, on_progress, cancel_token)

    def list_datasets(self) -> list[DatasetMetadata]:
        """List committed datasets ordered by ingestion time."""
        return self._store.list_datasets()

    def get_metadata(self, identity: str) -> DatasetMetadata | None:
        return self._store.get_metadata(identity)

    def delete_dataset(self, identity: str) -> bool:
        """Delete a committed dataset.

        Returns:
            Whether a dataset was removed.
        """
        return self._store.delete_dataset(identity)

    async def open_dataset(
        self,
        identity: str,
        on_slice_loaded: SliceListener | None = None,
    ) -> "DatasetBrowser":
        """Open a committed dataset for filtering and browsing.

        Args:
            identity: Dataset identity.
            on_slice_loaded: Optional listener fired when a slice is cached.

        Returns:
            Browser bound to the dataset.

        Raises:
            LensStoreError: If the dataset is not committed.
            LensFilterError: If the filter engine cannot load the dataset.
        """
        metadata = self._store.get_metadata(identity)
        if metadata is None:
            raise LensStoreError(
                f"Dataset {identity} not found in {self._config.data_root}. "
                "Ingest the archive first or run 'followlens datasets' to list identities."
            )
        engine = create_filter_engine(self._config, self._store)
        try:
            await engine.initialize(identity, metadata.account_count)
        except LensFilterError:
            await engine.dispose()
            raise
        source = WindowedAccountSource(
            self._store,
            slice_size=self._config.slice_size,
            max_slices=self._config.max_cached_slices,
            on_slice_loaded=on_slice_loaded,
        )
        source.set_dataset(identity, metadata.account_count)
        return DatasetBrowser(metadata, engine, source, self._config.search_debounce_seconds)


class DatasetBrowser:
    """Handle over one opened dataset."""

    def __init__(
        self,
        metadata: DatasetMetadata,
        engine: ResilientFilterEngine,
        source: WindowedAccountSource,
        debounce_seconds: float,
    ) -> None:
        self._metadata = metadata
        self._engine = engine
        self._source = source
        self._debounce_seconds = debounce_seconds
        self._sessions: list[FilterSession] = []

    @property
    def metadata(self) -> DatasetMetadata:
        return self._metadata

    @property
    def identity(self) -> str:
        return self._metadata.identity

    @property
    def account_count(self) -> int:
        return self._metadata.account_count

    @property
    def engine(self) -> ResilientFilterEngine:
        return self._engine

    async def filter_to_indices(
        self,
        query: str = "",
        badge_filters: Iterable[BadgeKey] = (),
    ) -> list[int]:
        """Return ascending indices matching a query and badge filters."""
        return await self._engine.filter_to_indices(query, badge_filters)

    async def get_stats(self) -> BadgeStats:
        return await self._engine.get_stats()

    def get_account(self, index: int) -> AccountRecord | None:
        return self._source.get_account(index)

    async def get_by_indices(self, indices: Iterable[int]) -> list[AccountRecord]:
        return await self._source.get_by_indices(indices)

    def preload_adjacent(self, visible_start: int, visible_end: int) -> None:
        self._source.preload_adjacent(visible_start, visible_end)

    def clear_cache(self) -> None:
        self._source.clear_cache()

    def cache_stats(self) -> dict[str, int]:
        return self._source.cache_stats()

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        return self._source.wait_until_idle(timeout)

    def new_filter_session(self, on_result: ResultCallback | None = None) -> FilterSession:
        """Create a debounced filter session bound to this dataset."""
        session = FilterSession(self._engine, self._debounce_seconds, on_result)
        self._sessions.append(session)
        return session

    async def close(self) -> None:
        """Close sessions, the windowed source, and the filter engine."""
        for session in self._sessions:
            session.close()
        self._sessions.clear()
        self._source.close()
        await self._engine.dispose()


def _load_archive(path: str | Path) -> ArchiveBlob:
    try:
        return ArchiveBlob.from_path(path)
    except OSError as error:
        raise LensIngestError(
            f"Failed to read archive {path}: {error}. "
            "Check that the path points to a readable export .zip file."
        ) from error
