"""Unit tests for local record store persistence."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import LensStoreError
from core.types import AccountRecord, BadgeKey, DatasetMetadata, empty_badge_stats
from store.record_store import LocalRecordStore

_IDENTITY = "ab" * 32


def _records(start: int, usernames: list[str]) -> list[AccountRecord]:
    return [
        AccountRecord(
            index=start + offset,
            username=username,
            badges=frozenset({BadgeKey.FOLLOWING, BadgeKey.NOT_FOLLOWING_BACK}),
            timestamps={BadgeKey.FOLLOWING: 1700000000 + offset},
        )
        for offset, username in enumerate(usernames)
    ]


def _metadata(identity: str, account_count: int, minutes: int = 0) -> DatasetMetadata:
    return DatasetMetadata(
        identity=identity,
        display_name="export.zip",
        byte_size=1234,
        ingested_at=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
        account_count=account_count,
    )


def _commit(store: LocalRecordStore, identity: str, usernames: list[str], minutes: int = 0):
    store.put_account_range(identity, 0, _records(0, usernames))
    stats = empty_badge_stats()
    stats[BadgeKey.FOLLOWING] = len(usernames)
    store.put_badge_stats(identity, stats)
    store.put_metadata(_metadata(identity, len(usernames), minutes))


def test_get_metadata_returns_none_for_unknown_dataset(record_store) -> None:
    """Absent datasets should have no metadata."""
    metadata = record_store.get_metadata(_IDENTITY)

    assert metadata is None


def test_staged_data_is_invisible_before_metadata(record_store) -> None:
    """Staged ranges should not be readable until metadata commits them."""
    record_store.put_account_range(_IDENTITY, 0, _records(0, ["alice"]))

    with pytest.raises(LensStoreError):
        record_store.get_account_range(_IDENTITY, 0, 1)


def test_put_metadata_commits_dataset(record_store) -> None:
    """Committing should make metadata and records visible."""
    _commit(record_store, _IDENTITY, ["alice", "bob"])

    records = record_store.get_account_range(_IDENTITY, 0, 2)

    assert [record.username for record in records] == ["alice", "bob"]


def test_records_keep_badges_and_timestamps(record_store) -> None:
    """Persisted records should round-trip their badges and timestamps."""
    _commit(record_store, _IDENTITY, ["alice"])

    record = record_store.get_account_range(_IDENTITY, 0, 1)[0]

    assert (record.badges, dict(record.timestamps)) == (
        frozenset({BadgeKey.FOLLOWING, BadgeKey.NOT_FOLLOWING_BACK}),
        {BadgeKey.FOLLOWING: 1700000000},
    )


def test_get_account_range_spans_range_files(record_store) -> None:
    """Reads should slice across several persisted ranges."""
    record_store.put_account_range(_IDENTITY, 0, _records(0, ["a", "b"]))
    record_store.put_account_range(_IDENTITY, 2, _records(2, ["c", "d"]))
    record_store.put_badge_stats(_IDENTITY, empty_badge_stats())
    record_store.put_metadata(_metadata(_IDENTITY, 4))

    records = record_store.get_account_range(_IDENTITY, 1, 3)

    assert [record.index for record in records] == [1, 2]


def test_get_account_range_clips_past_end(record_store) -> None:
    """Ranges past the dataset end should be clipped."""
    _commit(record_store, _IDENTITY, ["alice", "bob"])

    records = record_store.get_account_range(_IDENTITY, 1, 50)

    assert [record.username for record in records] == ["bob"]


def test_put_account_range_rejects_gaps(record_store) -> None:
    """Records must be contiguous from the range start."""
    with pytest.raises(LensStoreError):
        record_store.put_account_range(_IDENTITY, 5, _records(0, ["alice"]))


def test_put_metadata_rejects_count_mismatch(record_store) -> None:
    """Metadata must match the staged account total."""
    record_store.put_account_range(_IDENTITY, 0, _records(0, ["alice"]))
    record_store.put_badge_stats(_IDENTITY, empty_badge_stats())

    with pytest.raises(LensStoreError):
        record_store.put_metadata(_metadata(_IDENTITY, 2))


def test_discard_staged_removes_uncommitted_data(record_store, lens_config) -> None:
    """Discarding should remove the staging directory."""
    record_store.put_account_range(_IDENTITY, 0, _records(0, ["alice"]))

    record_store.discard_staged(_IDENTITY)

    assert not (lens_config.data_root / "staging" / _IDENTITY).exists()


def test_read_account_table_returns_all_rows(record_store) -> None:
    """Bulk reads should return every committed row in index order."""
    _commit(record_store, _IDENTITY, ["alice", "bob", "carol"])

    table = record_store.read_account_table(_IDENTITY, columns=["index", "username"])

    assert table.column("username").to_pylist() == ["alice", "bob", "carol"]


def test_get_badge_stats_fills_every_badge(record_store) -> None:
    """Stats should contain every badge key."""
    _commit(record_store, _IDENTITY, ["alice"])

    stats = record_store.get_badge_stats(_IDENTITY)

    assert stats is not None and len(stats) == len(BadgeKey)


def test_list_datasets_orders_by_ingestion_time(record_store) -> None:
    """Datasets should be listed oldest first."""
    _commit(record_store, "cd" * 32, ["bob"], minutes=5)
    _commit(record_store, _IDENTITY, ["alice"], minutes=1)

    identities = [metadata.identity for metadata in record_store.list_datasets()]

    assert identities == [_IDENTITY, "cd" * 32]


def test_delete_dataset_removes_committed_data(record_store) -> None:
    """Deleting should remove the dataset and report it."""
    _commit(record_store, _IDENTITY, ["alice"])

    deleted = record_store.delete_dataset(_IDENTITY)

    assert deleted and record_store.get_metadata(_IDENTITY) is None


def test_delete_dataset_reports_missing_dataset(record_store) -> None:
    """Deleting an unknown dataset should return False."""
    deleted = record_store.delete_dataset(_IDENTITY)

    assert not deleted


def test_invalid_identity_is_rejected(record_store) -> None:
    """Identities must be hex digests to be used as paths."""
    with pytest.raises(LensStoreError):
        record_store.get_metadata("../escape")


def test_corrupt_metadata_raises_store_error(record_store, lens_config) -> None:
    """Unparseable metadata should raise a store error."""
    _commit(record_store, _IDENTITY, ["alice"])
    metadata_path = lens_config.data_root / "datasets" / _IDENTITY / "metadata.json"
    metadata_path.write_text("{broken", encoding="utf-8")

    with pytest.raises(LensStoreError):
        record_store.get_metadata(_IDENTITY)


def test_metadata_is_written_as_json(record_store, lens_config) -> None:
    """Metadata should be persisted as a readable JSON object."""
    _commit(record_store, _IDENTITY, ["alice"])
    metadata_path = lens_config.data_root / "datasets" / _IDENTITY / "metadata.json"

    payload = json.loads(metadata_path.read_text(encoding="utf-8"))

    assert payload["account_count"] == 1
