"""Shared serialization for account records and dataset metadata.

This module centralizes the Arrow schema for persisted account ranges
and the JSON payloads for metadata and badge statistics records.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

import pyarrow as pa

from core.types import (
    AccountRecord,
    BadgeKey,
    BadgeStats,
    DatasetMetadata,
    badge_mask,
    badges_from_mask,
    empty_badge_stats,
)

ACCOUNT_SCHEMA = pa.schema(
    [
        pa.field("index", pa.int64(), nullable=False),
        pa.field("username", pa.string(), nullable=False),
        pa.field("badge_mask", pa.int32(), nullable=False),
        pa.field("timestamps", pa.map_(pa.string(), pa.int64())),
    ]
)


def account_records_to_table(records: list[AccountRecord]) -> pa.Table:
    """Convert account records into an Arrow table.

    Args:
        records: Records in index order.

    Returns:
        Table matching ``ACCOUNT_SCHEMA``.
    """
    return pa.table(
        {
            "index": [record.index for record in records],
            "username": [record.username for record in records],
            "badge_mask": [badge_mask(record.badges) for record in records],
            "timestamps": [
                [(badge.value, value) for badge, value in record.timestamps.items()]
                for record in records
            ],
        },
        schema=ACCOUNT_SCHEMA,
    )


def account_records_from_table(table: pa.Table) -> list[AccountRecord]:
    """Convert an Arrow table back into account records.

    Args:
        table: Table matching ``ACCOUNT_SCHEMA``.

    Returns:
        Records in table row order.
    """
    records: list[AccountRecord] = []
    for row in table.to_pylist():
        timestamp_pairs = row.get("timestamps") or []
        records.append(
            AccountRecord(
                index=int(row["index"]),
                username=str(row["username"]),
                badges=badges_from_mask(int(row["badge_mask"])),
                timestamps={BadgeKey(key): int(value) for key, value in timestamp_pairs},
            )
        )
    return records


def metadata_to_payload(metadata: DatasetMetadata) -> dict[str, object]:
    """Serialize dataset metadata to a JSON-safe dictionary."""
    return {
        "identity": metadata.identity,
        "display_name": metadata.display_name,
        "byte_size": metadata.byte_size,
        "ingested_at": metadata.ingested_at.isoformat(),
        "account_count": metadata.account_count,
    }


def metadata_from_payload(payload: dict[str, Any]) -> DatasetMetadata:
    """Deserialize dataset metadata from a dictionary.

    Raises:
        KeyError: If a required field is missing.
        ValueError: If a field has an invalid value.
    """
    return DatasetMetadata(
        identity=str(payload["identity"]),
        display_name=str(payload["display_name"]),
        byte_size=int(payload["byte_size"]),
        ingested_at=datetime.fromisoformat(str(payload["ingested_at"])),
        account_count=int(payload["account_count"]),
    )


def badge_stats_to_payload(stats: BadgeStats) -> dict[str, int]:
    """Serialize badge stats keyed by badge value."""
    return {badge.value: int(stats.get(badge, 0)) for badge in BadgeKey}


def badge_stats_from_payload(payload: Mapping[str, Any]) -> dict[BadgeKey, int]:
    """Deserialize badge stats, filling absent badges with zero."""
    stats = empty_badge_stats()
    for key, value in payload.items():
        stats[BadgeKey(key)] = int(value)
    return stats
