"""followlens CLI entry points.
This module exposes commands for ingesting archives and browsing datasets.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from core.config import LensConfig
from core.errors import LensError
from core.types import BadgeKey, ParseWarning, parse_badge_key
from store.dataset_sdk import LensClient


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(
        prog="followlens",
        description="Browse a followers/following data export locally",
    )
    parser.add_argument("--data-root", help="Override FOLLOWLENS_DATA_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_ingest_command(subparsers)
    _add_datasets_command(subparsers)
    _add_stats_command(subparsers)
    _add_filter_command(subparsers)
    _add_delete_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the followlens CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        client = _build_client(args.data_root)
        if args.command == "ingest":
            return _run_ingest_command(client, args)
        if args.command == "datasets":
            return _run_datasets_command(client)
        if args.command == "stats":
            return _run_stats_command(client, args)
        if args.command == "filter":
            return _run_filter_command(client, args)
        if args.command == "delete":
            return _run_delete_command(client, args)
    except (LensError, OSError) as error:
        print(f"error: {error}", file=sys.stderr)
        return 1
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(data_root: str | None) -> LensClient:
    """Build SDK client with optional data-root override.

    Args:
        data_root: Optional override path.

    Returns:
        Configured SDK client.
    """
    config = LensConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    return LensClient(config)


def _run_ingest_command(client: LensClient, args: argparse.Namespace) -> int:
    """Handle ingest command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    report = asyncio.run(client.ingest(Path(args.archive).expanduser()))
    for warning in report.warnings:
        print(_format_warning(warning), file=sys.stderr)
    if not report.succeeded:
        return 1
    print(f"{report.identity}\t{report.account_count}\t{report.status.value}")
    return 0


def _run_datasets_command(client: LensClient) -> int:
    """Handle datasets command."""
    for metadata in client.list_datasets():
        print(
            f"{metadata.identity}\t"
            f"{metadata.account_count}\t"
            f"{metadata.ingested_at.isoformat()}\t"
            f"{metadata.display_name}"
        )
    return 0


def _run_stats_command(client: LensClient, args: argparse.Namespace) -> int:
    """Handle stats command."""
    stats = asyncio.run(_load_stats(client, args.identity))
    for badge in BadgeKey:
        print(f"{badge.value}\t{stats.get(badge, 0)}")
    return 0


def _run_filter_command(client: LensClient, args: argparse.Namespace) -> int:
    """Handle filter command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    badges = frozenset(args.badge or ())
    rows = asyncio.run(_filter_rows(client, args.identity, args.query, badges, args.limit))
    for username, row_badges in rows:
        labels = ",".join(badge.value for badge in BadgeKey if badge in row_badges)
        print(f"{username}\t{labels}")
    return 0


def _run_delete_command(client: LensClient, args: argparse.Namespace) -> int:
    """Handle delete command."""
    if not client.delete_dataset(args.identity):
        print(f"error: dataset {args.identity} not found", file=sys.stderr)
        return 1
    print(args.identity)
    return 0


async def _load_stats(client: LensClient, identity: str) -> dict[BadgeKey, int]:
    browser = await client.open_dataset(identity)
    try:
        return dict(await browser.get_stats())
    finally:
        await browser.close()


async def _filter_rows(
    client: LensClient,
    identity: str,
    query: str,
    badges: frozenset[BadgeKey],
    limit: int | None,
) -> list[tuple[str, frozenset[BadgeKey]]]:
    browser = await client.open_dataset(identity)
    try:
        indices = await browser.filter_to_indices(query, badges)
        if limit is not None:
            indices = indices[:limit]
        records = await browser.get_by_indices(indices)
    finally:
        await browser.close()
    return [(record.username, record.badges) for record in records]


def _format_warning(warning: ParseWarning) -> str:
    line = f"{warning.severity.value}: [{warning.code}] {warning.message}"
    if warning.fix:
        line += f" Fix: {warning.fix}"
    return line


def _parse_badge_argument(raw_value: str) -> BadgeKey:
    try:
        return parse_badge_key(raw_value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(str(error)) from error


def _parse_limit(raw_value: str) -> int:
    try:
        value = int(raw_value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(f"expected integer, got '{raw_value}'") from error
    if value < 1:
        raise argparse.ArgumentTypeError(f"expected integer >= 1, got {value}")
    return value


def _add_ingest_command(subparsers: Any) -> None:
    """Register ingest subcommand."""
    parser = subparsers.add_parser("ingest", help="Ingest a data export ZIP archive")
    parser.add_argument("archive", help="Path to the export .zip file")


def _add_datasets_command(subparsers: Any) -> None:
    """Register datasets subcommand."""
    subparsers.add_parser("datasets", help="List cached datasets")


def _add_stats_command(subparsers: Any) -> None:
    """Register stats subcommand."""
    parser = subparsers.add_parser("stats", help="Show badge counts for a dataset")
    parser.add_argument("identity", help="Dataset identity")


def _add_filter_command(subparsers: Any) -> None:
    """Register filter subcommand."""
    parser = subparsers.add_parser("filter", help="List accounts matching a query and badges")
    parser.add_argument("identity", help="Dataset identity")
    parser.add_argument("--query", default="", help="Case-insensitive username substring")
    parser.add_argument(
        "--badge",
        action="append",
        type=_parse_badge_argument,
        help="Badge filter; repeat to match any of several badges",
    )
    parser.add_argument("--limit", type=_parse_limit, help="Maximum accounts to print")


def _add_delete_command(subparsers: Any) -> None:
    """Register delete subcommand."""
    parser = subparsers.add_parser("delete", help="Delete a cached dataset")
    parser.add_argument("identity", help="Dataset identity")
