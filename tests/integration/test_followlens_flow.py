"""Integration tests for the ingest, filter, and browse workflow."""

from __future__ import annotations

import asyncio
from dataclasses import replace

from core.cancellation import CancelToken
from core.types import BadgeKey, IngestStatus
from store.dataset_sdk import LensClient
from tests.archive_builders import export_blob


async def _ingest_and_open(client: LensClient, blob):
    report = await client.ingest(blob)
    return report, await client.open_dataset(report.identity)


async def _filter_many(browser, requests):
    results = []
    for query, badges in requests:
        results.append(await browser.filter_to_indices(query, badges))
    await browser.close()
    return results


def test_relationship_scenario_stats(tmp_path, lens_config) -> None:
    """Stats should reflect following, followers, and the derived badges."""
    client = LensClient(lens_config)
    blob = export_blob(tmp_path, ["alice", "bob"], ["alice", "carol"])

    async def _stats():
        _, browser = await _ingest_and_open(client, blob)
        try:
            return await browser.get_stats()
        finally:
            await browser.close()

    stats = asyncio.run(_stats())

    assert (
        stats[BadgeKey.FOLLOWING],
        stats[BadgeKey.FOLLOWERS],
        stats[BadgeKey.MUTUALS],
        stats[BadgeKey.NOT_FOLLOWING_BACK],
        stats[BadgeKey.NOT_FOLLOWED_BACK],
    ) == (2, 2, 1, 1, 1)


def test_relationship_scenario_filters(tmp_path, lens_config) -> None:
    """Query and badge filters should resolve to ascending indices."""
    client = LensClient(lens_config)
    blob = export_blob(tmp_path, ["alice", "bob"], ["alice", "carol"])

    async def _run():
        _, browser = await _ingest_and_open(client, blob)
        return await _filter_many(
            browser,
            [
                ("", {BadgeKey.MUTUALS}),
                ("bob", {BadgeKey.FOLLOWING}),
                ("", {BadgeKey.FOLLOWING, BadgeKey.FOLLOWERS}),
            ],
        )

    results = asyncio.run(_run())

    assert results == [[0], [1], [0, 1, 2]]


def test_badge_filter_matches_union_of_single_filters(tmp_path, lens_config) -> None:
    """Filtering by several badges should return the union of single-badge results."""
    client = LensClient(lens_config)
    blob = export_blob(tmp_path, ["ann", "ben", "cat", "dan"], ["ben", "eve", "fay"])

    async def _run():
        _, browser = await _ingest_and_open(client, blob)
        return await _filter_many(
            browser,
            [
                ("", {BadgeKey.NOT_FOLLOWING_BACK}),
                ("", {BadgeKey.NOT_FOLLOWED_BACK}),
                ("", {BadgeKey.NOT_FOLLOWING_BACK, BadgeKey.NOT_FOLLOWED_BACK}),
            ],
        )

    only_following, only_followers, combined = asyncio.run(_run())

    assert combined == sorted(set(only_following) | set(only_followers))


def test_stats_match_single_badge_filter_counts(tmp_path, lens_config) -> None:
    """Every badge count should equal the size of its single-badge filter."""
    client = LensClient(lens_config)
    blob = export_blob(tmp_path, ["ann", "ben", "cat"], ["ben", "dan"])

    async def _run():
        _, browser = await _ingest_and_open(client, blob)
        stats = await browser.get_stats()
        counts = {badge: len(await browser.filter_to_indices("", {badge})) for badge in BadgeKey}
        await browser.close()
        return stats, counts

    stats, counts = asyncio.run(_run())

    assert dict(stats) == counts


def test_unrestricted_filter_returns_every_account(tmp_path, lens_config) -> None:
    """An empty query with no badges should return every index."""
    client = LensClient(lens_config)
    blob = export_blob(tmp_path, ["ann", "ben"], ["cat", "dan", "eve"])

    async def _run():
        report, browser = await _ingest_and_open(client, blob)
        indices = (await _filter_many(browser, [("", set())]))[0]
        return report.account_count, indices

    account_count, indices = asyncio.run(_run())

    assert indices == list(range(account_count))


def test_reingesting_identical_bytes_is_a_cache_hit(tmp_path, lens_config) -> None:
    """Identical archives should resolve to one committed dataset."""
    client = LensClient(lens_config)
    blob = export_blob(tmp_path, ["ann"], ["ben"])
    first = asyncio.run(client.ingest(blob))

    second = asyncio.run(client.ingest(blob))

    assert (second.status, second.identity, len(client.list_datasets())) == (
        IngestStatus.CACHED,
        first.identity,
        1,
    )


def test_cancelled_ingest_leaves_no_dataset_and_can_be_retried(tmp_path, lens_config) -> None:
    """A cancelled ingestion should commit nothing and a retry should succeed."""
    client = LensClient(replace(lens_config, batch_size=1))
    blob = export_blob(tmp_path, ["ann", "ben", "cat"], ["dan", "eve"])
    token = CancelToken()
    cancelled = asyncio.run(
        client.ingest(blob, on_progress=lambda done, total: token.cancel(), cancel_token=token)
    )
    committed_after_cancel = client.get_metadata(cancelled.identity)

    retried = asyncio.run(client.ingest(blob))

    assert (cancelled.status, committed_after_cancel, retried.status) == (
        IngestStatus.CANCELLED,
        None,
        IngestStatus.COMPLETED,
    )


def test_browsing_every_slice_keeps_cache_bounded(tmp_path, lens_config) -> None:
    """Scrolling through a dataset should keep resident slices within the bound."""
    config = replace(lens_config, slice_size=2, max_cached_slices=2)
    client = LensClient(config)
    following = [f"user{number:02d}" for number in range(20)]
    blob = export_blob(tmp_path, following, ["user00"])

    async def _open():
        report = await client.ingest(blob)
        return await client.open_dataset(report.identity)

    browser = asyncio.run(_open())
    sizes = []
    for index in range(browser.account_count):
        browser.get_account(index)
        browser.wait_until_idle(5)
        sizes.append(browser.cache_stats()["size"])
    asyncio.run(browser.close())

    assert max(sizes) <= 3
