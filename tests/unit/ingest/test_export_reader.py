"""Unit tests for the relationship export reader."""

from __future__ import annotations

from core.types import BadgeKey
from ingest.export_reader import read_export
from tests.archive_builders import (
    EXPORT_BASE,
    bare,
    build_export,
    build_zip,
    entry,
    mark_encrypted,
    set_compression_method,
    wrapped,
)


def _usernames(parsed, badge: BadgeKey) -> list[str]:
    return [item.username for item in parsed.entries[badge]]


def test_read_export_parses_wrapped_and_bare_members(tmp_path) -> None:
    """Both object-wrapped and bare-list members should be parsed."""
    path = build_export(tmp_path / "export.zip", ["alice", "bob"], ["carol"])

    parsed = read_export(path.read_bytes())

    assert (_usernames(parsed, BadgeKey.FOLLOWING), _usernames(parsed, BadgeKey.FOLLOWERS)) == (
        ["alice", "bob"],
        ["carol"],
    )


def test_read_export_normalizes_usernames(tmp_path) -> None:
    """Usernames should be trimmed and lowercased."""
    path = build_export(tmp_path / "export.zip", ["  Alice  "], ["BOB"])

    parsed = read_export(path.read_bytes())

    assert _usernames(parsed, BadgeKey.FOLLOWING) + _usernames(parsed, BadgeKey.FOLLOWERS) == [
        "alice",
        "bob",
    ]


def test_read_export_falls_back_to_title(tmp_path) -> None:
    """Entries without a value should use their title."""
    members = {
        f"{EXPORT_BASE}/following.json": {
            "relationships_following": [entry("dave", use_title=True)]
        },
        f"{EXPORT_BASE}/followers_1.json": bare(["erin"]),
    }
    path = build_zip(tmp_path / "export.zip", members)

    parsed = read_export(path.read_bytes())

    assert _usernames(parsed, BadgeKey.FOLLOWING) == ["dave"]


def test_read_export_keeps_entry_timestamps(tmp_path) -> None:
    """Entry timestamps should be carried through."""
    members = {
        f"{EXPORT_BASE}/following.json": [entry("alice", timestamp=1600000000)],
        f"{EXPORT_BASE}/followers_1.json": bare(["bob"]),
    }
    path = build_zip(tmp_path / "export.zip", members)

    parsed = read_export(path.read_bytes())

    assert parsed.entries[BadgeKey.FOLLOWING][0].timestamp == 1600000000


def test_read_export_deduplicates_within_list(tmp_path) -> None:
    """Repeated usernames within one list should appear once."""
    path = build_export(tmp_path / "export.zip", ["alice", "ALICE", "bob"], ["carol"])

    parsed = read_export(path.read_bytes())

    assert _usernames(parsed, BadgeKey.FOLLOWING) == ["alice", "bob"]


def test_read_export_merges_follower_parts_in_numeric_order(tmp_path) -> None:
    """Follower parts should be read in numeric, not lexical, order."""
    members = {
        f"{EXPORT_BASE}/following.json": bare(["alice"]),
        f"{EXPORT_BASE}/followers_10.json": bare(["zed"]),
        f"{EXPORT_BASE}/followers_2.json": bare(["yan"]),
        f"{EXPORT_BASE}/followers_1.json": bare(["xia"]),
    }
    path = build_zip(tmp_path / "export.zip", members)

    parsed = read_export(path.read_bytes())

    assert _usernames(parsed, BadgeKey.FOLLOWERS) == ["xia", "yan", "zed"]


def test_read_export_finds_members_in_nested_base_path(tmp_path) -> None:
    """Members under an extra top-level folder should still be found."""
    path = build_export(
        tmp_path / "export.zip",
        ["alice"],
        ["bob"],
        base="instagram-user-2024/connections/followers_and_following",
    )

    parsed = read_export(path.read_bytes())

    assert parsed.discovery.base_path == "instagram-user-2024/connections/followers_and_following"


def test_read_export_prefers_export_folder_over_other_matches(tmp_path) -> None:
    """A following.json under the export folder should win over stray copies."""
    members = {
        "misc/following.json": bare(["stray"]),
        f"{EXPORT_BASE}/following.json": bare(["alice"]),
        f"{EXPORT_BASE}/followers_1.json": bare(["bob"]),
    }
    path = build_zip(tmp_path / "export.zip", members)

    parsed = read_export(path.read_bytes())

    assert _usernames(parsed, BadgeKey.FOLLOWING) == ["alice"]


def test_read_export_reads_optional_members(tmp_path) -> None:
    """Optional members should populate their source badges."""
    extra = {
        "pending_follow_requests.json": wrapped("relationships_follow_requests_sent", ["pat"]),
        "close_friends.json": wrapped("relationships_close_friends", ["cleo"]),
        "recently_unfollowed_profiles.json": wrapped("relationships_unfollowed_users", ["uma"]),
    }
    path = build_export(tmp_path / "export.zip", ["alice"], ["bob"], extra)

    parsed = read_export(path.read_bytes())

    assert (
        _usernames(parsed, BadgeKey.PENDING),
        _usernames(parsed, BadgeKey.CLOSE),
        _usernames(parsed, BadgeKey.UNFOLLOWED),
    ) == (["pat"], ["cleo"], ["uma"])


def test_read_export_reports_missing_followers(tmp_path) -> None:
    """A missing followers member should add MISSING_FOLLOWERS."""
    members = {f"{EXPORT_BASE}/following.json": bare(["alice"])}
    path = build_zip(tmp_path / "export.zip", members)

    parsed = read_export(path.read_bytes())

    assert [warning.code for warning in parsed.warnings] == ["MISSING_FOLLOWERS"]


def test_read_export_reports_empty_following_as_info(tmp_path) -> None:
    """An empty following member should add EMPTY_FOLLOWING with info severity."""
    path = build_export(tmp_path / "export.zip", [], ["bob"])

    parsed = read_export(path.read_bytes())

    assert [(w.code, w.severity.value) for w in parsed.warnings] == [("EMPTY_FOLLOWING", "info")]


def test_read_export_reports_malformed_json(tmp_path) -> None:
    """Malformed JSON should add JSON_PARSE_ERROR and leave the member empty."""
    members = {
        f"{EXPORT_BASE}/following.json": "{not json",
        f"{EXPORT_BASE}/followers_1.json": bare(["bob"]),
    }
    path = build_zip(tmp_path / "export.zip", members)

    parsed = read_export(path.read_bytes())

    assert [warning.code for warning in parsed.warnings] == ["JSON_PARSE_ERROR"]


def test_read_export_reports_wrong_shape(tmp_path) -> None:
    """A well-formed member of the wrong shape should add INVALID_DATA_STRUCTURE."""
    members = {
        f"{EXPORT_BASE}/following.json": {"unexpected": "value"},
        f"{EXPORT_BASE}/followers_1.json": bare(["bob"]),
    }
    path = build_zip(tmp_path / "export.zip", members)

    parsed = read_export(path.read_bytes())

    assert [warning.code for warning in parsed.warnings] == ["INVALID_DATA_STRUCTURE"]


def test_read_export_records_discovery(tmp_path) -> None:
    """Discovery should list found members with item counts and paths."""
    path = build_export(tmp_path / "export.zip", ["alice", "bob"], ["carol"])

    parsed = read_export(path.read_bytes())
    following = parsed.discovery.files[0]

    assert (following.found, following.item_count, following.found_path) == (
        True,
        2,
        f"{EXPORT_BASE}/following.json",
    )


def test_read_export_detects_html_format(tmp_path) -> None:
    """HTML-only archives should report html format."""
    members = {f"{EXPORT_BASE}/following.html": "<html></html>"}
    path = build_zip(tmp_path / "export.zip", members)

    parsed = read_export(path.read_bytes())

    assert parsed.discovery.format == "html"


def test_read_export_reports_corrupted_zip() -> None:
    """Truncated archives should produce a CORRUPTED_ZIP fatal warning."""
    parsed = read_export(b"PK\x03\x04" + b"\x00" * 64)

    assert parsed.fatal is not None and parsed.fatal.code == "CORRUPTED_ZIP"


def test_read_export_reports_encrypted_member(tmp_path) -> None:
    """Password-protected members should produce a ZIP_ENCRYPTED fatal warning."""
    path = build_export(tmp_path / "export.zip", ["alice"], ["bob"])

    parsed = read_export(mark_encrypted(path.read_bytes()))

    assert parsed.fatal is not None and parsed.fatal.code == "ZIP_ENCRYPTED"


def test_read_export_reports_unsupported_compression(tmp_path) -> None:
    """Members using an unsupported compression method should be reported as corrupted."""
    path = build_export(tmp_path / "export.zip", ["alice"], ["bob"])

    parsed = read_export(set_compression_method(path.read_bytes(), 9))

    assert parsed.fatal is not None and parsed.fatal.code == "CORRUPTED_ZIP"
