"""Relationship export reader.

This module opens an export ZIP, analyzes its folder layout, discovers
relationship members by basename, and parses each member into raw
username entries with the diagnostics collected along the way.
"""

from __future__ import annotations

import io
import json
import posixpath
import re
import zipfile
import zlib
from dataclasses import dataclass
from typing import Any, Mapping

from core.constants import CONNECTIONS_FOLDER_MARKER, EXPORT_FOLDER_MARKER
from core.diagnostics import (
    corrupted_zip_warning,
    empty_member_warning,
    encrypted_zip_warning,
    invalid_structure_warning,
    json_parse_warning,
    missing_member_warning,
)
from core.types import BadgeKey, FileDiscovery, FileExpectation, ParseWarning

# Preferred folders, most specific first.
_PREFERRED_BASE_PATHS = (
    CONNECTIONS_FOLDER_MARKER + EXPORT_FOLDER_MARKER,
    EXPORT_FOLDER_MARKER,
)
_FOLLOWERS_PART_PATTERN = re.compile(r"followers_(\d+)\.json", re.IGNORECASE)


@dataclass(frozen=True)
class ExpectedMember:
    """Expected relationship member of an export archive.

    Attributes:
        badge: Source badge assigned to every account in the member.
        name: Display name used in discovery reports.
        description: What the member contributes.
        required: Whether the dataset depends on this member.
        file_names: Accepted basenames, most common first.
        keys: Top-level object keys that may wrap the entry list.
        multipart: Whether the member is split over numbered parts.
    """

    badge: BadgeKey
    name: str
    description: str
    required: bool
    file_names: tuple[str, ...]
    keys: tuple[str, ...]
    multipart: bool = False


EXPECTED_MEMBERS: tuple[ExpectedMember, ...] = (
    ExpectedMember(
        badge=BadgeKey.FOLLOWING,
        name="following.json",
        description="Accounts you follow, required for non-follower detection",
        required=True,
        file_names=("following.json",),
        keys=("relationships_following",),
    ),
    ExpectedMember(
        badge=BadgeKey.FOLLOWERS,
        name="followers_*.json",
        description="Accounts that follow you, required for mutual detection",
        required=True,
        file_names=(),
        keys=("relationships_followers",),
        multipart=True,
    ),
    ExpectedMember(
        badge=BadgeKey.PENDING,
        name="pending_follow_requests.json",
        description="Outgoing follow requests still pending",
        required=False,
        file_names=("pending_follow_requests.json",),
        keys=("relationships_follow_requests_sent",),
    ),
    ExpectedMember(
        badge=BadgeKey.PERMANENT,
        name="recent_follow_requests.json",
        description="Follow requests kept permanently",
        required=False,
        file_names=("recent_follow_requests.json", "permanent_follow_requests.json"),
        keys=(
            "relationships_permanent_follow_requests",
            "relationships_follow_requests_permanent",
        ),
    ),
    ExpectedMember(
        badge=BadgeKey.RESTRICTED,
        name="restricted_profiles.json",
        description="Accounts you have restricted",
        required=False,
        file_names=("restricted_profiles.json",),
        keys=("relationships_restricted_users",),
    ),
    ExpectedMember(
        badge=BadgeKey.CLOSE,
        name="close_friends.json",
        description="Your close friends list",
        required=False,
        file_names=("close_friends.json", "friends.json"),
        keys=("relationships_close_friends",),
    ),
    ExpectedMember(
        badge=BadgeKey.UNFOLLOWED,
        name="recently_unfollowed.json",
        description="Accounts you recently unfollowed",
        required=False,
        file_names=(
            "recently_unfollowed_profiles.json",
            "recently_unfollowed.json",
            "unfollowed_profiles.json",
        ),
        keys=("relationships_unfollowed_users",),
    ),
    ExpectedMember(
        badge=BadgeKey.DISMISSED,
        name="dismissed_suggestions.json",
        description="Suggested accounts you dismissed",
        required=False,
        file_names=("removed_suggestions.json", "dismissed_suggestions.json"),
        keys=("relationships_dismissed_suggested_users",),
    ),
)

_MISSING_CONSEQUENCES = {
    BadgeKey.FOLLOWING: ("MISSING_FOLLOWING", "accounts you follow cannot be detected"),
    BadgeKey.FOLLOWERS: ("MISSING_FOLLOWERS", "accounts that follow you cannot be detected"),
}
_EMPTY_CODES = {
    BadgeKey.FOLLOWING: "EMPTY_FOLLOWING",
    BadgeKey.FOLLOWERS: "EMPTY_FOLLOWERS",
}


@dataclass(frozen=True)
class RawEntry:
    """Username parsed from one member entry."""

    username: str
    timestamp: int | None = None


@dataclass(frozen=True)
class ArchiveLayout:
    """Folder-level facts about an opened archive."""

    has_html: bool
    has_json: bool
    has_connections: bool
    has_export_folder: bool
    top_level_folders: tuple[str, ...]

    @property
    def format(self) -> str:
        if self.has_json:
            return "json"
        if self.has_html:
            return "html"
        return "unknown"


@dataclass(frozen=True)
class ParsedExport:
    """Raw relationship lists read from an archive.

    Attributes:
        entries: Deduplicated raw entries per source badge, in file order.
        discovery: Member discovery report.
        layout: Folder-level layout facts.
        warnings: Diagnostics collected while reading members.
        fatal: Archive-level error that stopped reading, if any.
    """

    entries: Mapping[BadgeKey, tuple[RawEntry, ...]]
    discovery: FileDiscovery
    layout: ArchiveLayout
    warnings: tuple[ParseWarning, ...] = ()
    fatal: ParseWarning | None = None

    @property
    def raw_entry_count(self) -> int:
        return sum(len(items) for items in self.entries.values())

    def required_usernames(self) -> set[str]:
        """Distinct usernames across the required lists."""
        usernames: set[str] = set()
        for expected in EXPECTED_MEMBERS:
            if expected.required:
                usernames.update(entry.username for entry in self.entries.get(expected.badge, ()))
        return usernames


def read_export(data: bytes) -> ParsedExport:
    """Open and parse a relationship export archive.

    Archive-level failures (corrupted or encrypted archives) are reported
    through ``ParsedExport.fatal``; member-level failures become warnings
    and the affected member is treated as empty.

    Args:
        data: Full archive bytes.

    Returns:
        Parsed relationship lists with discovery and diagnostics.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            member_paths = [info.filename for info in archive.infolist() if not info.is_dir()]
            layout = _analyze_layout(member_paths)
            return _read_members(archive, member_paths, layout)
    except (
        zipfile.BadZipFile,
        zlib.error,
        EOFError,
        NotImplementedError,
        RuntimeError,
    ) as error:
        return _fatal_export(corrupted_zip_warning(str(error) or type(error).__name__))
    except _EncryptedMemberError as error:
        return _fatal_export(encrypted_zip_warning(error.member_path))


class _EncryptedMemberError(Exception):
    def __init__(self, member_path: str) -> None:
        super().__init__(member_path)
        self.member_path = member_path


def _fatal_export(warning: ParseWarning) -> ParsedExport:
    layout = ArchiveLayout(False, False, False, False, ())
    discovery = FileDiscovery(format="unknown", is_export=False, base_path=None, files=())
    return ParsedExport(
        entries={},
        discovery=discovery,
        layout=layout,
        warnings=(warning,),
        fatal=warning,
    )


def _analyze_layout(member_paths: list[str]) -> ArchiveLayout:
    """Derive format and folder markers from member paths."""
    lowered = [path.lower() for path in member_paths]
    top_level = sorted({path.split("/", 1)[0] for path in member_paths if "/" in path})
    return ArchiveLayout(
        has_html=any(path.endswith((".html", ".htm")) for path in lowered),
        has_json=any(path.endswith(".json") for path in lowered),
        has_connections=any(CONNECTIONS_FOLDER_MARKER in path for path in lowered),
        has_export_folder=any(EXPORT_FOLDER_MARKER in path for path in lowered),
        top_level_folders=tuple(top_level),
    )


def _read_members(
    archive: zipfile.ZipFile,
    member_paths: list[str],
    layout: ArchiveLayout,
) -> ParsedExport:
    entries: dict[BadgeKey, tuple[RawEntry, ...]] = {}
    expectations: list[FileExpectation] = []
    warnings: list[ParseWarning] = []
    base_path: str | None = None
    for expected in EXPECTED_MEMBERS:
        found_paths = _discover_member(expected, member_paths)
        member_warnings: list[ParseWarning] = []
        items = _parse_member_files(archive, expected, found_paths, member_warnings)
        entries[expected.badge] = items
        warnings.extend(member_warnings)
        if found_paths and expected.required and base_path is None:
            base_path = posixpath.dirname(found_paths[0]) or None
        expectations.append(
            FileExpectation(
                name=expected.name,
                description=expected.description,
                required=expected.required,
                found=bool(found_paths),
                item_count=len(items) if found_paths else None,
                found_path=found_paths[0] if found_paths else None,
            )
        )
        warnings.extend(_expectation_warnings(expected, found_paths, items, member_warnings))
    discovery = FileDiscovery(
        format=layout.format,
        is_export=layout.has_connections or layout.has_export_folder,
        base_path=base_path,
        files=tuple(expectations),
    )
    return ParsedExport(
        entries=entries,
        discovery=discovery,
        layout=layout,
        warnings=tuple(warnings),
    )


def _expectation_warnings(
    expected: ExpectedMember,
    found_paths: list[str],
    items: tuple[RawEntry, ...],
    member_warnings: list[ParseWarning],
) -> list[ParseWarning]:
    if not expected.required:
        return []
    if not found_paths:
        code, consequence = _MISSING_CONSEQUENCES[expected.badge]
        return [missing_member_warning(code, expected.name, consequence)]
    if not items and not member_warnings:
        return [empty_member_warning(_EMPTY_CODES[expected.badge], expected.name)]
    return []


def _discover_member(expected: ExpectedMember, member_paths: list[str]) -> list[str]:
    """Find archive paths for one expected member.

    Members are matched by basename anywhere in the archive. When several
    folders hold a match, the folder under the most specific preferred base
    path wins; multipart members return every part in that folder in
    numeric order.
    """
    candidates = [path for path in member_paths if _matches_member(expected, path)]
    if not candidates:
        return []
    best = min(candidates, key=_path_preference)
    if not expected.multipart:
        return [best]
    folder = posixpath.dirname(best)
    parts = [path for path in candidates if posixpath.dirname(path) == folder]
    return sorted(parts, key=_part_number)


def _matches_member(expected: ExpectedMember, path: str) -> bool:
    basename = posixpath.basename(path).lower()
    if expected.multipart:
        return _FOLLOWERS_PART_PATTERN.fullmatch(basename) is not None
    return basename in expected.file_names


def _path_preference(path: str) -> tuple[int, int, str]:
    lowered = path.lower()
    for rank, marker in enumerate(_PREFERRED_BASE_PATHS):
        if marker + "/" in lowered or lowered.startswith(marker):
            return (rank, len(path), path)
    return (len(_PREFERRED_BASE_PATHS), len(path), path)


def _part_number(path: str) -> int:
    match = _FOLLOWERS_PART_PATTERN.fullmatch(posixpath.basename(path).lower())
    return int(match.group(1)) if match else 0


def _parse_member_files(
    archive: zipfile.ZipFile,
    expected: ExpectedMember,
    paths: list[str],
    warnings: list[ParseWarning],
) -> tuple[RawEntry, ...]:
    """Parse all files of one member, deduplicating usernames across parts."""
    seen: set[str] = set()
    items: list[RawEntry] = []
    for path in paths:
        payload = _load_json_member(archive, path, warnings)
        if payload is None:
            continue
        raw_entries = _unwrap_entries(payload, expected.keys)
        if raw_entries is None:
            warnings.append(invalid_structure_warning(path, expected.keys))
            continue
        for raw_entry in raw_entries:
            entry = _parse_entry(raw_entry)
            if entry is None or entry.username in seen:
                continue
            seen.add(entry.username)
            items.append(entry)
    return tuple(items)


def _load_json_member(
    archive: zipfile.ZipFile,
    path: str,
    warnings: list[ParseWarning],
) -> Any | None:
    """Read and decode one JSON member.

    Raises:
        _EncryptedMemberError: If the member is password-protected.
    """
    info = archive.getinfo(path)
    if info.flag_bits & 0x1:
        raise _EncryptedMemberError(path)
    try:
        raw_bytes = archive.read(info)
    except RuntimeError as error:
        if "encrypted" in str(error).lower() or "password" in str(error).lower():
            raise _EncryptedMemberError(path) from error
        raise
    try:
        return json.loads(raw_bytes.decode("utf-8-sig"))
    except UnicodeDecodeError as error:
        warnings.append(json_parse_warning(path, f"invalid UTF-8 at byte {error.start}"))
    except json.JSONDecodeError as error:
        warnings.append(json_parse_warning(path, f"{error.msg} (line {error.lineno})"))
    return None


def _unwrap_entries(payload: Any, keys: tuple[str, ...]) -> list[Any] | None:
    """Return the entry list of a member payload, or None for other shapes."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return None


def _parse_entry(raw_entry: Any) -> RawEntry | None:
    """Extract a normalized username and timestamp from one entry."""
    if not isinstance(raw_entry, dict):
        return None
    first_item: dict[str, Any] = {}
    string_list_data = raw_entry.get("string_list_data")
    if isinstance(string_list_data, list) and string_list_data:
        if isinstance(string_list_data[0], dict):
            first_item = string_list_data[0]
    username = _normalize_username(first_item.get("value"))
    if username is None:
        username = _normalize_username(raw_entry.get("title"))
    if username is None:
        return None
    timestamp = first_item.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        timestamp = None
    return RawEntry(username=username, timestamp=timestamp)


def _normalize_username(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None
