"""Parse warning catalog and error classification.

This module builds the user-facing diagnostics emitted during ingestion
and maps unexpected exception text onto stable warning codes.
"""

from __future__ import annotations

from dataclasses import replace

from core.types import ParseWarning, WarningSeverity

REQUEST_EXPORT_FIX = (
    "Request a new export from Settings > Accounts Center > Your information and "
    "permissions > Download your information, choose JSON format and include "
    '"Followers and following".'
)

# Codes that describe unusable input or data rather than infrastructure.
STRUCTURAL_CODES = ("JSON_PARSE_ERROR", "INVALID_DATA_STRUCTURE")

# First matching rule wins; every keyword of a rule must appear in the message.
_CLASSIFICATION_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("not a zip",), "CORRUPTED_ZIP"),
    (("bad zip",), "CORRUPTED_ZIP"),
    (("corrupt",), "CORRUPTED_ZIP"),
    (("bad magic number",), "CORRUPTED_ZIP"),
    (("encrypted",), "ZIP_ENCRYPTED"),
    (("password",), "ZIP_ENCRYPTED"),
    (("file is empty",), "EMPTY_FILE"),
    (("too large",), "FILE_TOO_LARGE"),
    (("expecting value",), "JSON_PARSE_ERROR"),
    (("json",), "JSON_PARSE_ERROR"),
    (("timeout",), "WORKER_TIMEOUT"),
    (("timed out",), "WORKER_TIMEOUT"),
    (("worker", "start"), "WORKER_INIT_ERROR"),
    (("worker", "crash"), "WORKER_CRASHED"),
    (("worker", "exit"), "WORKER_CRASHED"),
    (("no space left",), "QUOTA_EXCEEDED"),
    (("disk quota",), "QUOTA_EXCEEDED"),
    (("permission denied",), "STORAGE_PERMISSION_DENIED"),
    (("store",), "STORAGE_ERROR"),
    (("cancel",), "UPLOAD_CANCELLED"),
)


def classify_error_message(message: str) -> str:
    """Classify an error by its message text.

    Args:
        message: Exception or error message.

    Returns:
        Matching warning code, or ``UNKNOWN``.
    """
    lowered = message.lower()
    for keywords, code in _CLASSIFICATION_RULES:
        if all(keyword in lowered for keyword in keywords):
            return code
    return "UNKNOWN"


def as_error(warning: ParseWarning) -> ParseWarning:
    """Promote a warning to error severity."""
    return replace(warning, severity=WarningSeverity.ERROR)


def not_zip_warning(archive_name: str) -> ParseWarning:
    return ParseWarning(
        code="NOT_ZIP",
        message=f"'{archive_name}' is not a ZIP archive.",
        severity=WarningSeverity.ERROR,
        fix="Upload the .zip file from your data download, not a folder or extracted file.",
    )


def empty_file_warning(archive_name: str) -> ParseWarning:
    return ParseWarning(
        code="EMPTY_FILE",
        message=f"'{archive_name}' is empty (0 bytes).",
        severity=WarningSeverity.ERROR,
        fix="The download may have been interrupted. Download the export again.",
    )


def file_too_large_warning(archive_name: str, size: int, limit: int) -> ParseWarning:
    return ParseWarning(
        code="FILE_TOO_LARGE",
        message=(
            f"'{archive_name}' is {size // (1024 * 1024)} MB, above the "
            f"{limit // (1024 * 1024)} MB limit."
        ),
        severity=WarningSeverity.ERROR,
        fix="Request an export containing only followers and following data.",
    )


def corrupted_zip_warning(detail: str) -> ParseWarning:
    return ParseWarning(
        code="CORRUPTED_ZIP",
        message=f"The ZIP archive is damaged and cannot be opened: {detail}.",
        severity=WarningSeverity.ERROR,
        fix="Download the export again and make sure the download completed.",
    )


def encrypted_zip_warning(member_path: str) -> ParseWarning:
    return ParseWarning(
        code="ZIP_ENCRYPTED",
        message=f"Archive member '{member_path}' is password-protected.",
        severity=WarningSeverity.ERROR,
        fix="Data exports are never encrypted. " + REQUEST_EXPORT_FIX,
    )


def json_parse_warning(member_path: str, detail: str) -> ParseWarning:
    return ParseWarning(
        code="JSON_PARSE_ERROR",
        message=f"'{member_path}' contains malformed JSON: {detail}.",
        severity=WarningSeverity.WARNING,
        fix="The export may be corrupted. " + REQUEST_EXPORT_FIX,
    )


def invalid_structure_warning(member_path: str, expected_keys: tuple[str, ...]) -> ParseWarning:
    return ParseWarning(
        code="INVALID_DATA_STRUCTURE",
        message=(
            f"'{member_path}' has an unexpected structure: expected a list of entries "
            f"or an object with one of: {', '.join(expected_keys)}."
        ),
        severity=WarningSeverity.WARNING,
        fix="The export format may have changed. Report the issue with the member layout.",
    )


def missing_member_warning(code: str, member_name: str, consequence: str) -> ParseWarning:
    return ParseWarning(
        code=code,
        message=f"{member_name} not found; {consequence}.",
        severity=WarningSeverity.WARNING,
        fix=REQUEST_EXPORT_FIX,
    )


def empty_member_warning(code: str, member_name: str) -> ParseWarning:
    return ParseWarning(
        code=code,
        message=f"{member_name} is empty or contains no valid accounts.",
        severity=WarningSeverity.INFO,
    )


def storage_warning(detail: str) -> ParseWarning:
    code = classify_error_message(detail)
    if code not in ("QUOTA_EXCEEDED", "STORAGE_PERMISSION_DENIED"):
        code = "STORAGE_ERROR"
    return ParseWarning(
        code=code,
        message=f"Failed to save the dataset locally: {detail}.",
        severity=WarningSeverity.ERROR,
        fix="Free disk space or check write permissions on the data root, then retry.",
    )


def critical_structure_warning(
    has_html: bool,
    has_json: bool,
    has_connections: bool,
    has_export_folder: bool,
    base_path: str | None,
    top_level_folders: tuple[str, ...],
) -> ParseWarning:
    """Build the most specific fatal warning for an unusable archive layout."""
    found = ", ".join(top_level_folders) or "none"
    if has_html and not has_json:
        return ParseWarning(
            code="HTML_FORMAT",
            message="Wrong format: the export is HTML, but JSON is required.",
            severity=WarningSeverity.ERROR,
            fix="Request the export again and select JSON instead of HTML.",
        )
    if not has_connections and not has_export_folder:
        return ParseWarning(
            code="NOT_INSTAGRAM_EXPORT",
            message="This archive does not look like a followers/following data export.",
            severity=WarningSeverity.ERROR,
            fix=f"Found top-level folders: {found}. " + REQUEST_EXPORT_FIX,
        )
    if has_connections and not has_export_folder:
        return ParseWarning(
            code="INCOMPLETE_EXPORT",
            message="The export is missing the followers_and_following folder.",
            severity=WarningSeverity.ERROR,
            fix=REQUEST_EXPORT_FIX,
        )
    return ParseWarning(
        code="NO_DATA_FILES",
        message="Could not find following.json or followers files with any accounts.",
        severity=WarningSeverity.ERROR,
        fix=(
            f"Expected files under {base_path or 'connections/followers_and_following'}. "
            f"Found top-level: {found}."
        ),
    )
