"""Archive signature validation and content identity."""

from __future__ import annotations

import hashlib

from core.constants import HASH_ALGORITHM, ZIP_SIGNATURE


def validate_archive(data: bytes) -> bool:
    """Return whether ``data`` starts with the ZIP local-file-header signature."""
    return data[: len(ZIP_SIGNATURE)] == ZIP_SIGNATURE


def identify_archive(data: bytes) -> str:
    """Compute the dataset identity of an archive.

    Args:
        data: Full archive bytes.

    Returns:
        Lowercase hex digest over every byte of the archive.
    """
    digest = hashlib.new(HASH_ALGORITHM)
    digest.update(data)
    return digest.hexdigest()
