"""followlens exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
"""

from __future__ import annotations


class LensError(Exception):
    """Base exception for all followlens failures."""


class LensConfigError(LensError):
    """Raised for invalid runtime configuration."""


class LensIngestError(LensError):
    """Raised for archive parsing and ingest failures."""


class LensStoreError(LensError):
    """Raised for local record store failures."""


class LensFilterError(LensError):
    """Raised when a filter engine cannot answer a request."""


class LensWorkerError(LensFilterError):
    """Raised when the isolated filter worker fails to start, times out, or crashes."""
