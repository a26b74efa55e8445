"""Cooperative cancellation tokens.

Long-running calls accept a token and check it at their yield points
(ingestion batch boundaries, filter request completions).
"""

from __future__ import annotations

import threading


class CancelToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; idempotent."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._event.is_set()


def is_cancelled(token: CancelToken | None) -> bool:
    """Return whether an optional token has been cancelled."""
    return token is not None and token.cancelled
