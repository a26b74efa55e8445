"""Process-isolated filter engine.

The worker process owns a ``DatasetFilterCore`` and is reached only
through request/reply messages over a pipe:

    request: {"op": "initialize" | "is_ready" | "filter" | "stats" | "reset" | "dispose",
              "args": [...]}
    reply:   {"ok": True, "result": ...} or {"ok": False, "error": "..."}

The worker sends one ``{"ok": True, "result": "ready"}`` message after
start-up. Badge keys cross the pipe as their string values.
"""

from __future__ import annotations

import asyncio
import multiprocessing
import threading
from multiprocessing.connection import Connection
from pathlib import Path
from typing import Any, Iterable

from core.config import LensConfig
from core.constants import WORKER_STARTUP_TIMEOUT_SECONDS
from core.errors import LensError, LensFilterError, LensWorkerError
from core.logging_config import get_logger
from core.types import BadgeKey, BadgeStats
from filtering.engine import DatasetFilterCore
from store.record_store import LocalRecordStore

_LOGGER = get_logger(__name__)
_READY_RESULT = "ready"
_JOIN_TIMEOUT_SECONDS = 2.0


def worker_supported() -> bool:
    """Return whether this runtime can host a spawned worker process."""
    try:
        multiprocessing.get_context("spawn")
    except ValueError:
        return False
    return True


class WorkerFilterEngine:
    """Filter engine that evaluates requests in a spawned process."""

    def __init__(self, config: LensConfig) -> None:
        self._data_root = config.data_root
        self._timeout = config.worker_timeout_seconds
        self._process: Any = None
        self._conn: Connection | None = None
        self._lock = threading.Lock()

    @property
    def started(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def start(self) -> None:
        """Spawn the worker and wait for its readiness message.

        Raises:
            LensWorkerError: If the worker does not start in time.
        """
        with self._lock:
            self._start_locked()

    async def initialize(self, identity: str, total_accounts: int) -> None:
        await self._call("initialize", identity, total_accounts)

    async def is_ready(self) -> bool:
        return bool(await self._call("is_ready"))

    async def filter_to_indices(
        self,
        query: str,
        badge_filters: Iterable[BadgeKey],
    ) -> list[int]:
        badge_values = [BadgeKey(badge).value for badge in badge_filters]
        return list(await self._call("filter", query, badge_values))

    async def get_stats(self) -> BadgeStats:
        payload = await self._call("stats")
        return {BadgeKey(key): int(value) for key, value in payload.items()}

    async def reset(self) -> None:
        await self._call("reset")

    async def dispose(self) -> None:
        await asyncio.to_thread(self.shutdown)

    def shutdown(self) -> None:
        """Ask the worker to exit and reap it; safe to call repeatedly."""
        with self._lock:
            if self._process is None:
                return
            if self._conn is not None and self._process.is_alive():
                try:
                    self._conn.send({"op": "dispose", "args": []})
                    if self._conn.poll(_JOIN_TIMEOUT_SECONDS):
                        self._conn.recv()
                except (EOFError, OSError) as error:
                    _LOGGER.warning("filter_worker_dispose_failed", error=str(error))
            self._stop_locked()
            _LOGGER.info("filter_worker_stopped")

    async def _call(self, op: str, *args: Any) -> Any:
        return await asyncio.to_thread(self._request, op, list(args))

    def _request(self, op: str, args: list[Any]) -> Any:
        """Run one blocking round trip.

        Raises:
            LensWorkerError: If the worker cannot start, times out, or exits.
            LensFilterError: If the worker reports a request failure.
        """
        with self._lock:
            if not self.started:
                self._start_locked()
            conn = self._conn
            if conn is None:
                raise LensWorkerError("Filter worker has no open connection. Restart the engine.")
            try:
                conn.send({"op": op, "args": args})
                if not conn.poll(self._timeout):
                    self._stop_locked()
                    raise LensWorkerError(
                        f"Filter worker timed out after {self._timeout}s on '{op}'. "
                        "Increase FOLLOWLENS_WORKER_TIMEOUT or use the inline engine."
                    )
                reply = conn.recv()
            except (EOFError, OSError) as error:
                self._stop_locked()
                raise LensWorkerError(
                    f"Filter worker exited unexpectedly during '{op}': {error}. "
                    "The inline engine will be used instead."
                ) from error
        if not reply.get("ok"):
            raise LensFilterError(str(reply.get("error")))
        return reply.get("result")

    def _start_locked(self) -> None:
        context = multiprocessing.get_context("spawn")
        parent_conn, child_conn = context.Pipe()
        process = context.Process(
            target=_serve_requests,
            args=(child_conn, str(self._data_root)),
            name="followlens-filter-worker",
            daemon=True,
        )
        try:
            process.start()
        except OSError as error:
            raise LensWorkerError(
                f"Filter worker failed to start: {error}. "
                "Set FOLLOWLENS_FILTER_ENGINE=inline to skip the worker."
            ) from error
        child_conn.close()
        self._process = process
        self._conn = parent_conn
        try:
            ready = parent_conn.poll(WORKER_STARTUP_TIMEOUT_SECONDS) and parent_conn.recv()
        except (EOFError, OSError):
            ready = None
        if not ready or ready.get("result") != _READY_RESULT:
            self._stop_locked()
            raise LensWorkerError(
                f"Filter worker failed to start within {WORKER_STARTUP_TIMEOUT_SECONDS}s. "
                "Set FOLLOWLENS_FILTER_ENGINE=inline to skip the worker."
            )
        _LOGGER.info("filter_worker_started", pid=process.pid)

    def _stop_locked(self) -> None:
        if self._conn is not None:
            self._conn.close()
        if self._process is not None:
            self._process.join(_JOIN_TIMEOUT_SECONDS)
            if self._process.is_alive():
                self._process.terminate()
                self._process.join(_JOIN_TIMEOUT_SECONDS)
        self._conn = None
        self._process = None


def _serve_requests(conn: Connection, data_root: str) -> None:
    """Worker process entry point: answer requests until dispose or EOF."""
    core = DatasetFilterCore(LocalRecordStore(LensConfig(data_root=Path(data_root))))
    conn.send({"ok": True, "result": _READY_RESULT})
    while True:
        try:
            request = conn.recv()
        except (EOFError, OSError):
            break
        op = request.get("op")
        if op == "dispose":
            core.reset()
            conn.send({"ok": True, "result": None})
            break
        try:
            result = _dispatch(core, op, request.get("args", []))
        except (LensError, ValueError) as error:
            conn.send({"ok": False, "error": str(error)})
            continue
        conn.send({"ok": True, "result": result})
    conn.close()


def _dispatch(core: DatasetFilterCore, op: str | None, args: list[Any]) -> Any:
    if op == "initialize":
        core.initialize(str(args[0]), int(args[1]))
        return None
    if op == "is_ready":
        return core.ready
    if op == "filter":
        return core.filter_to_indices(str(args[0]), [BadgeKey(value) for value in args[1]])
    if op == "stats":
        return {badge.value: count for badge, count in core.get_stats().items()}
    if op == "reset":
        core.reset()
        return None
    raise LensFilterError(f"Unsupported filter worker operation '{op}'.")
