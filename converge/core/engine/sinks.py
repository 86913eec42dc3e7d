"""
Sinks — the only state workers share.

ResultSink collects InstallResults from every worker: appends are
serialized under a lock, and a second result for the same action is
rejected. EventSinks receive ProgressEvents; each emit is atomic, and
events from one worker arrive in the order that worker sent them.
Ordering across workers is not guaranteed.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

from converge.core.models.action import InstallResult, ProgressEvent

logger = logging.getLogger(__name__)


class DuplicateResultError(RuntimeError):
    """A second result arrived for an action that already has one."""


class ResultSink:
    """Thread-safe, append-only collection of install results."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: list[InstallResult] = []
        self._seen: set[str] = set()

    def append(self, result: InstallResult) -> None:
        with self._lock:
            if result.app_id in self._seen:
                raise DuplicateResultError(f"Duplicate result for '{result.app_id}'")
            self._seen.add(result.app_id)
            self._results.append(result)

    def __contains__(self, app_id: str) -> bool:
        with self._lock:
            return app_id in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def results(self) -> list[InstallResult]:
        """Snapshot of results in arrival order."""
        with self._lock:
            return list(self._results)


class EventSink:
    """Receiver for progress events. Subclasses must be thread-safe."""

    def emit(self, event: ProgressEvent) -> None:
        raise NotImplementedError


class QueueEventSink(EventSink):
    """Buffers events in a queue for a consumer thread to drain."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: queue.Queue[ProgressEvent] = queue.Queue(maxsize=maxsize)

    def emit(self, event: ProgressEvent) -> None:
        self._queue.put(event)

    def get(self, timeout: float | None = None) -> ProgressEvent | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[ProgressEvent]:
        """All events currently buffered, oldest first."""
        events: list[ProgressEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


class CallbackEventSink(EventSink):
    """Calls a function per event, one call at a time.

    A callback that raises is logged and ignored; progress reporting
    must never fail an install.
    """

    def __init__(self, callback: Callable[[ProgressEvent], None]) -> None:
        self._callback = callback
        self._lock = threading.Lock()

    def emit(self, event: ProgressEvent) -> None:
        with self._lock:
            try:
                self._callback(event)
            except Exception as e:
                logger.warning("Progress callback failed for %s: %s", event.app_id, e)
