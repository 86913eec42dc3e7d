"""
Engine executor — dispatches install actions to a bounded worker pool.

The engine takes the two groups produced by the partitioner:

    parallel     submitted to a ThreadPoolExecutor sized by the
                 effective throttle, clamp(throttle, 1, len(parallel))
    sequential   run one at a time once the parallel group is done

Each action becomes an InstallTask run by an InstallWorker. A worker
reaches the outside world only through the driver, the ResultSink and
the EventSink; it never touches the orchestrator. Whatever happens
inside a worker, exactly one InstallResult comes out of it.

Flow:
    actions → tasks → workers → ResultSink → results
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import UTC, datetime

from converge.adapters.base import Driver, InstallResponse
from converge.core.engine.sinks import EventSink, ResultSink
from converge.core.models.action import AppAction, InstallResult, ProgressEvent

logger = logging.getLogger(__name__)

_WORKER_PREFIX = "converge-slot"

# Output that means the package is already there.
ALREADY_INSTALLED_SIGNALS: tuple[re.Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"already installed",
        r"is already the newest version",
        r"no (newer|applicable) (package versions|upgrade) (are )?(available|found)",
        r"no available upgrade found",
        r"already up[- ]to[- ]date",
    )
)

# Output that means the package manager does not know the ref.
NOT_FOUND_SIGNALS: tuple[re.Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"no package found matching",
        r"unable to locate package",
        r"no available formula",
        r"no formulae or casks found",
        r"package .* not found",
    )
)

# winget reports these as non-zero exits.
ALREADY_INSTALLED_EXIT_CODES = frozenset({-1978335189, -1978335135})
NOT_FOUND_EXIT_CODES = frozenset({-1978335212})


def effective_throttle(throttle: int, count: int) -> int:
    """Clamp a requested throttle to ``[1, count]``."""
    return max(1, min(throttle, count))


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _matches(signals: tuple[re.Pattern, ...], text: str) -> bool:
    return any(s.search(text) for s in signals)


def classify_response(response: InstallResponse) -> tuple[bool, str]:
    """Decide success and a short message from a raw installer outcome."""
    if response.exit_code == 0:
        return True, "Installed"
    if response.exit_code in ALREADY_INSTALLED_EXIT_CODES or _matches(
        ALREADY_INSTALLED_SIGNALS, response.output
    ):
        return True, "Already installed"
    if response.exit_code in NOT_FOUND_EXIT_CODES or _matches(NOT_FOUND_SIGNALS, response.output):
        return False, "Package not found"
    return False, f"Install failed (exit {response.exit_code})"


@dataclass(frozen=True)
class InstallTask:
    """One unit of work handed to a worker."""

    action: AppAction
    dry_run: bool = False
    sequential: bool = False


class InstallWorker:
    """Runs InstallTasks. Holds the driver and the two sinks, nothing else."""

    def __init__(self, driver: Driver | None, results: ResultSink, events: EventSink | None = None):
        self._driver = driver
        self._results = results
        self._events = events

    def _emit(self, event: ProgressEvent) -> None:
        if self._events is None:
            return
        try:
            self._events.emit(event)
        except Exception as e:
            logger.warning("Event sink failed on %s for %s: %s", event.type, event.app_id, e)

    @staticmethod
    def _slot() -> int:
        name = threading.current_thread().name
        if name.startswith(_WORKER_PREFIX):
            try:
                return int(name.rsplit("_", 1)[1]) + 1
            except (IndexError, ValueError):
                return 0
        return 0

    def _attempt(self, task: InstallTask, slot: int, started: str) -> InstallResult:
        action = task.action
        if task.dry_run:
            return InstallResult.ok(
                action,
                f"[dry-run] Would install {action.ref} via {action.driver}",
                slot_id=slot,
                start_time=started,
                end_time=_now_iso(),
            )

        if self._driver is None:
            raise RuntimeError("No driver configured")

        response = self._driver.install(action.ref)
        success, message = classify_response(response)
        output = response.output.splitlines()
        if not success and message.startswith("Install failed"):
            tail = output[-1] if output else ""
            if tail:
                message = f"{message}: {tail}"
        return InstallResult(
            success=success,
            package_id=action.ref,
            app_id=action.id,
            slot_id=slot,
            message=message,
            output=output,
            start_time=started,
            end_time=_now_iso(),
        )

    def run(self, task: InstallTask) -> InstallResult:
        """Execute one task. Never raises for install problems."""
        action = task.action
        slot = self._slot()
        started = _now_iso()
        self._emit(ProgressEvent.started(action.id))
        logger.debug("Dispatching %s (%s) on slot %d", action.id, action.ref, slot)

        try:
            result = self._attempt(task, slot, started)
        except Exception as e:
            logger.error("Worker fault while installing %s: %s", action.id, e)
            result = InstallResult.failure(
                action,
                f"{type(e).__name__}: {e}",
                slot_id=slot,
                start_time=started,
                end_time=_now_iso(),
            )

        self._results.append(result)
        self._emit(ProgressEvent.completed(action.id, result.success))

        marker = "✓" if result.success else "✗"
        logger.info("%s %s (%s) → %s", marker, action.id, action.ref, result.message)
        return result


class _ActivityTracker(EventSink):
    """Forwards events and counts workers between start and completion."""

    def __init__(self, downstream: EventSink | None):
        self._downstream = downstream
        self._lock = threading.Lock()
        self._active = 0
        self.peak = 0

    def emit(self, event: ProgressEvent) -> None:
        with self._lock:
            if event.type == "AppStarted":
                self._active += 1
                self.peak = max(self.peak, self._active)
            else:
                self._active -= 1
        if self._downstream is not None:
            self._downstream.emit(event)


class ParallelEngine:
    """Bounded-pool install engine.

    ``peak_active`` holds the most workers seen running at once during
    the last ``execute`` call.
    """

    def __init__(self) -> None:
        self.peak_active = 0

    def execute(
        self,
        parallel_actions: list[AppAction],
        sequential_actions: list[AppAction],
        throttle: int,
        dry_run: bool,
        driver: Driver | None,
        events: EventSink | None = None,
    ) -> list[InstallResult]:
        """Run every action once and return one result per action.

        Args:
            parallel_actions: Actions safe to run concurrently.
            sequential_actions: Actions that must run one at a time.
            throttle: Requested worker count (clamped).
            dry_run: Synthesize results without calling the driver.
            driver: Driver performing installs.
            events: Optional progress event sink.

        Returns:
            InstallResults in completion order. Correlate by ``app_id``.

        Raises:
            ValueError: If two submitted actions share an id.
        """
        parallel = list(parallel_actions)
        sequential = list(sequential_actions)
        self.peak_active = 0

        if not parallel and not sequential:
            return []

        ids = [a.id for a in parallel + sequential]
        if len(ids) != len(set(ids)):
            dupes = sorted({i for i in ids if ids.count(i) > 1})
            raise ValueError(f"Duplicate action ids submitted: {dupes}")

        sink = ResultSink()
        tracker = _ActivityTracker(events)
        worker = InstallWorker(driver, sink, tracker)

        if parallel:
            workers = effective_throttle(throttle, len(parallel))
            logger.info(
                "Dispatching %d parallel action(s) on %d worker(s)", len(parallel), workers
            )
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=_WORKER_PREFIX) as pool:
                futures = {
                    pool.submit(worker.run, InstallTask(action, dry_run=dry_run)): action
                    for action in parallel
                }
                wait(futures)

            for future, action in futures.items():
                exc = future.exception()
                if exc is not None and action.id not in sink:
                    logger.error("Worker for %s died: %s", action.id, exc)
                    sink.append(InstallResult.failure(action, f"{type(exc).__name__}: {exc}"))

        for action in sequential:
            logger.info("Running %s sequentially", action.id)
            try:
                worker.run(InstallTask(action, dry_run=dry_run, sequential=True))
            except Exception as e:
                logger.error("Worker for %s died: %s", action.id, e)
                if action.id not in sink:
                    sink.append(InstallResult.failure(action, f"{type(e).__name__}: {e}"))

        self.peak_active = tracker.peak
        results = sink.results()
        logger.info(
            "Executed %d action(s): %d succeeded, %d failed",
            len(results),
            sum(1 for r in results if r.success),
            sum(1 for r in results if not r.success),
        )
        return results


def execute(
    parallel_actions: list[AppAction],
    sequential_actions: list[AppAction],
    throttle: int,
    dry_run: bool,
    driver: Driver | None,
    events: EventSink | None = None,
) -> list[InstallResult]:
    """Module-level shortcut for ``ParallelEngine().execute(...)``."""
    return ParallelEngine().execute(
        parallel_actions, sequential_actions, throttle, dry_run, driver, events
    )
