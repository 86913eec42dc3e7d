"""
Apply use case — converge the machine toward a manifest.

The vertical slice from manifest to recorded run:

    resolve → observe → plan → partition → execute → restore
            → re-verify → record

Only app actions the plan marked ``fail`` are dispatched; everything
already passing is left alone, so a second apply of the same manifest
installs nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from converge.adapters.base import Driver
from converge.core.engine.executor import ParallelEngine
from converge.core.engine.partition import partition
from converge.core.engine.planner import observe_verify, plan_verify
from converge.core.engine.sinks import EventSink
from converge.core.engine.versions import check_constraint
from converge.core.errors import ConvergeError, DriverError
from converge.core.models.action import AppAction, InstallResult
from converge.core.models.plan import RunState
from converge.core.use_cases.context import Runtime, machine_identity
from converge.core.use_cases.plan import make_plan
from converge.core.use_cases.restore import apply_restore_items

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Result of an apply run."""

    state: RunState | None = None
    state_path: Path | None = None
    results: list[InstallResult] = field(default_factory=list)
    dispatched: int = 0
    sequential: int = 0
    peak_active: int = 0
    observe_error: str | None = None
    error: str | None = None

    @property
    def failed_count(self) -> int:
        return self.state.failed_count if self.state else 0

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        if self.observe_error:
            result["warning"] = self.observe_error
        result["dispatched"] = self.dispatched
        result["sequential"] = self.sequential
        result["results"] = [r.to_dict() for r in self.results]
        if self.state:
            result["state"] = self.state.to_dict()
        if self.state_path:
            result["state_path"] = str(self.state_path)
        return result


def select_install_targets(actions: list) -> list[AppAction]:
    """App actions that need an install, first occurrence of each id."""
    targets: list[AppAction] = []
    seen: set[str] = set()
    for action in actions:
        if action.type != "app" or action.status != "fail":
            continue
        if action.id in seen:
            logger.warning("App '%s' is listed more than once; installing it once", action.id)
            continue
        seen.add(action.id)
        targets.append(action)
    return targets


def merge_results(
    actions: list,
    results: list[InstallResult],
    dry_run: bool,
    versions: dict[str, str] | None = None,
) -> list:
    """Fold install results back into plan actions, matched by app id.

    A successful install of an app with a version constraint passes
    only if the installed version satisfies it. ``versions`` is the
    driver's view after the installs; without it the planned version
    is checked again.
    """
    by_id = {r.app_id: r for r in results}
    merged = []
    for action in actions:
        result = by_id.get(action.id) if action.type == "app" else None
        if result is None:
            merged.append(action)
        elif dry_run:
            merged.append(action.with_status("pending", result.message))
        elif not result.success:
            merged.append(action.with_status("fail", result.message))
        elif action.constraint:
            observed = versions.get(action.ref) if versions is not None else action.version
            satisfied, reason = check_constraint(observed or None, action.constraint)
            merged.append(action.model_copy(update={
                "status": "pass" if satisfied else "fail",
                "message": result.message if satisfied else f"{result.message}; {reason}",
                "version": observed or None,
            }))
        else:
            merged.append(action.with_status("pass", result.message))
    return merged


def _versions_after_install(
    driver: Driver, results: list[InstallResult], actions: list
) -> dict[str, str] | None:
    """Re-read installed versions when a constrained app was installed."""
    installed = {r.app_id for r in results if r.success}
    if not any(a.type == "app" and a.constraint and a.id in installed for a in actions):
        return None
    try:
        return driver.installed_versions()
    except DriverError as e:
        logger.warning("Cannot re-read versions from %s: %s", driver.name, e)
        return None


def run_apply(
    manifest_path: Path,
    runtime: Runtime,
    dry_run: bool = False,
    include_restore: bool = False,
    throttle: int | None = None,
    events: EventSink | None = None,
) -> ApplyResult:
    """Plan, install what is missing, restore, re-verify, and record.

    Args:
        manifest_path: Root manifest document.
        runtime: Runtime context.
        dry_run: Report what would happen without installing or writing.
        include_restore: Also apply the manifest's restore items.
        throttle: Worker count override (default: settings throttle).
        events: Optional progress sink for install start/complete events.

    Returns:
        ApplyResult. Manifest and driver errors are reported in ``error``
        before anything is executed.
    """
    result = ApplyResult()

    # ── Plan ─────────────────────────────────────────────────────
    planned = make_plan(manifest_path, runtime)
    if planned.error:
        result.error = planned.error
        return result
    plan = planned.plan
    manifest = planned.manifest
    assert plan is not None and manifest is not None
    result.observe_error = planned.observe_error

    try:
        driver = runtime.driver()
    except ConvergeError as e:
        result.error = str(e)
        return result

    # ── Execute ──────────────────────────────────────────────────
    if not driver.parallel_safe:
        logger.info("%s installs one package at a time; running installs sequentially", driver.name)
    groups = partition(
        select_install_targets(plan.actions), runtime.denylist, serial=not driver.parallel_safe
    )
    result.dispatched = groups.total
    result.sequential = len(groups.sequential)

    engine = ParallelEngine()
    result.results = engine.execute(
        groups.parallel,
        groups.sequential,
        throttle if throttle is not None else runtime.settings.throttle,
        dry_run,
        driver,
        events,
    )
    result.peak_active = engine.peak_active
    versions = None if dry_run else _versions_after_install(driver, result.results, plan.actions)
    actions = merge_results(plan.actions, result.results, dry_run, versions)

    # ── Restore ──────────────────────────────────────────────────
    if include_restore and manifest.restore:
        actions += apply_restore_items(
            manifest.restore,
            runtime.restorers,
            base_dir=manifest_path.parent.resolve(),
            backup_dir=runtime.recorder.backup_dir(plan.run_id),
            dry_run=dry_run,
        )

    # ── Re-verify ────────────────────────────────────────────────
    if not dry_run and manifest.verify and (result.results or include_restore):
        outcomes = observe_verify(manifest, runtime.verifiers)
        fresh = iter(plan_verify(item, outcomes.get(i)) for i, item in enumerate(manifest.verify))
        actions = [next(fresh) if a.type == "verify" else a for a in actions]

    # ── Record ───────────────────────────────────────────────────
    machine, user = machine_identity()
    result.state = RunState.from_plan(
        plan, actions=actions, machine=machine, user=user, command="apply", dry_run=dry_run
    )
    result.state_path = runtime.recorder.save(result.state)

    logger.info(
        "Apply %s: %d dispatched, %d failed", plan.run_id, result.dispatched, result.failed_count
    )
    return result
