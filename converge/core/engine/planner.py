"""
Planner — diff desired state against observed state.

Turns a resolved manifest plus what the machine reports (installed
refs, installed versions, verify outcomes) into an ordered Plan:

    app actions      manifest app order      pass | fail | skip
    verify actions   manifest verify order   pass | fail
    restore actions  manifest restore order  pending  (when enabled)

The planner is pure: the same inputs always give the same actions
in the same order. Gathering observations is done by the helpers at
the bottom of this module.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from converge.adapters.base import Driver
from converge.adapters.verifiers import VerifierRegistry, VerifyOutcome, run_verifiers
from converge.core.config.hashing import manifest_hash
from converge.core.engine.versions import check_constraint
from converge.core.errors import DriverError
from converge.core.models.action import AppAction, RestoreAction, VerifyAction
from converge.core.models.manifest import App, Manifest, VerifyItem
from converge.core.models.plan import Plan, PlanManifest

logger = logging.getLogger(__name__)


def generate_run_id(now: datetime | None = None) -> str:
    """Sortable run identifier: UTC timestamp plus a short random suffix.

    Lexicographic order of run ids is chronological order.
    """
    now = now or datetime.now(UTC)
    stamp = now.astimezone(UTC).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{stamp}-{uuid.uuid4().hex[:6]}"


def plan_app(
    app: App,
    installed: set[str],
    versions: dict[str, str],
    platform: str,
    driver_name: str,
) -> AppAction:
    """Evaluate one app against the observed machine."""
    ref = app.ref_for(platform)
    if ref is None:
        return AppAction(
            id=app.id,
            driver=driver_name,
            constraint=app.version,
            status="skip",
            message=f"No ref for platform '{platform}'",
        )

    if ref not in installed:
        return AppAction(
            id=app.id,
            ref=ref,
            driver=driver_name,
            constraint=app.version,
            status="fail",
            message="Not installed",
        )

    observed = versions.get(ref) or None
    satisfied, reason = check_constraint(observed, app.version)
    if not satisfied:
        message = reason
    else:
        message = f"Installed {observed}" if observed else "Installed"
    return AppAction(
        id=app.id,
        ref=ref,
        driver=driver_name,
        version=observed,
        constraint=app.version,
        status="pass" if satisfied else "fail",
        message=message,
    )


def plan_verify(item: VerifyItem, outcome: VerifyOutcome | None) -> VerifyAction:
    if outcome is None:
        return VerifyAction(
            id=item.key,
            ref=item.subject,
            status="fail",
            message=f"Unknown verify type '{item.type}'",
        )
    return VerifyAction(
        id=item.key,
        ref=item.subject,
        status="pass" if outcome.passed else "fail",
        message=outcome.message,
    )


def plan_from_actions(
    manifest: Manifest,
    actions: list,
    manifest_path: str = "",
    run_id: str | None = None,
    timestamp: str | None = None,
) -> Plan:
    """Wrap already-built actions in a Plan for a manifest."""
    return Plan(
        run_id=run_id or generate_run_id(),
        timestamp=timestamp or datetime.now(UTC).isoformat(),
        manifest=PlanManifest(path=manifest_path, name=manifest.name, hash=manifest_hash(manifest)),
        actions=actions,
    )


def build_plan(
    manifest: Manifest,
    installed: set[str],
    verify_results: dict[int, VerifyOutcome] | None = None,
    *,
    versions: dict[str, str] | None = None,
    platform: str,
    driver_name: str,
    include_restore: bool = False,
    manifest_path: str = "",
    run_id: str | None = None,
    timestamp: str | None = None,
) -> Plan:
    """Build the ordered plan for a resolved manifest.

    Args:
        manifest: Resolved manifest.
        installed: Package refs the driver reports as installed.
        verify_results: Verify outcomes by index into ``manifest.verify``.
            Items with no outcome fail as unknown types.
        versions: Installed version per ref, where known.
        platform: Platform key used to pick each app's ref.
        driver_name: Driver the app actions will run through.
        include_restore: Append pending restore actions.
        manifest_path: Recorded in the plan for reference only.
        run_id: Run identifier (generated if not given).
        timestamp: ISO timestamp (now if not given).

    Returns:
        Plan with actions in manifest order.
    """
    versions = versions or {}
    verify_results = verify_results or {}

    actions: list = [
        plan_app(app, installed, versions, platform, driver_name) for app in manifest.apps
    ]
    actions += [
        plan_verify(item, verify_results.get(index)) for index, item in enumerate(manifest.verify)
    ]
    if include_restore:
        actions += [RestoreAction(id=item.key, ref=item.target) for item in manifest.restore]

    plan = plan_from_actions(manifest, actions, manifest_path, run_id=run_id, timestamp=timestamp)
    logger.debug(
        "Planned %d actions (install=%d skip=%d verify=%d restore=%d)",
        len(actions),
        plan.summary.install,
        plan.summary.skip,
        plan.summary.verify,
        plan.summary.restore,
    )
    return plan


@dataclass
class Observed:
    """What a driver reported about the machine."""

    installed: set[str] = field(default_factory=set)
    versions: dict[str, str] = field(default_factory=dict)
    error: str | None = None


def collect_observed(driver: Driver) -> Observed:
    """Ask the driver for installed refs and versions.

    A DriverError yields an empty observation carrying the error, so
    planning can proceed with every app treated as missing.
    """
    try:
        installed = driver.list_installed()
        versions = driver.installed_versions()
    except DriverError as e:
        logger.error("Cannot query %s: %s", driver.name, e)
        return Observed(error=str(e))
    return Observed(installed=installed, versions=versions)


def observe_verify(
    manifest: Manifest,
    registry: VerifierRegistry | None = None,
) -> dict[int, VerifyOutcome]:
    """Run the manifest's verify items."""
    return run_verifiers(manifest.verify, registry)
