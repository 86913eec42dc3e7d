"""
Plan use case — resolve a manifest, observe the machine, build a plan.

Nothing is installed or persisted. The apply, verify and restore use
cases start from the same planning step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from converge.core.config.loader import resolve_manifest
from converge.core.engine.planner import build_plan, collect_observed, observe_verify
from converge.core.errors import ConvergeError
from converge.core.models.manifest import Manifest
from converge.core.models.plan import Plan
from converge.core.use_cases.context import Runtime

logger = logging.getLogger(__name__)


@dataclass
class PlanResult:
    """A computed plan, or the error that prevented it."""

    plan: Plan | None = None
    manifest: Manifest | None = None
    manifest_path: Path | None = None
    driver_name: str = ""
    observe_error: str | None = None
    error: str | None = None

    @property
    def failed_count(self) -> int:
        return self.plan.failed_count if self.plan else 0

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        result: dict = {}
        if self.observe_error:
            result["warning"] = self.observe_error
        if self.plan:
            result["plan"] = self.plan.to_dict()
        return result


def make_plan(
    manifest_path: Path,
    runtime: Runtime,
    include_restore: bool = False,
) -> PlanResult:
    """Resolve, observe and plan.

    Args:
        manifest_path: Root manifest document.
        runtime: Runtime context.
        include_restore: Add pending restore actions.

    Returns:
        PlanResult. Manifest and driver errors are reported in ``error``.
    """
    result = PlanResult(manifest_path=manifest_path)

    try:
        manifest = resolve_manifest(manifest_path)
        driver = runtime.driver()
    except ConvergeError as e:
        result.error = str(e)
        return result

    result.manifest = manifest
    result.driver_name = driver.name

    observed = collect_observed(driver)
    result.observe_error = observed.error
    verify_results = observe_verify(manifest, runtime.verifiers)

    result.plan = build_plan(
        manifest,
        observed.installed,
        verify_results,
        versions=observed.versions,
        platform=runtime.platform,
        driver_name=driver.name,
        include_restore=include_restore,
        manifest_path=str(manifest_path),
    )
    return result
