"""
History use cases — drift between recorded runs, and run history.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from converge.core.errors import StateError
from converge.core.models.plan import RunState
from converge.core.services.drift import DriftReport, diff_states, render_report
from converge.core.use_cases.context import Runtime


@dataclass
class DiffResult:
    """Drift from an earlier run to a later one."""

    earlier: RunState | None = None
    later: RunState | None = None
    report: DriftReport | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "from": self.earlier.run_id if self.earlier else None,
            "to": self.later.run_id if self.later else None,
            "drift": self.report.to_dict() if self.report else None,
        }


def run_diff(runtime: Runtime, run_a: str | None = None, run_b: str | None = None) -> DiffResult:
    """Compare two recorded runs.

    With no ids, compares the previous run against the latest. With one
    id, compares that run against the latest.
    """
    result = DiffResult()
    recorder = runtime.recorder

    try:
        if run_a and run_b:
            result.earlier = recorder.load_run(run_a)
            result.later = recorder.load_run(run_b)
        elif run_a:
            result.earlier = recorder.load_run(run_a)
            result.later = recorder.latest()
        else:
            recent = recorder.history(limit=2)
            if len(recent) < 2:
                result.error = (
                    f"Need two recorded runs to diff, found {len(recent)} in {recorder.state_dir}"
                )
                return result
            result.later, result.earlier = recent
    except StateError as e:
        result.error = str(e)
        return result

    if result.later is None:
        result.error = f"No recorded runs in {recorder.state_dir}"
        return result

    result.report = diff_states(result.earlier, result.later)
    return result


@dataclass
class ReportResult:
    """Recent run history, newest first."""

    runs: list[dict[str, Any]] = field(default_factory=list)
    limit: int = 10

    def to_dict(self) -> dict:
        return {"limit": self.limit, "runs": self.runs}


def run_report(runtime: Runtime, limit: int = 10) -> ReportResult:
    states = runtime.recorder.history(limit=limit)
    return ReportResult(runs=render_report(states), limit=limit)
