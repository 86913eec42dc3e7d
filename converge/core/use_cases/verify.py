"""
Verify use case — run a manifest's checks and record the outcome.

No driver is consulted; only verify items run.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from converge.core.config.loader import resolve_manifest
from converge.core.engine.planner import observe_verify, plan_from_actions, plan_verify
from converge.core.errors import ConvergeError
from converge.core.models.plan import RunState
from converge.core.use_cases.context import Runtime, machine_identity


@dataclass
class VerifyResult:
    state: RunState | None = None
    state_path: Path | None = None
    error: str | None = None

    @property
    def failed_count(self) -> int:
        return self.state.failed_count if self.state else 0

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        result: dict = {"state": self.state.to_dict() if self.state else None}
        if self.state_path:
            result["state_path"] = str(self.state_path)
        return result


def run_verify(manifest_path: Path, runtime: Runtime) -> VerifyResult:
    """Run every verify item of a manifest and record the run."""
    result = VerifyResult()

    try:
        manifest = resolve_manifest(manifest_path)
    except ConvergeError as e:
        result.error = str(e)
        return result

    outcomes = observe_verify(manifest, runtime.verifiers)
    actions = [plan_verify(item, outcomes.get(i)) for i, item in enumerate(manifest.verify)]
    plan = plan_from_actions(manifest, actions, str(manifest_path))

    machine, user = machine_identity()
    result.state = RunState.from_plan(plan, machine=machine, user=user, command="verify")
    result.state_path = runtime.recorder.save(result.state)
    return result
