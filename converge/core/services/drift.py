"""
Drift — structural comparison of two recorded runs.

Given an earlier run A and a later run B, actions are matched by
(type, id) and sorted into:

    missing            pass in B, but absent or not passing in A
    extra              recorded in A, gone from B's manifest scope
    versionMismatches  installed in B, but failing B's version constraint

Serialized key order is fixed, so the same report always renders to
the same bytes.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from converge.core.engine.versions import check_constraint
from converge.core.models.plan import RunState


class DriftItem(BaseModel):
    type: str
    id: str
    ref: str = ""
    detail: str = ""


class DriftReport(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    missing: list[DriftItem] = Field(default_factory=list)
    extra: list[DriftItem] = Field(default_factory=list)
    version_mismatches: list[DriftItem] = Field(default_factory=list)

    @property
    def has_drift(self) -> bool:
        return bool(self.missing or self.extra or self.version_mismatches)

    @property
    def total(self) -> int:
        return len(self.missing) + len(self.extra) + len(self.version_mismatches)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n"


def diff_states(a: RunState, b: RunState) -> DriftReport:
    """Compare run A (earlier) with run B (later)."""
    a_actions = {action.key: action for action in a.actions}
    b_actions = {action.key: action for action in b.actions}
    report = DriftReport()

    for key, action in b_actions.items():
        before = a_actions.get(key)
        if action.status == "pass" and (before is None or before.status != "pass"):
            detail = "absent from earlier run" if before is None else f"was {before.status}"
            report.missing.append(DriftItem(type=action.type, id=action.id, ref=action.ref, detail=detail))

    for key, action in a_actions.items():
        if key not in b_actions:
            report.extra.append(
                DriftItem(type=action.type, id=action.id, ref=action.ref, detail="not in later manifest")
            )

    for action in b.app_actions():
        if not action.constraint or not action.version:
            continue
        satisfied, reason = check_constraint(action.version, action.constraint)
        if not satisfied:
            report.version_mismatches.append(
                DriftItem(type=action.type, id=action.id, ref=action.ref, detail=reason)
            )

    return report


class RunSummary(BaseModel):
    """One line of run history."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    run_id: str
    timestamp: str
    command: str
    dry_run: bool
    manifest_hash: str
    actions: int
    passed: int
    failed: int
    skipped: int
    failed_ids: list[str] = Field(default_factory=list)


def summarize_run(state: RunState) -> RunSummary:
    return RunSummary(
        run_id=state.run_id,
        timestamp=state.timestamp,
        command=state.command,
        dry_run=state.dry_run,
        manifest_hash=state.manifest.hash,
        actions=len(state.actions),
        passed=sum(1 for a in state.actions if a.status == "pass"),
        failed=state.failed_count,
        skipped=sum(1 for a in state.actions if a.status == "skip"),
        failed_ids=[a.id for a in state.failed],
    )


def render_report(states: list[RunState]) -> list[dict[str, Any]]:
    """History rows, newest first, ready for JSON output."""
    return [summarize_run(s).model_dump(mode="json", by_alias=True) for s in states]
