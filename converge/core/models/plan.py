"""
Plan and RunState — the ordered, hashed record of one run.

Key order is part of the on-disk contract:

    Plan:      runId, timestamp, manifest{path,name,hash}, summary, actions
    RunState:  runId, timestamp, machine, user, command, dryRun,
               manifest{path,hash}, summary, actions
    summary:   install, skip, restore, verify

Fields are declared in that order and serialized without key sorting.
``summary`` is recomputed from ``actions`` every time the model is
serialized, so it can never disagree with the actions it describes.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator
from pydantic.alias_generators import to_camel

from converge.core.models.action import Action, AppAction


class PlanSummary(BaseModel):
    """Action counts by type/status."""

    install: int = 0   # app actions not skipped (pass + fail; pending in dry runs)
    skip: int = 0      # app actions with no ref for this platform
    restore: int = 0
    verify: int = 0

    @classmethod
    def from_actions(cls, actions: list) -> PlanSummary:
        summary = cls()
        for action in actions:
            if action.type == "app":
                if action.status == "skip":
                    summary.skip += 1
                else:
                    summary.install += 1
            elif action.type == "restore":
                summary.restore += 1
            elif action.type == "verify":
                summary.verify += 1
        return summary


class PlanManifest(BaseModel):
    path: str
    name: str
    hash: str


class StateManifest(BaseModel):
    path: str
    hash: str


class _Record(BaseModel):
    """Shared serialization for Plan and RunState."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="after")
    def _sync_summary(self) -> _Record:
        self.summary = PlanSummary.from_actions(self.actions)  # type: ignore[attr-defined]
        return self

    @model_serializer(mode="wrap")
    def _serialize(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        # Reassigning keeps the key's position.
        data["summary"] = PlanSummary.from_actions(self.actions).model_dump()  # type: ignore[attr-defined]
        return data

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        """Stable JSON: same record, byte-identical output."""
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n"

    @property
    def failed(self) -> list:
        return [a for a in self.actions if a.status == "fail"]  # type: ignore[attr-defined]

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def app_actions(self) -> list[AppAction]:
        return [a for a in self.actions if a.type == "app"]  # type: ignore[attr-defined]


class Plan(_Record):
    """Desired state diffed against observed state, as ordered actions."""

    run_id: str
    timestamp: str
    manifest: PlanManifest
    summary: PlanSummary = Field(default_factory=PlanSummary)
    actions: list[Action] = Field(default_factory=list)


class RunState(_Record):
    """A plan plus execution metadata, as persisted by the state recorder."""

    run_id: str
    timestamp: str
    machine: str = ""
    user: str = ""
    command: str = ""
    dry_run: bool = False
    manifest: StateManifest
    summary: PlanSummary = Field(default_factory=PlanSummary)
    actions: list[Action] = Field(default_factory=list)

    @classmethod
    def from_plan(
        cls,
        plan: Plan,
        *,
        actions: list | None = None,
        machine: str = "",
        user: str = "",
        command: str = "",
        dry_run: bool = False,
    ) -> RunState:
        final = list(plan.actions if actions is None else actions)
        return cls(
            run_id=plan.run_id,
            timestamp=plan.timestamp,
            machine=machine,
            user=user,
            command=command,
            dry_run=dry_run,
            manifest=StateManifest(path=plan.manifest.path, hash=plan.manifest.hash),
            actions=final,
        )
