"""
Restore use case — put a manifest's configuration files in place.

Restore items run one at a time, in manifest order. A failing item
(missing source, I/O error, unknown type) fails only its own action;
the remaining items still run. Overwritten targets are backed up under
the run's backup directory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from converge.adapters.restorers import RestorerRegistry, expand_path
from converge.core.config.loader import resolve_manifest
from converge.core.engine.planner import generate_run_id, plan_from_actions
from converge.core.errors import ConvergeError, RestoreError
from converge.core.models.action import RestoreAction
from converge.core.models.manifest import RestoreItem
from converge.core.models.plan import RunState
from converge.core.use_cases.context import Runtime, machine_identity

logger = logging.getLogger(__name__)


def apply_restore_items(
    items: list[RestoreItem],
    restorers: RestorerRegistry,
    base_dir: Path,
    backup_dir: Path | None,
    dry_run: bool = False,
) -> list[RestoreAction]:
    """Apply restore items in order and return one action per item.

    Args:
        items: Restore items from the resolved manifest.
        restorers: Restorer registry.
        base_dir: Directory relative sources resolve against.
        backup_dir: Where replaced files are copied (None disables backups).
        dry_run: Describe instead of writing.
    """
    actions: list[RestoreAction] = []
    for item in items:
        action = RestoreAction(id=item.key, ref=item.target)
        restorer = restorers.get(item.type)
        if restorer is None:
            actions.append(action.with_status("fail", f"Unknown restore type '{item.type}'"))
            continue

        source = expand_path(item.source, base_dir)
        target = expand_path(item.target)

        if dry_run:
            actions.append(
                action.with_status("pending", f"[dry-run] Would {item.type} {source} → {target}")
            )
            continue

        try:
            message = restorer.apply(item, source, target, backup_dir)
        except (OSError, RestoreError) as e:
            logger.error("✗ restore %s: %s", item.key, e)
            actions.append(action.with_status("fail", str(e)))
            continue

        logger.info("✓ restore %s: %s", item.key, message)
        actions.append(action.with_status("pass", message))
    return actions


@dataclass
class RestoreResult:
    state: RunState | None = None
    state_path: Path | None = None
    actions: list[RestoreAction] = field(default_factory=list)
    error: str | None = None

    @property
    def failed_count(self) -> int:
        return sum(1 for a in self.actions if a.status == "fail")

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        result: dict = {"state": self.state.to_dict() if self.state else None}
        if self.state_path:
            result["state_path"] = str(self.state_path)
        return result


def run_restore(manifest_path: Path, runtime: Runtime, dry_run: bool = False) -> RestoreResult:
    """Apply every restore item of a manifest and record the run."""
    result = RestoreResult()

    try:
        manifest = resolve_manifest(manifest_path)
    except ConvergeError as e:
        result.error = str(e)
        return result

    run_id = generate_run_id()
    backup_dir = runtime.recorder.backup_dir(run_id)
    result.actions = apply_restore_items(
        manifest.restore,
        runtime.restorers,
        base_dir=manifest_path.parent.resolve(),
        backup_dir=backup_dir,
        dry_run=dry_run,
    )

    machine, user = machine_identity()
    plan = plan_from_actions(manifest, result.actions, str(manifest_path), run_id=run_id)
    result.state = RunState.from_plan(
        plan, machine=machine, user=user, command="restore", dry_run=dry_run
    )
    result.state_path = runtime.recorder.save(result.state)
    return result