"""
Tests for domain models — validation, serialization, key order.
"""

import json

import pytest
from pydantic import ValidationError

from converge.core.models import (
    App,
    AppAction,
    InstallResult,
    Manifest,
    Plan,
    PlanManifest,
    PlanSummary,
    ProgressEvent,
    RestoreAction,
    RestoreItem,
    RunState,
    VerifyAction,
    VerifyItem,
    parse_action,
)


def _plan(actions=None) -> Plan:
    return Plan(
        run_id="20260101T000000000000Z-abc123",
        timestamp="2026-01-01T00:00:00+00:00",
        manifest=PlanManifest(path="/m.json", name="box", hash="f" * 64),
        actions=actions if actions is not None else [
            AppAction(id="git", ref="Git.Git", driver="winget", status="pass"),
            AppAction(id="code", ref="Microsoft.VisualStudioCode", driver="winget", status="fail"),
            AppAction(id="tool", driver="winget", status="skip"),
            VerifyAction(id="gitconfig", ref="~/.gitconfig", status="pass"),
            RestoreAction(id="gitconfig", ref="~/.gitconfig"),
        ],
    )


class TestManifestModel:
    def test_ref_for_platform(self):
        app = App(id="git", refs={"windows": "Git.Git", "linux": ""})
        assert app.ref_for("windows") == "Git.Git"
        assert app.ref_for("linux") is None
        assert app.ref_for("macos") is None

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            Manifest(version=1, name="  ")

    def test_content_excludes_includes(self):
        manifest = Manifest(version=1, name="box", includes=["other.json"])
        assert "includes" not in manifest.content()

    def test_restore_item_key_and_options(self):
        item = RestoreItem(source="a", target="~/a", mode="0600")
        assert item.key == "~/a"
        assert item.options == {"mode": "0600"}
        assert RestoreItem(id="named", source="a", target="~/a").key == "named"

    def test_verify_item_key(self):
        item = VerifyItem(type="file-exists", path="~/.gitconfig")
        assert item.subject == "~/.gitconfig"
        assert item.key == "file-exists:~/.gitconfig"
        assert VerifyItem(type="custom").key == "custom"


class TestActions:
    def test_app_action_requires_ref(self):
        with pytest.raises(ValidationError):
            AppAction(id="git", driver="winget")

    def test_skipped_app_needs_no_ref(self):
        action = AppAction(id="git", driver="winget", status="skip")
        assert action.ref == ""

    def test_app_action_requires_driver(self):
        with pytest.raises(ValidationError):
            AppAction(id="git", ref="Git.Git")  # type: ignore[call-arg]

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            VerifyAction(id="x", status="maybe")  # type: ignore[arg-type]

    def test_actions_are_immutable(self):
        action = AppAction(id="git", ref="Git.Git", driver="winget")
        with pytest.raises(ValidationError):
            action.status = "pass"  # type: ignore[misc]

    def test_with_status_returns_copy(self):
        action = AppAction(id="git", ref="Git.Git", driver="winget", status="fail", message="Not installed")
        done = action.with_status("pass", "Installed")
        assert done.status == "pass"
        assert done.message == "Installed"
        assert action.status == "fail"

    def test_parse_action_discriminates(self):
        assert isinstance(parse_action({"type": "app", "id": "a", "ref": "r", "driver": "apt"}), AppAction)
        assert isinstance(parse_action({"type": "verify", "id": "v"}), VerifyAction)
        assert isinstance(parse_action({"type": "restore", "id": "r"}), RestoreAction)
        with pytest.raises(ValidationError):
            parse_action({"type": "reboot", "id": "x"})

    def test_key_is_type_and_id(self):
        assert VerifyAction(id="x").key == ("verify", "x")


class TestInstallResult:
    def test_ok_and_failure_name_the_action(self):
        action = AppAction(id="git", ref="Git.Git", driver="winget")
        ok = InstallResult.ok(action, "Installed")
        bad = InstallResult.failure(action, "Package not found")
        assert (ok.success, ok.app_id, ok.package_id) == (True, "git", "Git.Git")
        assert (bad.success, bad.app_id, bad.package_id) == (False, "git", "Git.Git")

    def test_camel_case_keys(self):
        action = AppAction(id="git", ref="Git.Git", driver="winget")
        data = InstallResult.ok(action, "Installed", slot_id=2).to_dict()
        assert list(data) == [
            "success", "packageId", "appId", "slotId", "message", "output", "startTime", "endTime",
        ]
        assert data["slotId"] == 2

    def test_progress_events(self):
        started = ProgressEvent.started("git")
        done = ProgressEvent.completed("git", True)
        assert started.type == "AppStarted" and started.success is None
        assert done.type == "AppCompleted" and done.success is True


class TestPlan:
    def test_summary_counts(self):
        plan = _plan()
        assert plan.summary == PlanSummary(install=2, skip=1, restore=1, verify=1)

    def test_pending_apps_count_as_install(self):
        plan = _plan(actions=[
            AppAction(id="git", ref="Git.Git", driver="winget", status="pending"),
            AppAction(id="tool", driver="winget", status="skip"),
        ])
        assert plan.summary == PlanSummary(install=1, skip=1)

    def test_supplied_summary_is_replaced(self):
        plan = Plan(
            run_id="r",
            timestamp="t",
            manifest=PlanManifest(path="p", name="n", hash="h"),
            summary=PlanSummary(install=99),
            actions=[VerifyAction(id="v")],
        )
        assert plan.summary == PlanSummary(verify=1)

    def test_summary_follows_actions_at_serialization(self):
        plan = _plan(actions=[])
        plan.actions.append(VerifyAction(id="late"))
        assert plan.to_dict()["summary"] == {"install": 0, "skip": 0, "restore": 0, "verify": 1}

    def test_key_order(self):
        data = _plan().to_dict()
        assert list(data) == ["runId", "timestamp", "manifest", "summary", "actions"]
        assert list(data["manifest"]) == ["path", "name", "hash"]
        assert list(data["summary"]) == ["install", "skip", "restore", "verify"]

    def test_serialization_is_byte_identical(self):
        plan = _plan()
        assert plan.to_json() == plan.to_json()
        assert plan.to_json().endswith("}\n")

    def test_failed(self):
        plan = _plan()
        assert [a.id for a in plan.failed] == ["code"]
        assert plan.failed_count == 1
        assert [a.id for a in plan.app_actions()] == ["git", "code", "tool"]


class TestRunState:
    def _state(self) -> RunState:
        return RunState.from_plan(_plan(), machine="host", user="me", command="apply", dry_run=True)

    def test_from_plan(self):
        state = self._state()
        assert state.run_id == "20260101T000000000000Z-abc123"
        assert state.manifest.path == "/m.json"
        assert state.manifest.hash == "f" * 64
        assert state.summary == _plan().summary

    def test_from_plan_with_final_actions(self):
        final = [AppAction(id="git", ref="Git.Git", driver="winget", status="pass")]
        state = RunState.from_plan(_plan(), actions=final, command="apply")
        assert state.actions == final
        assert state.summary == PlanSummary(install=1)

    def test_key_order(self):
        data = self._state().to_dict()
        assert list(data) == [
            "runId", "timestamp", "machine", "user", "command", "dryRun",
            "manifest", "summary", "actions",
        ]
        assert list(data["manifest"]) == ["path", "hash"]

    def test_json_round_trip(self):
        state = self._state()
        loaded = RunState.model_validate(json.loads(state.to_json()))
        assert loaded == state
        assert loaded.to_json() == state.to_json()
