"""
Tests for the engine — planner, version constraints, safety
partitioning, result/event sinks and the parallel executor.
"""

import re
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from converge.adapters.base import InstallResponse
from converge.adapters.mock import MockDriver
from converge.adapters.verifiers import VerifyOutcome
from converge.core.engine.executor import (
    ParallelEngine,
    classify_response,
    effective_throttle,
    execute,
)
from converge.core.engine.partition import DEFAULT_DENYLIST, Denylist, partition
from converge.core.engine.planner import (
    build_plan,
    collect_observed,
    generate_run_id,
    observe_verify,
)
from converge.core.engine.sinks import (
    CallbackEventSink,
    DuplicateResultError,
    EventSink,
    QueueEventSink,
    ResultSink,
)
from converge.core.engine.versions import check_constraint, compare_versions, parse_version
from converge.core.models import App, AppAction, InstallResult, Manifest, RestoreAction, RestoreItem, VerifyItem


def _actions(*refs: str) -> list[AppAction]:
    return [AppAction(id=f"app{i}", ref=ref, driver="mock", status="fail") for i, ref in enumerate(refs)]


def _safe(n: int) -> list[AppAction]:
    return _actions(*[f"Vendor.Tool{i}" for i in range(n)])


# ── Versions ────────────────────────────────────────────────────────


class TestVersions:
    def test_parse(self):
        assert parse_version("v1.2.3") == (1, 2, 3)
        assert parse_version("2.44.0.windows.1") == (2, 44, 0)
        assert parse_version("3-beta") == (3,)

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_version("latest")

    @pytest.mark.parametrize(
        "a, b, expected",
        [("1.2", "1.2.0", 0), ("1.10", "1.9", 1), ("1.2.3", "1.3", -1), ("2", "10", -1)],
    )
    def test_compare(self, a, b, expected):
        assert compare_versions(a, b) == expected

    def test_no_constraint(self):
        assert check_constraint(None, None) == (True, "")
        assert check_constraint("1.0", "") == (True, "")

    def test_exact(self):
        assert check_constraint("1.2.3", "1.2.3")[0] is True
        ok, message = check_constraint("1.2.4", "1.2.3")
        assert ok is False
        assert "Exact match required" in message

    def test_minimum(self):
        assert check_constraint("2.0.0", ">=1.9.9")[0] is True
        assert check_constraint("1.9.9", ">=1.9.9")[0] is True
        ok, message = check_constraint("1.9.8", ">=1.9.9")
        assert ok is False
        assert "Minimum required: 1.9.9" in message

    def test_unknown_installed_version_fails(self):
        ok, message = check_constraint(None, ">=1.0")
        assert ok is False
        assert "unknown" in message


# ── Planner ─────────────────────────────────────────────────────────


def _manifest(**kwargs) -> Manifest:
    return Manifest(version=1, name="box", **kwargs)


class TestPlanner:
    def test_pass_fail_split(self):
        manifest = _manifest(apps=[
            App(id="git", refs={"windows": "Git.Git"}),
            App(id="code", refs={"windows": "Microsoft.VisualStudioCode"}),
        ])
        plan = build_plan(manifest, {"Git.Git"}, platform="windows", driver_name="winget")

        assert [(a.id, a.status) for a in plan.actions] == [("git", "pass"), ("code", "fail")]
        assert plan.summary.install == 2
        assert plan.summary.skip == 0
        assert plan.actions[1].message == "Not installed"
        assert all(a.driver == "winget" for a in plan.actions)

    def test_missing_platform_ref_is_skipped(self):
        manifest = _manifest(apps=[App(id="mac-only", refs={"macos": "iterm2"})])
        plan = build_plan(manifest, set(), platform="windows", driver_name="winget")

        action = plan.actions[0]
        assert action.status == "skip"
        assert action.ref == ""
        assert plan.summary.skip == 1
        assert plan.summary.install == 0
        assert plan.failed_count == 0

    def test_presence_is_exact_match(self):
        manifest = _manifest(apps=[App(id="git", refs={"windows": "Git.Git"})])
        plan = build_plan(manifest, {"git.git"}, platform="windows", driver_name="winget")
        assert plan.actions[0].status == "fail"

    @pytest.mark.parametrize(
        "constraint, installed, status",
        [
            ("2.44.0", "2.44.0", "pass"),
            ("2.45.0", "2.44.0", "fail"),
            (">=2.40", "2.44.0", "pass"),
            (">=3.0", "2.44.0", "fail"),
            (">=1.0", None, "fail"),
        ],
    )
    def test_version_constraints(self, constraint, installed, status):
        manifest = _manifest(apps=[App(id="git", refs={"windows": "Git.Git"}, version=constraint)])
        versions = {"Git.Git": installed} if installed else {}
        plan = build_plan(manifest, {"Git.Git"}, versions=versions, platform="windows", driver_name="winget")

        action = plan.actions[0]
        assert action.status == status
        assert action.constraint == constraint
        assert action.version == installed

    def test_verify_actions(self):
        manifest = _manifest(verify=[
            VerifyItem(type="file-exists", path="/etc/hosts"),
            VerifyItem(type="registry-key", key="HKCU\\Software\\X"),
        ])
        outcomes = {0: VerifyOutcome(passed=True, message="Exists")}
        plan = build_plan(manifest, set(), outcomes, platform="linux", driver_name="apt")

        ok, unknown = plan.actions
        assert (ok.type, ok.status, ok.ref) == ("verify", "pass", "/etc/hosts")
        assert unknown.status == "fail"
        assert "Unknown verify type 'registry-key'" in unknown.message
        assert plan.summary.verify == 2

    def test_ordering_apps_verify_restore(self):
        manifest = _manifest(
            apps=[App(id="b", refs={"linux": "b"}), App(id="a", refs={"linux": "a"})],
            verify=[VerifyItem(type="file-exists", id="v1", path="/x")],
            restore=[RestoreItem(source="s", target="/t", id="r1")],
        )
        plan = build_plan(
            manifest, {"a"}, {0: VerifyOutcome(passed=False)},
            platform="linux", driver_name="apt", include_restore=True,
        )

        assert [(a.type, a.id) for a in plan.actions] == [
            ("app", "b"), ("app", "a"), ("verify", "v1"), ("restore", "r1"),
        ]
        assert plan.actions[-1].status == "pending"
        assert plan.summary.restore == 1

    def test_restore_excluded_by_default(self):
        manifest = _manifest(restore=[RestoreItem(source="s", target="/t")])
        plan = build_plan(manifest, set(), platform="linux", driver_name="apt")
        assert plan.actions == []

    def test_deterministic(self):
        manifest = _manifest(apps=[App(id=f"a{i}", refs={"linux": f"p{i}"}) for i in range(5)])
        args = dict(platform="linux", driver_name="apt", run_id="run", timestamp="ts")
        one = build_plan(manifest, {"p1", "p3"}, **args)
        two = build_plan(manifest, {"p3", "p1"}, **args)
        assert one.to_json() == two.to_json()

    def test_plan_records_manifest_identity(self):
        manifest = _manifest()
        plan = build_plan(manifest, set(), platform="linux", driver_name="apt", manifest_path="/m.json")
        assert plan.manifest.path == "/m.json"
        assert plan.manifest.name == "box"
        assert len(plan.manifest.hash) == 64


class TestRunId:
    def test_format(self):
        assert re.fullmatch(r"\d{8}T\d{12}Z-[0-9a-f]{6}", generate_run_id())

    def test_sorts_chronologically(self):
        base = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
        moments = [base + timedelta(milliseconds=n) for n in (1, 5, 30, 900, 60_000, 86_400_000)]
        ids = [generate_run_id(m) for m in moments]
        assert sorted(ids) == ids


class TestObservation:
    def test_collect_observed(self):
        driver = MockDriver(installed={"a": "1.0", "b": ""})
        observed = collect_observed(driver)
        assert observed.installed == {"a", "b"}
        assert observed.versions == {"a": "1.0"}
        assert observed.error is None

    def test_listing_failure_is_reported_not_raised(self):
        driver = MockDriver()
        driver.fail_listing("winget not responding")
        observed = collect_observed(driver)
        assert observed.installed == set()
        assert observed.error == "winget not responding"

    def test_observe_verify(self, tmp_path: Path):
        present = tmp_path / "present"
        present.write_text("x")
        manifest = _manifest(verify=[
            VerifyItem(type="file-exists", path=str(present)),
            VerifyItem(type="file-exists", path=str(tmp_path / "absent")),
            VerifyItem(type="nope"),
        ])
        outcomes = observe_verify(manifest)
        assert outcomes[0].passed is True
        assert outcomes[1].passed is False
        assert 2 not in outcomes


# ── Partition ───────────────────────────────────────────────────────


class TestPartition:
    def test_denylisted_ref_is_sequential(self):
        actions = _safe(10) + _actions("Oracle.VirtualBox")
        groups = partition(actions)

        assert [a.ref for a in groups.sequential] == ["Oracle.VirtualBox"]
        assert len(groups.parallel) == 10
        assert groups.total == 11

    def test_serial_sends_everything_sequential(self):
        actions = _safe(3) + _actions("Oracle.VirtualBox")
        groups = partition(actions, serial=True)

        assert groups.parallel == []
        assert groups.sequential == actions

    @pytest.mark.parametrize(
        "ref",
        ["Nvidia.GeForceExperience", "VMware.WorkstationPro", "Valve.Steam",
         "PostgreSQL.PostgreSQL.16", "WireGuard.WireGuard", "oracle.virtualbox"],
    )
    def test_default_categories(self, ref):
        assert DEFAULT_DENYLIST.is_unsafe(ref)

    def test_every_action_lands_once(self):
        actions = _safe(7) + _actions("Valve.Steam", "Docker.DockerDesktop") + _safe(3)
        groups = partition(actions)
        ids = [a.id for a in groups.parallel + groups.sequential]
        assert sorted(ids) == sorted(a.id for a in actions)
        assert len(ids) == len(set(ids))

    def test_order_preserved_within_groups(self):
        actions = _actions("a", "Valve.Steam", "b", "Nvidia.PhysX", "c")
        groups = partition(actions)
        assert [a.ref for a in groups.parallel] == ["a", "b", "c"]
        assert [a.ref for a in groups.sequential] == ["Valve.Steam", "Nvidia.PhysX"]

    def test_actions_without_ref_are_dropped(self):
        actions = [
            AppAction(id="skipped", driver="mock", status="skip"),
            RestoreAction(id="r"),
            *_actions("x"),
        ]
        groups = partition(actions)
        assert groups.total == 1

    def test_denylist_is_enumerable_and_immutable(self):
        patterns = list(DEFAULT_DENYLIST)
        assert len(patterns) == len(DEFAULT_DENYLIST) > 0

        extended = DEFAULT_DENYLIST.extend(["Corp.*"])
        assert extended.is_unsafe("Corp.Agent")
        assert not DEFAULT_DENYLIST.is_unsafe("Corp.Agent")
        assert list(DEFAULT_DENYLIST) == patterns

    def test_custom_denylist(self):
        groups = partition(_actions("a", "b"), Denylist(patterns=("b",)))
        assert [a.ref for a in groups.sequential] == ["b"]

    def test_match_names_pattern(self):
        assert Denylist(patterns=("x*", "*y")).match("xy") == "x*"
        assert Denylist(patterns=("x*",)).match("zz") is None


# ── Sinks ───────────────────────────────────────────────────────────


class TestSinks:
    def _result(self, app_id: str) -> InstallResult:
        return InstallResult(success=True, package_id=app_id, app_id=app_id)

    def test_duplicate_rejected(self):
        sink = ResultSink()
        sink.append(self._result("a"))
        with pytest.raises(DuplicateResultError):
            sink.append(self._result("a"))
        assert len(sink) == 1
        assert "a" in sink

    def test_concurrent_appends_lose_nothing(self):
        sink = ResultSink()

        def worker(prefix: int) -> None:
            for n in range(100):
                sink.append(self._result(f"{prefix}-{n}"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(sink.results()) == 800

    def test_queue_sink_drain(self):
        from converge.core.models import ProgressEvent

        sink = QueueEventSink()
        sink.emit(ProgressEvent.started("a"))
        sink.emit(ProgressEvent.completed("a", True))
        assert [e.type for e in sink.drain()] == ["AppStarted", "AppCompleted"]
        assert sink.get(timeout=0.01) is None

    def test_callback_errors_are_contained(self):
        from converge.core.models import ProgressEvent

        def explode(event):
            raise RuntimeError("display broke")

        CallbackEventSink(explode).emit(ProgressEvent.started("a"))


# ── Executor ────────────────────────────────────────────────────────


class TestClassifyResponse:
    def test_exit_zero(self):
        assert classify_response(InstallResponse(output="", exit_code=0)) == (True, "Installed")

    def test_already_installed_text(self):
        response = InstallResponse(output="Found an existing package already installed.", exit_code=1)
        assert classify_response(response) == (True, "Already installed")

    def test_apt_newest_version(self):
        response = InstallResponse(output="git is already the newest version (1:2.43.0-1).", exit_code=100)
        assert classify_response(response)[0] is True

    def test_winget_exit_code(self):
        assert classify_response(InstallResponse(exit_code=-1978335189))[0] is True

    def test_not_found(self):
        response = InstallResponse(output="No package found matching input criteria.", exit_code=1)
        assert classify_response(response) == (False, "Package not found")

    def test_generic_failure(self):
        success, message = classify_response(InstallResponse(output="boom", exit_code=2))
        assert success is False
        assert "exit 2" in message


class TestEffectiveThrottle:
    @pytest.mark.parametrize("throttle", [-5, 0, 1, 3, 8, 1000])
    @pytest.mark.parametrize("count", [1, 2, 5, 40])
    def test_bounds(self, throttle, count):
        assert 1 <= effective_throttle(throttle, count) <= count

    def test_values(self):
        assert effective_throttle(3, 5) == 3
        assert effective_throttle(10, 4) == 4
        assert effective_throttle(0, 4) == 1


class TestParallelEngine:
    def test_empty_input(self):
        engine = ParallelEngine()
        assert engine.execute([], [], 4, False, MockDriver()) == []
        assert engine.peak_active == 0

    def test_dry_run_throttle_three_five_actions(self):
        driver = MockDriver()
        engine = ParallelEngine()
        results = engine.execute(_safe(5), [], throttle=3, dry_run=True, driver=driver)

        assert len(results) == 5
        assert all(r.success for r in results)
        assert all("dry-run" in r.message for r in results)
        assert sorted(r.app_id for r in results) == [f"app{i}" for i in range(5)]
        assert 1 <= engine.peak_active <= 3
        assert driver.call_count == 0

    def test_throttle_bounds_real_concurrency(self):
        driver = MockDriver(delay=0.05)
        engine = ParallelEngine()
        results = engine.execute(_safe(8), [], throttle=2, dry_run=False, driver=driver)

        assert len(results) == 8
        assert all(r.success for r in results)
        assert driver.peak_concurrency <= 2
        assert engine.peak_active <= 2
        assert sorted(driver.calls) == sorted(f"Vendor.Tool{i}" for i in range(8))

    def test_every_action_runs_once(self):
        driver = MockDriver(delay=0.01)
        parallel = _safe(6)
        sequential = _actions("Valve.Steam", "Nvidia.PhysX")
        sequential = [a.model_copy(update={"id": f"seq{i}"}) for i, a in enumerate(sequential)]

        results = execute(parallel, sequential, 4, False, driver)

        assert len(results) == 8
        assert sorted(r.app_id for r in results) == sorted(a.id for a in parallel + sequential)
        assert driver.call_count == 8

    def test_sequential_actions_never_overlap(self):
        driver = MockDriver(delay=0.02)
        results = execute([], _safe(4), 4, False, driver)
        assert len(results) == 4
        assert driver.peak_concurrency == 1
        assert all(r.slot_id == 0 for r in results)

    def test_parallel_slots(self):
        results = execute(_safe(4), [], 2, True, MockDriver())
        assert {r.slot_id for r in results} <= {1, 2}

    def test_fault_becomes_failed_result(self):
        driver = MockDriver()
        driver.set_fault("Vendor.Tool1", RuntimeError("installer crashed"))
        results = execute(_safe(3), [], 3, False, driver)

        by_id = {r.app_id: r for r in results}
        assert len(results) == 3
        assert by_id["app1"].success is False
        assert "installer crashed" in by_id["app1"].message
        assert by_id["app0"].success and by_id["app2"].success

    def test_response_classification(self):
        driver = MockDriver()
        driver.set_response("Vendor.Tool0", "Found an existing package already installed.", exit_code=1)
        driver.set_response("Vendor.Tool1", "No package found matching input criteria.", exit_code=1)
        driver.set_failure("Vendor.Tool2", "disk full", exit_code=5)
        results = {r.app_id: r for r in execute(_safe(3), [], 3, False, driver)}

        assert results["app0"].success is True
        assert results["app0"].message == "Already installed"
        assert results["app1"].success is False
        assert results["app1"].message == "Package not found"
        assert results["app2"].success is False
        assert "exit 5" in results["app2"].message
        assert results["app2"].output == ["disk full"]

    def test_no_driver_fails_each_action(self):
        results = execute(_safe(2), [], 2, False, None)
        assert len(results) == 2
        assert all(not r.success for r in results)

    def test_events_once_each(self):
        sink = QueueEventSink()
        actions = _safe(5)
        sequential = [AppAction(id="steam", ref="Valve.Steam", driver="mock", status="fail")]
        execute(actions, sequential, 3, True, MockDriver(), sink)
        events = sink.drain()

        for action_id in [a.id for a in actions + sequential]:
            mine = [e for e in events if e.app_id == action_id]
            assert [e.type for e in mine] == ["AppStarted", "AppCompleted"]
            assert mine[1].success is True
        assert len(events) == 12

    def test_duplicate_ids_rejected(self):
        actions = _safe(2)
        with pytest.raises(ValueError, match="Duplicate"):
            execute(actions, [actions[0]], 2, True, MockDriver())

    def test_failing_event_sink_does_not_stop_the_run(self):
        class BrokenSink(EventSink):
            def emit(self, event):
                raise RuntimeError("sink down")

        driver = MockDriver()
        parallel = _actions("Vendor.Tool0")
        sequential = [
            AppAction(id="vb", ref="Oracle.VirtualBox", driver="mock", status="fail"),
            AppAction(id="gfe", ref="Nvidia.GeForceExperience", driver="mock", status="fail"),
        ]
        engine = ParallelEngine()
        results = engine.execute(parallel, sequential, 2, False, driver, BrokenSink())

        assert sorted(r.app_id for r in results) == ["app0", "gfe", "vb"]
        assert all(r.success for r in results)
        assert driver.call_count == 3
        assert engine.peak_active == 1

    def test_base_event_sink_is_tolerated(self):
        steam = AppAction(id="steam", ref="Valve.Steam", driver="mock", status="fail")
        results = execute(_safe(2), [steam], 2, True, MockDriver(), EventSink())
        assert len(results) == 3
