"""
converge — CLI entrypoint.

Usage:
    converge --help
    converge plan -m machine.json
    converge apply -m machine.json --dry-run
    converge report --limit 5

Exit status is the number of failed actions (capped at 255), so 0
means the machine matches the manifest. Errors that stop a command
before any action runs (bad manifest, bad config, unknown driver)
exit 1.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from converge import __version__
from converge.core.observability.logging_config import (
    ENV_FILE,
    ENV_FILE_LEVEL,
    level_from_flags,
    setup_logging,
)

_MAX_EXIT = 255

_STATUS_STYLE = {
    "pass": ("✓", "green"),
    "fail": ("✗", "red"),
    "skip": ("⊘", "yellow"),
    "pending": ("…", "cyan"),
}

_MANIFEST_OPTION = click.option(
    "--manifest",
    "-m",
    "manifest_path",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Root manifest file.",
)


def _exit_with(failed: int) -> None:
    if failed:
        sys.exit(min(failed, _MAX_EXIT))


def _fail(message: str) -> None:
    click.secho(f"❌ {message}", fg="red", err=True)
    sys.exit(1)


def _echo_json(data: dict | list) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _echo_actions(actions: list, verbose: bool = False) -> None:
    for action in actions:
        icon, color = _STATUS_STYLE.get(action.status, ("?", "white"))
        label = f"{action.type:<7} {action.id}"
        click.secho(f"   {icon} {label}", fg=color, nl=False)
        ref = f" ({action.ref})" if action.ref and action.ref != action.id else ""
        click.echo(f"{ref}  {action.message}" if action.message else ref)
        if verbose and getattr(action, "constraint", None):
            click.echo(f"       constraint {action.constraint}, installed {action.version or '?'}")


def _echo_summary(summary, failed: int) -> None:
    click.echo()
    click.echo(
        f"   install={summary.install} skip={summary.skip} "
        f"restore={summary.restore} verify={summary.verify}"
    )
    if failed:
        click.secho(f"   {failed} failed", fg="red", bold=True)
    else:
        click.secho("   all passing", fg="green", bold=True)


@click.group()
@click.version_option(version=__version__, prog_name="converge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to converge.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: Path | None,
) -> None:
    """converge — bring this machine in line with a manifest."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=level_from_flags(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get(ENV_FILE),
        log_file_level=os.environ.get(ENV_FILE_LEVEL),
        quiet_third_party=not debug,
    )

    # A pre-built runtime (tests, embedding) wins over settings.
    if "runtime" in ctx.obj:
        return

    from converge.core.config.settings import load_settings
    from converge.core.errors import ConfigError
    from converge.core.use_cases.context import build_runtime

    try:
        settings = load_settings(config_path)
    except ConfigError as e:
        _fail(str(e))
    ctx.obj["runtime"] = build_runtime(settings)


# ── capture ─────────────────────────────────────────────────────


@cli.command()
@click.option(
    "--output",
    "-o",
    "output_path",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Manifest file to write.",
)
@click.option("--name", default="", help="Manifest name (default: captured-<platform>).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def capture(ctx: click.Context, output_path: Path, name: str, as_json: bool) -> None:
    """Write a manifest of the packages installed on this machine."""
    from converge.core.use_cases.capture import run_capture

    result = run_capture(output_path, ctx.obj["runtime"], name=name)

    if as_json:
        _echo_json(result.to_dict())
        if result.error:
            sys.exit(1)
        return

    if result.error:
        _fail(result.error)

    assert result.manifest is not None
    click.secho(
        f"📸 Captured {len(result.manifest.apps)} apps from {result.driver_name}",
        fg="cyan",
        bold=True,
    )
    click.echo(f"   → {output_path}")


# ── plan ────────────────────────────────────────────────────────


@cli.command()
@_MANIFEST_OPTION
@click.option("--restore", "include_restore", is_flag=True, help="Include restore actions.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, manifest_path: Path, include_restore: bool, as_json: bool) -> None:
    """Show what apply would do. Nothing is changed or recorded."""
    from converge.core.use_cases.plan import make_plan

    result = make_plan(manifest_path, ctx.obj["runtime"], include_restore=include_restore)

    if as_json:
        _echo_json(result.to_dict())
        if result.error:
            sys.exit(1)
        _exit_with(result.failed_count)
        return

    if result.error:
        _fail(result.error)

    plan_ = result.plan
    assert plan_ is not None
    if result.observe_error:
        click.secho(f"⚠️  {result.observe_error}", fg="yellow")
    click.secho(f"\n📋 {plan_.manifest.name} — plan {plan_.run_id}", fg="cyan", bold=True)
    click.echo(f"   driver: {result.driver_name}  hash: {plan_.manifest.hash[:12]}")
    click.echo()
    _echo_actions(plan_.actions, verbose=ctx.obj.get("verbose", False))
    _echo_summary(plan_.summary, result.failed_count)
    _exit_with(result.failed_count)


# ── apply ───────────────────────────────────────────────────────


@cli.command()
@_MANIFEST_OPTION
@click.option("--dry-run", is_flag=True, help="Report what would be installed, change nothing.")
@click.option("--restore", "include_restore", is_flag=True, help="Also restore configuration files.")
@click.option("--throttle", type=click.IntRange(min=1), default=None, help="Parallel install workers.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def apply(
    ctx: click.Context,
    manifest_path: Path,
    dry_run: bool,
    include_restore: bool,
    throttle: int | None,
    as_json: bool,
) -> None:
    """Install what is missing, optionally restore configs, then verify.

    Examples:

        converge apply -m machine.json

        converge apply -m machine.json --dry-run --throttle 8
    """
    from converge.core.engine.sinks import CallbackEventSink
    from converge.core.use_cases.apply import run_apply

    events = None
    if not as_json and not ctx.obj.get("quiet"):

        def _progress(event) -> None:
            if event.type == "AppStarted":
                click.echo(f"   → {event.app_id}")

        events = CallbackEventSink(_progress)

    if not as_json:
        mode = "[dry-run] " if dry_run else ""
        click.secho(f"\n⚡ {mode}apply {manifest_path}", fg="cyan", bold=True)

    result = run_apply(
        manifest_path,
        ctx.obj["runtime"],
        dry_run=dry_run,
        include_restore=include_restore,
        throttle=throttle,
        events=events,
    )

    if as_json:
        _echo_json(result.to_dict())
        if result.error:
            sys.exit(1)
        _exit_with(result.failed_count)
        return

    if result.error:
        _fail(result.error)

    state = result.state
    assert state is not None
    if result.observe_error:
        click.secho(f"⚠️  {result.observe_error}", fg="yellow")
    click.echo(
        f"   dispatched {result.dispatched} ({result.sequential} sequential), "
        f"peak workers {result.peak_active}"
    )
    click.echo()
    _echo_actions(state.actions, verbose=ctx.obj.get("verbose", False))
    _echo_summary(state.summary, result.failed_count)
    click.echo(f"   💾 {result.state_path}")
    _exit_with(result.failed_count)


# ── verify ──────────────────────────────────────────────────────


@cli.command()
@_MANIFEST_OPTION
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def verify(ctx: click.Context, manifest_path: Path, as_json: bool) -> None:
    """Run the manifest's checks and record the outcome."""
    from converge.core.use_cases.verify import run_verify

    result = run_verify(manifest_path, ctx.obj["runtime"])

    if as_json:
        _echo_json(result.to_dict())
        if result.error:
            sys.exit(1)
        _exit_with(result.failed_count)
        return

    if result.error:
        _fail(result.error)

    state = result.state
    assert state is not None
    click.secho(f"\n🔎 verify — {len(state.actions)} checks", fg="cyan", bold=True)
    _echo_actions(state.actions)
    _echo_summary(state.summary, result.failed_count)
    _exit_with(result.failed_count)


# ── restore ─────────────────────────────────────────────────────


@cli.command()
@_MANIFEST_OPTION
@click.option("--dry-run", is_flag=True, help="Show what would be written.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def restore(ctx: click.Context, manifest_path: Path, dry_run: bool, as_json: bool) -> None:
    """Put the manifest's configuration files in place."""
    from converge.core.use_cases.restore import run_restore

    result = run_restore(manifest_path, ctx.obj["runtime"], dry_run=dry_run)

    if as_json:
        _echo_json(result.to_dict())
        if result.error:
            sys.exit(1)
        _exit_with(result.failed_count)
        return

    if result.error:
        _fail(result.error)

    mode = "[dry-run] " if dry_run else ""
    click.secho(f"\n📂 {mode}restore — {len(result.actions)} items", fg="cyan", bold=True)
    _echo_actions(result.actions)
    _exit_with(result.failed_count)


# ── diff / report ───────────────────────────────────────────────


@cli.command()
@click.argument("run_a", required=False)
@click.argument("run_b", required=False)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def diff(ctx: click.Context, run_a: str | None, run_b: str | None, as_json: bool) -> None:
    """Drift between two recorded runs (default: previous vs latest)."""
    from converge.core.use_cases.history import run_diff

    result = run_diff(ctx.obj["runtime"], run_a, run_b)

    if as_json:
        _echo_json(result.to_dict())
        if result.error:
            sys.exit(1)
        return

    if result.error:
        _fail(result.error)

    report = result.report
    assert report is not None and result.earlier is not None and result.later is not None
    click.secho(f"\n🔀 {result.earlier.run_id} → {result.later.run_id}", fg="cyan", bold=True)
    if not report.has_drift:
        click.secho("   no drift", fg="green")
        return

    sections = (
        ("missing", report.missing, "yellow"),
        ("extra", report.extra, "white"),
        ("version mismatches", report.version_mismatches, "red"),
    )
    for title, items, color in sections:
        if not items:
            continue
        click.secho(f"   {title}: {len(items)}", fg=color, bold=True)
        for item in items:
            click.echo(f"     • {item.type} {item.id}  {item.detail}")


@cli.command()
@click.option("--limit", "-n", type=click.IntRange(min=1), default=10, help="Runs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def report(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Recent run history, newest first."""
    from converge.core.use_cases.history import run_report

    result = run_report(ctx.obj["runtime"], limit=limit)

    if as_json:
        _echo_json(result.to_dict())
        return

    if not result.runs:
        click.echo("No recorded runs.")
        return

    for row in result.runs:
        color = "red" if row["failed"] else "green"
        mode = " [dry-run]" if row["dryRun"] else ""
        click.secho(f"   {row['runId']}", fg=color, nl=False)
        click.echo(
            f"  {row['command']}{mode}  pass={row['passed']} "
            f"fail={row['failed']} skip={row['skipped']}"
        )
        if ctx.obj.get("verbose") and row["failedIds"]:
            click.echo(f"     failed: {', '.join(row['failedIds'])}")


# ── doctor ──────────────────────────────────────────────────────


@cli.command()
@click.option(
    "--manifest",
    "-m",
    "manifest_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also check that this manifest resolves.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def doctor(ctx: click.Context, manifest_path: Path | None, as_json: bool) -> None:
    """Check the driver, state directory and configuration."""
    from converge.core.use_cases.doctor import run_doctor

    system_health = run_doctor(ctx.obj["runtime"], manifest_path)

    if as_json:
        _echo_json(system_health.to_dict())
        _exit_with(system_health.unhealthy_count)
        return

    status_icons = {
        "healthy": ("💚", "green"),
        "degraded": ("🟡", "yellow"),
        "unhealthy": ("🔴", "red"),
        "unknown": ("❔", "white"),
    }
    icon, color = status_icons.get(system_health.status, ("❔", "white"))

    click.echo()
    click.secho(f"{icon} System Health: {system_health.status.upper()}", fg=color, bold=True)
    click.echo(f"   {system_health.timestamp}")
    click.echo()

    for component in system_health.components:
        c_icon, c_color = status_icons.get(component.status, ("❔", "white"))
        click.secho(f"   {c_icon} {component.name}", fg=c_color, bold=True)
        click.echo(f"      {component.message}")

        if ctx.obj.get("verbose") and component.details:
            for key, val in component.details.items():
                click.echo(f"      {key}: {val}")

    click.echo()
    _exit_with(system_health.unhealthy_count)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
