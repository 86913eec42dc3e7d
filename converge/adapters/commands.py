"""
Command driver — package managers driven by command templates.

One driver class covers winget, apt and brew: each preset names the
commands to list, install and export packages, and how to read the
list output. ``{ref}`` and ``{path}`` placeholders are substituted
per call.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from converge.adapters.base import Driver, InstallResponse
from converge.adapters.subprocess_runner import run_command
from converge.core.errors import DriverError

logger = logging.getLogger(__name__)


class DriverPreset(BaseModel):
    """How to talk to one package manager."""

    name: str
    binary: str
    list_command: list[str]
    list_format: Literal["lines", "winget-export"] = "lines"
    install_command: list[str]
    silent_flags: list[str] = Field(default_factory=list)
    export_command: list[str] = Field(default_factory=list)
    export_from_stdout: bool = False
    parallel_safe: bool = True


PRESETS: dict[str, DriverPreset] = {
    "winget": DriverPreset(
        name="winget",
        binary="winget",
        list_command=[
            "winget", "export", "-o", "{path}",
            "--include-versions", "--accept-source-agreements",
        ],
        list_format="winget-export",
        install_command=[
            "winget", "install", "--id", "{ref}", "--exact",
            "--accept-package-agreements", "--accept-source-agreements",
        ],
        silent_flags=["--silent", "--disable-interactivity"],
        export_command=["winget", "export", "-o", "{path}", "--accept-source-agreements"],
    ),
    "apt": DriverPreset(
        name="apt",
        binary="apt-get",
        list_command=["dpkg-query", "-W", "-f=${Package}\t${Version}\n"],
        install_command=["apt-get", "install", "-y", "{ref}"],
        silent_flags=["-qq"],
        export_command=["dpkg", "--get-selections"],
        export_from_stdout=True,
        parallel_safe=False,
    ),
    "brew": DriverPreset(
        name="brew",
        binary="brew",
        list_command=["brew", "list", "--versions"],
        install_command=["brew", "install", "{ref}"],
        silent_flags=["--quiet"],
        export_command=["brew", "bundle", "dump", "--force", "--file", "{path}"],
        parallel_safe=False,
    ),
}


def _fill(template: list[str], **values: str) -> list[str]:
    return [part.format(**values) if "{" in part and "$" not in part else part for part in template]


def parse_list_lines(text: str) -> dict[str, str]:
    """Parse ``name<ws>version...`` lines. The last version wins."""
    packages: dict[str, str] = {}
    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        packages[parts[0]] = parts[-1] if len(parts) > 1 else ""
    return packages


def parse_winget_export(data: dict) -> dict[str, str]:
    """Package identifiers and versions from a ``winget export`` document."""
    packages: dict[str, str] = {}
    for source in data.get("Sources", []):
        for pkg in source.get("Packages", []):
            ident = pkg.get("PackageIdentifier")
            if ident:
                packages[ident] = pkg.get("Version", "") or ""
    return packages


class CommandDriver(Driver):
    """Driver that shells out to a package manager preset."""

    def __init__(self, preset: DriverPreset | str):
        if isinstance(preset, str):
            if preset not in PRESETS:
                raise DriverError(f"Unknown driver preset: {preset}")
            preset = PRESETS[preset]
        self._preset = preset
        self._cache: dict[str, str] | None = None

    @property
    def name(self) -> str:
        return self._preset.name

    @property
    def parallel_safe(self) -> bool:
        return self._preset.parallel_safe

    def is_available(self) -> bool:
        return shutil.which(self._preset.binary) is not None

    def _query(self) -> dict[str, str]:
        if self._cache is not None:
            return self._cache

        preset = self._preset
        if preset.list_format == "winget-export":
            with tempfile.TemporaryDirectory(prefix="converge-") as tmp:
                out = Path(tmp) / "export.json"
                result = run_command(_fill(preset.list_command, path=str(out)))
                if not out.is_file():
                    raise DriverError(
                        f"{preset.name} list failed (exit {result['exit_code']}): "
                        f"{result.get('error') or result['stderr'] or result['stdout']}"
                    )
                try:
                    packages = parse_winget_export(json.loads(out.read_text(encoding="utf-8-sig")))
                except (OSError, json.JSONDecodeError) as e:
                    raise DriverError(f"{preset.name} export unreadable: {e}") from e
        else:
            result = run_command(preset.list_command)
            if not result["ok"]:
                raise DriverError(
                    f"{preset.name} list failed (exit {result['exit_code']}): "
                    f"{result.get('error') or result['stderr']}"
                )
            packages = parse_list_lines(result["stdout"])

        logger.debug("%s reports %d installed packages", preset.name, len(packages))
        self._cache = packages
        return packages

    def list_installed(self) -> set[str]:
        return set(self._query())

    def installed_versions(self) -> dict[str, str]:
        return {ref: v for ref, v in self._query().items() if v}

    def install(self, ref: str, silent: bool = True) -> InstallResponse:
        cmd = _fill(self._preset.install_command, ref=ref)
        if silent:
            cmd += self._preset.silent_flags
        result = run_command(cmd)
        self._cache = None
        output = "\n".join(
            part for part in (result["stdout"], result["stderr"], result.get("error", "")) if part
        )
        return InstallResponse(output=output, exit_code=result["exit_code"])

    def export(self, path: Path) -> bool:
        preset = self._preset
        if not preset.export_command:
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        result = run_command(_fill(preset.export_command, path=str(path)))
        if not result["ok"]:
            logger.warning("%s export failed: %s", preset.name, result.get("error") or result["stderr"])
            return False
        if preset.export_from_stdout:
            path.write_text(result["stdout"], encoding="utf-8")
        return path.is_file()
