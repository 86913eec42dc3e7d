"""
Capture use case — snapshot installed packages as a manifest.

The written manifest lists every ref the driver reports, addressed
for the current platform only and without version pins. It is a
starting point to edit, not a lockfile.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from converge.adapters.restorers import atomic_write_bytes
from converge.core.errors import ConvergeError
from converge.core.models.manifest import App, Manifest
from converge.core.use_cases.context import Runtime

logger = logging.getLogger(__name__)

_NON_ID = re.compile(r"[^a-z0-9]+")


def app_id_for(ref: str) -> str:
    """Readable app id from a package ref: ``Git.Git`` → ``git-git``."""
    return _NON_ID.sub("-", ref.lower()).strip("-") or "app"


def build_capture_manifest(refs: set[str], platform: str, name: str) -> Manifest:
    """A manifest with one app per ref, sorted by ref."""
    apps: list[App] = []
    taken: set[str] = set()
    for ref in sorted(refs):
        app_id = base = app_id_for(ref)
        n = 2
        while app_id in taken:
            app_id = f"{base}-{n}"
            n += 1
        taken.add(app_id)
        apps.append(App(id=app_id, refs={platform: ref}))
    return Manifest(version=1, name=name, apps=apps)


@dataclass
class CaptureResult:
    manifest: Manifest | None = None
    output_path: Path | None = None
    driver_name: str = ""
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "output": str(self.output_path),
            "driver": self.driver_name,
            "apps": len(self.manifest.apps) if self.manifest else 0,
        }


def run_capture(output_path: Path, runtime: Runtime, name: str = "") -> CaptureResult:
    """Write a manifest of what the driver reports as installed.

    Args:
        output_path: Manifest file to write (replaced atomically).
        runtime: Runtime context.
        name: Manifest name (default: ``captured-<platform>``).
    """
    result = CaptureResult(output_path=output_path)

    try:
        driver = runtime.driver()
        refs = driver.list_installed()
    except ConvergeError as e:
        result.error = str(e)
        return result

    result.driver_name = driver.name
    manifest = build_capture_manifest(refs, runtime.platform, name or f"captured-{runtime.platform}")
    result.manifest = manifest

    data = manifest.model_dump(mode="json", exclude={"includes", "restore", "verify"})
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    try:
        atomic_write_bytes(output_path, content.encode("utf-8"))
    except OSError as e:
        result.error = f"Cannot write {output_path}: {e}"
        return result

    logger.info("Captured %d apps from %s into %s", len(manifest.apps), driver.name, output_path)
    return result
