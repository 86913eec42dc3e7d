"""
Restorers — put configuration files in place.

A restorer applies one restore item. Before a target is overwritten,
the previous file is copied into the run's backup directory under
its original path structure, so ``/home/me/.gitconfig`` is kept as
``<backups>/<runId>/home/me/.gitconfig``. Every write goes to a
temp file in the target's directory and is renamed into place.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from converge.core.errors import RestoreError
from converge.core.models.manifest import RestoreItem

logger = logging.getLogger(__name__)


def expand_path(raw: str, base_dir: Path | None = None) -> Path:
    """Expand ``~`` and env vars; relative paths resolve against base_dir."""
    path = Path(os.path.expandvars(raw)).expanduser()
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return path


def backup_location(target: Path, backup_dir: Path) -> Path:
    """Where a target's backup lives, preserving its path structure."""
    absolute = target.absolute()
    parts = list(absolute.parts[1:])
    if absolute.drive:
        parts.insert(0, absolute.drive.rstrip(":\\/") or "drive")
    return backup_dir.joinpath(*parts)


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Write content to path via temp-then-rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".converge_", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        if path.exists():
            shutil.copymode(path, tmp)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


class Restorer(ABC):
    """Applies one restore item type."""

    type_name: str = ""

    @abstractmethod
    def apply(self, item: RestoreItem, source: Path, target: Path, backup_dir: Path | None) -> str:
        """Apply the item and return a short description.

        Raises:
            RestoreError / OSError: The item could not be applied.
        """

    def backup(self, target: Path, backup_dir: Path | None) -> Path | None:
        if backup_dir is None or not target.is_file():
            return None
        dest = backup_location(target, backup_dir)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(target, dest)
        logger.info("Backed up %s → %s", target, dest)
        return dest


class CopyRestorer(Restorer):
    """Copy a file (or every file under a directory) onto the target."""

    type_name = "copy"

    def apply(self, item: RestoreItem, source: Path, target: Path, backup_dir: Path | None) -> str:
        if source.is_file():
            pairs = [(source, target)]
        elif source.is_dir():
            pairs = [(f, target / f.relative_to(source)) for f in sorted(source.rglob("*")) if f.is_file()]
        else:
            raise RestoreError(f"Source not found: {source}")

        changed = 0
        for src, dst in pairs:
            content = src.read_bytes()
            if dst.is_file() and dst.read_bytes() == content:
                continue
            if item.backup:
                self.backup(dst, backup_dir)
            atomic_write_bytes(dst, content)
            changed += 1

        if changed == 0:
            return f"{target} already up to date"
        return f"Copied {changed} file(s) to {target}"


class AppendRestorer(Restorer):
    """Append the source's content to the target unless already present."""

    type_name = "append"

    def apply(self, item: RestoreItem, source: Path, target: Path, backup_dir: Path | None) -> str:
        if not source.is_file():
            raise RestoreError(f"Source not found: {source}")
        try:
            addition = source.read_text(encoding="utf-8")
            existing = target.read_text(encoding="utf-8") if target.is_file() else ""
        except UnicodeDecodeError as e:
            raise RestoreError(f"Cannot append to {target}: not UTF-8 text ({e.reason})") from e
        if addition.strip() and addition.strip() in existing:
            return f"{target} already contains {source.name}"

        if item.backup:
            self.backup(target, backup_dir)
        separator = "" if not existing or existing.endswith("\n") else "\n"
        atomic_write_bytes(target, (existing + separator + addition).encode("utf-8"))
        return f"Appended {source.name} to {target}"


class RestorerRegistry:
    """Restorers keyed by item type."""

    def __init__(self, restorers: list[Restorer] | None = None):
        self._restorers: dict[str, Restorer] = {}
        for restorer in restorers or []:
            self.register(restorer)

    def register(self, restorer: Restorer) -> None:
        self._restorers[restorer.type_name] = restorer

    def get(self, type_name: str) -> Restorer | None:
        return self._restorers.get(type_name)


def default_restorers() -> RestorerRegistry:
    return RestorerRegistry([CopyRestorer(), AppendRestorer()])
