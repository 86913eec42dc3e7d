"""
State recorder — atomic, one-file-per-run persistence of RunState.

Layout under the state directory:

    <state>/<runId>.json            one record per run
    <state>/backups/<runId>/...     files replaced by that run's restores

Writes go to a temp file in the state directory and are renamed into
place, so a reader never sees a half-written record, even if the
process dies mid-write. Run ids sort chronologically, so file name
order is run order.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from converge.core.errors import StateError
from converge.core.models.plan import RunState

logger = logging.getLogger(__name__)

BACKUP_DIR = "backups"
RECORD_SUFFIX = ".json"


class StateRecorder:
    """Saves, loads and lists run records in a state directory."""

    def __init__(self, state_dir: Path):
        self._dir = Path(state_dir)

    @property
    def state_dir(self) -> Path:
        return self._dir

    def path_for(self, run_id: str) -> Path:
        return self._dir / f"{run_id}{RECORD_SUFFIX}"

    def backup_dir(self, run_id: str) -> Path:
        """Per-run backup directory (not created)."""
        return self._dir / BACKUP_DIR / run_id

    def save(self, state: RunState) -> Path:
        """Persist a run record atomically.

        Returns:
            Path of the written record.
        """
        path = self.path_for(state.run_id)
        self._dir.mkdir(parents=True, exist_ok=True)
        content = state.to_json()

        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".state_", suffix=".tmp")
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            logger.error("Failed to save run %s to %s", state.run_id, path)
            raise

        logger.debug("Run %s saved to %s", state.run_id, path)
        return path

    def load(self, path: Path) -> RunState:
        """Load one run record.

        Raises:
            StateError: If the file is unreadable or not a valid record.
        """
        try:
            raw = Path(path).read_bytes()
        except OSError as e:
            raise StateError(f"Cannot read {path}: {e}") from e
        try:
            return RunState.model_validate(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            raise StateError(f"Corrupt run record {path}: {e}") from e

    def load_run(self, run_id: str) -> RunState:
        """Load a run by id (a unique id prefix is accepted)."""
        path = self.path_for(run_id)
        if path.is_file():
            return self.load(path)
        matches = [p for p in self._record_paths() if p.stem.startswith(run_id)]
        if len(matches) == 1:
            return self.load(matches[0])
        if not matches:
            raise StateError(f"No run record for '{run_id}' in {self._dir}")
        raise StateError(f"Run id '{run_id}' is ambiguous ({len(matches)} matches)")

    def _record_paths(self) -> list[Path]:
        if not self._dir.is_dir():
            return []
        return sorted(
            p for p in self._dir.iterdir()
            if p.is_file() and p.suffix == RECORD_SUFFIX and not p.name.startswith(".")
        )

    def history(self, limit: int = 10) -> list[RunState]:
        """The most recent ``limit`` valid runs, newest first.

        Corrupt records are skipped with a warning.
        """
        states: list[RunState] = []
        if limit <= 0:
            return states
        for path in reversed(self._record_paths()):
            try:
                states.append(self.load(path))
            except StateError as e:
                logger.warning("Skipping run record: %s", e)
                continue
            if len(states) >= limit:
                break
        return states

    def latest(self) -> RunState | None:
        runs = self.history(limit=1)
        return runs[0] if runs else None
