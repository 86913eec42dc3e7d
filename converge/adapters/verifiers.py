"""
Verifiers — outcome checks named by a manifest's verify items.

Each verifier answers one kind of question ("does this file exist?",
"does this command succeed?") and returns a VerifyOutcome. Item types
with no registered verifier produce no outcome; the planner turns
those into failed actions.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel

from converge.adapters.subprocess_runner import run_command
from converge.core.models.manifest import VerifyItem

logger = logging.getLogger(__name__)


class VerifyOutcome(BaseModel):
    passed: bool
    message: str = ""


class Verifier(ABC):
    """A check for one verify item type."""

    type_name: str = ""

    @abstractmethod
    def check(self, item: VerifyItem) -> VerifyOutcome:
        """Evaluate the item. May raise; the runner records a failure."""


def _expand(path: str) -> Path:
    return Path(os.path.expandvars(path)).expanduser()


class FileExistsVerifier(Verifier):
    type_name = "file-exists"

    def check(self, item: VerifyItem) -> VerifyOutcome:
        raw = item.options.get("path")
        if not raw:
            return VerifyOutcome(passed=False, message="file-exists check needs a 'path'")
        path = _expand(str(raw))
        if path.exists():
            return VerifyOutcome(passed=True, message=f"{path} exists")
        return VerifyOutcome(passed=False, message=f"{path} not found")


class CommandSucceedsVerifier(Verifier):
    type_name = "command-succeeds"

    def check(self, item: VerifyItem) -> VerifyOutcome:
        opts = item.options
        command = opts.get("command")
        if not command:
            return VerifyOutcome(passed=False, message="command-succeeds check needs a 'command'")
        expected = int(opts.get("expect_exit", 0))
        timeout = opts.get("timeout")
        result = run_command(str(command), shell=True, timeout=int(timeout) if timeout else None)
        if result["exit_code"] == expected:
            return VerifyOutcome(passed=True, message=f"'{command}' exited {expected}")
        detail = result.get("error") or result["stderr"].strip() or result["stdout"].strip()
        message = f"'{command}' exited {result['exit_code']} (expected {expected})"
        if detail:
            message += f": {detail.splitlines()[-1]}"
        return VerifyOutcome(passed=False, message=message)


class VerifierRegistry:
    """Verifiers keyed by item type."""

    def __init__(self, verifiers: list[Verifier] | None = None):
        self._verifiers: dict[str, Verifier] = {}
        for verifier in verifiers or []:
            self.register(verifier)

    def register(self, verifier: Verifier) -> None:
        self._verifiers[verifier.type_name] = verifier

    def get(self, type_name: str) -> Verifier | None:
        return self._verifiers.get(type_name)

    @property
    def types(self) -> list[str]:
        return list(self._verifiers)


def default_verifiers() -> VerifierRegistry:
    return VerifierRegistry([FileExistsVerifier(), CommandSucceedsVerifier()])


def run_verifiers(
    items: list[VerifyItem],
    registry: VerifierRegistry | None = None,
) -> dict[int, VerifyOutcome]:
    """Evaluate verify items, keyed by their index in ``items``.

    Unknown types are left out. A verifier that raises yields a failed
    outcome for that item only.
    """
    registry = registry or default_verifiers()
    outcomes: dict[int, VerifyOutcome] = {}
    for index, item in enumerate(items):
        verifier = registry.get(item.type)
        if verifier is None:
            continue
        try:
            outcomes[index] = verifier.check(item)
        except Exception as e:
            logger.warning("Verifier %s raised for %s: %s", item.type, item.key, e)
            outcomes[index] = VerifyOutcome(passed=False, message=f"Verifier error: {e}")
    return outcomes
