"""
Subprocess runner — the single place ``subprocess.run`` is called.

Drivers and the command verifier go through here so logging and
error capture live in one spot. Returns a result dict, never raises
for command failures.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Any

logger = logging.getLogger(__name__)

# Keep the tail of long installer logs only.
_OUTPUT_LIMIT = 8000


def run_command(
    cmd: list[str] | str,
    *,
    shell: bool = False,
    timeout: int | None = None,
    env_overrides: dict[str, str] | None = None,
    cwd: str | None = None,
) -> dict[str, Any]:
    """Run a command and capture its output.

    Args:
        cmd: Command list (or string when ``shell`` is True).
        shell: Run through the shell.
        timeout: Seconds before giving up. None waits indefinitely.
        env_overrides: Extra environment variables.
        cwd: Working directory.

    Returns:
        ``{"ok": bool, "exit_code": int, "stdout": str, "stderr": str,
        "elapsed_ms": int}``; on launch failure ``exit_code`` is -1 and
        ``error`` describes the problem.
    """
    env = None
    if env_overrides:
        env = os.environ.copy()
        for key, value in env_overrides.items():
            env[key] = os.path.expandvars(value)

    logger.debug("Executing: %s", cmd)
    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            shell=shell,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            env=env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return {
            "ok": False,
            "exit_code": -1,
            "stdout": "",
            "stderr": "",
            "error": f"Command timed out ({timeout}s)",
            "elapsed_ms": int((time.monotonic() - start) * 1000),
        }
    except OSError as e:
        logger.debug("Cannot launch %s: %s", cmd, e)
        return {
            "ok": False,
            "exit_code": -1,
            "stdout": "",
            "stderr": "",
            "error": str(e),
            "elapsed_ms": int((time.monotonic() - start) * 1000),
        }

    return {
        "ok": result.returncode == 0,
        "exit_code": result.returncode,
        "stdout": (result.stdout or "")[-_OUTPUT_LIMIT:],
        "stderr": (result.stderr or "")[-_OUTPUT_LIMIT:],
        "elapsed_ms": int((time.monotonic() - start) * 1000),
    }
