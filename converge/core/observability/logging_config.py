"""
Logging configuration — central setup for the CLI.

Called once at startup.  Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.

Levels are resolved in precedence order:
    CLI flag  >  CONVERGE_LOG_LEVEL env var  >  WARNING (default)

Optional file output via CONVERGE_LOG_FILE / CONVERGE_LOG_FILE_LEVEL.
Install workers run on threads named ``converge-slot_N``; the DEBUG and
file formats include the thread name so interleaved lines stay readable.
"""

from __future__ import annotations

import logging
import os
import sys

# ── Format strings ──────────────────────────────────────────────

# WARNING level — minimal, no noise
_FMT_MINIMAL = "%(message)s"

# INFO level — timestamped with module context
_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

# DEBUG level — thread + file:line
_FMT_DEBUG = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

# File output — always full detail
_FMT_FILE = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("urllib3", "asyncio", "concurrent.futures")

ENV_LEVEL = "CONVERGE_LOG_LEVEL"
ENV_FILE = "CONVERGE_LOG_FILE"
ENV_FILE_LEVEL = "CONVERGE_LOG_FILE_LEVEL"


def level_from_flags(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    env: dict[str, str] | None = None,
) -> str:
    """Pick the console level from CLI flags, falling back to the env."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = os.environ if env is None else env
    return env.get(ENV_LEVEL, "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure Python logging for the entire process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file.
        log_file_level: Optional separate level for the log file.
            Defaults to the same as ``level``.
        quiet_third_party: Keep noisy library loggers at WARNING unless
            we're at DEBUG level.
    """
    numeric_level = _parse_level(level)

    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    effective_level = numeric_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)

    root.setLevel(effective_level)

    if quiet_third_party and numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
