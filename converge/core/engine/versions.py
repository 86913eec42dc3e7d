"""
Version constraints (pure).

Two constraint forms are understood:

    "X.Y.Z"     installed version must equal X.Y.Z
    ">=X.Y.Z"   installed version must be X.Y.Z or later

Versions compare component-wise as integers; the shorter version is
padded with zeros, so "1.2" equals "1.2.0". Each component's leading
digits are used ("3-beta" reads as 3).
"""

from __future__ import annotations

import re

_LEADING_DIGITS = re.compile(r"^(\d+)")


def parse_version(version: str) -> tuple[int, ...]:
    """``"v1.2.3"`` → ``(1, 2, 3)``.

    Raises:
        ValueError: If no component starts with a digit.
    """
    text = version.strip().lstrip("vV")
    parts: list[int] = []
    for component in text.split("."):
        match = _LEADING_DIGITS.match(component)
        if match is None:
            break
        parts.append(int(match.group(1)))
    if not parts:
        raise ValueError(f"Unparseable version: {version!r}")
    return tuple(parts)


def compare_versions(a: str, b: str) -> int:
    """-1, 0 or 1 as ``a`` is older than, equal to, or newer than ``b``."""
    pa, pb = parse_version(a), parse_version(b)
    width = max(len(pa), len(pb))
    pa += (0,) * (width - len(pa))
    pb += (0,) * (width - len(pb))
    return (pa > pb) - (pa < pb)


def check_constraint(installed: str | None, constraint: str | None) -> tuple[bool, str]:
    """Evaluate an installed version against a constraint.

    Returns:
        ``(satisfied, message)``; message is empty when satisfied.
    """
    if not constraint:
        return True, ""

    spec = constraint.strip()
    minimum = spec.startswith(">=")
    reference = spec[2:].strip() if minimum else spec

    if not installed:
        return False, f"Installed version unknown; requires {spec}"

    try:
        cmp = compare_versions(installed, reference)
    except ValueError as e:
        return False, str(e)

    if minimum:
        if cmp >= 0:
            return True, ""
        return False, f"Version {installed} < {reference}. Minimum required: {reference}."

    if cmp == 0:
        return True, ""
    return False, f"Version {installed} != {reference}. Exact match required."
