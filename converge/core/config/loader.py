"""
Manifest resolver — loads a manifest and everything it includes.

This is the primary entry point for reading desired state. A manifest
document is JSON (comments allowed) or YAML. Its ``includes`` are
resolved recursively, relative to the including document's directory,
and merged into one Manifest:

    arrays (apps, restore, verify)
        included content first, in inclusion order, then the including
        document's own items
    scalars (version, name)
        root wins; an included value is only used when the root leaves
        the field empty

A document that appears twice on the same inclusion chain is a cycle
and fails with CircularIncludeError. The same document reached through
two separate branches is not a cycle.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import TypeAdapter, ValidationError

from converge.core.errors import CircularIncludeError, ManifestError
from converge.core.models.manifest import App, Manifest, RestoreItem, VerifyItem

logger = logging.getLogger(__name__)

_KNOWN_KEYS = {"version", "name", "apps", "restore", "verify", "includes", "$schema"}

_ARRAY_FIELDS: dict[str, TypeAdapter] = {
    "apps": TypeAdapter(list[App]),
    "restore": TypeAdapter(list[RestoreItem]),
    "verify": TypeAdapter(list[VerifyItem]),
}

# Characters after which a single quote opens a string rather than
# being an apostrophe inside plain text.
_SQUOTE_OPENERS = set(":,[{-")


def strip_comments(text: str) -> str:
    """Blank out ``//`` and ``/* */`` comments outside of strings.

    Comment characters are replaced by spaces and newlines are kept,
    so parser line numbers still point at the original document.
    ``//`` only starts a comment at the start of a line or after
    whitespace or punctuation, which leaves ``http://`` alone.
    """
    out: list[str] = []
    i, n = 0, len(text)
    quote: str | None = None
    last_sig = ""  # last non-blank char emitted outside strings

    while i < n:
        ch = text[i]

        if quote:
            out.append(ch)
            if ch == "\\" and quote == '"' and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
                last_sig = ch
            elif ch == "\n" and quote == "'":
                # plain-text apostrophe, not a string
                quote = None
                last_sig = ""
            i += 1
            continue

        nxt = text[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "/" and (not out or out[-1] in " \t\n,[]{}"):
            while i < n and text[i] != "\n":
                out.append(" ")
                i += 1
            continue

        if ch == "/" and nxt == "*":
            out.extend("  ")
            i += 2
            while i < n and not (text[i] == "*" and i + 1 < n and text[i + 1] == "/"):
                out.append("\n" if text[i] == "\n" else " ")
                i += 1
            if i < n:
                out.extend("  ")
                i += 2
            continue

        if ch == '"' or (ch == "'" and (last_sig in _SQUOTE_OPENERS or last_sig == "")):
            quote = ch

        out.append(ch)
        if ch == "\n":
            last_sig = ""
        elif not ch.isspace():
            last_sig = ch
        i += 1

    return "".join(out)


def parse_document(text: str, path: Path) -> dict[str, Any]:
    """Parse manifest text (JSON with comments, or YAML) into a mapping.

    Raises:
        ManifestError: On a parse error or a non-mapping document.
    """
    cleaned = strip_comments(text)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as json_err:
        try:
            data = yaml.safe_load(cleaned)
        except yaml.YAMLError as e:
            # Report the JSON error for documents that look like JSON.
            if cleaned.lstrip().startswith("{"):
                raise ManifestError(
                    f"Invalid JSON: {json_err.msg}", path=path, line=json_err.lineno
                ) from e
            mark = getattr(e, "problem_mark", None)
            line = mark.line + 1 if mark is not None else None
            problem = getattr(e, "problem", None) or str(e)
            raise ManifestError(f"Invalid document: {problem}", path=path, line=line) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ManifestError(
            f"Expected a mapping at the top level, got {type(data).__name__}", path=path
        )
    return data


def load_document(path: Path, included_from: Path | None = None) -> dict[str, Any]:
    """Read and parse a single manifest document (no include resolution)."""
    if not path.is_file():
        if included_from is not None:
            raise ManifestError(f"Included manifest not found: {path}", path=included_from)
        raise ManifestError("Manifest file not found", path=path)

    try:
        raw = path.read_text(encoding="utf-8-sig")
    except OSError as e:
        raise ManifestError(f"Cannot read manifest: {e}", path=path) from e

    logger.debug("Loading manifest document %s", path)
    return parse_document(raw, path)


def _canonical(path: Path) -> str:
    return os.path.normcase(os.path.realpath(path))


class _Resolved:
    """Merged content of one document and everything below it."""

    def __init__(self) -> None:
        self.version: int | None = None
        self.name: str | None = None
        self.arrays: dict[str, list] = {key: [] for key in _ARRAY_FIELDS}

    def absorb_scalars(self, version: Any, name: Any) -> None:
        """Take scalar values only where none is set yet."""
        if self.version in (None, "") and version not in (None, ""):
            self.version = version
        if not self.name and name:
            self.name = name


def _validate_arrays(data: dict[str, Any], path: Path) -> dict[str, list]:
    arrays: dict[str, list] = {}
    for key, adapter in _ARRAY_FIELDS.items():
        value = data.get(key)
        if value is None:
            arrays[key] = []
            continue
        if not isinstance(value, list):
            raise ManifestError(f"'{key}' must be an array, got {type(value).__name__}", path=path)
        try:
            arrays[key] = adapter.validate_python(value)
        except ValidationError as e:
            raise ManifestError(f"Invalid '{key}' entry: {e}", path=path) from e
    return arrays


def _includes_of(data: dict[str, Any], path: Path) -> list[str]:
    includes = data.get("includes") or []
    if not isinstance(includes, list) or not all(isinstance(i, str) for i in includes):
        raise ManifestError("'includes' must be an array of paths", path=path)
    return includes


def _resolve(
    path: Path,
    chain: list[str],
    shown: list[str],
    included_from: Path | None = None,
) -> _Resolved:
    canonical = _canonical(path)
    if canonical in chain:
        start = chain.index(canonical)
        raise CircularIncludeError(shown[start:] + [str(path)])

    data = load_document(path, included_from)

    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        logger.warning("Ignoring unknown manifest keys in %s: %s", path, sorted(unknown))

    own_arrays = _validate_arrays(data, path)
    includes = _includes_of(data, path)

    result = _Resolved()
    result.absorb_scalars(data.get("version"), data.get("name"))

    chain = chain + [canonical]
    shown = shown + [str(path)]
    for include in includes:
        include_path = Path(include).expanduser()
        if not include_path.is_absolute():
            include_path = path.parent / include_path
        child = _resolve(include_path, chain, shown, included_from=path)
        result.absorb_scalars(child.version, child.name)
        for key, items in child.arrays.items():
            result.arrays[key].extend(items)

    for key, items in own_arrays.items():
        result.arrays[key].extend(items)

    return result


def resolve_manifest(path: Path | str) -> Manifest:
    """Load a manifest and resolve its includes into one Manifest.

    Args:
        path: Path to the root manifest document.

    Returns:
        Resolved Manifest with an empty ``includes`` list.

    Raises:
        ManifestError: If any document is missing, unparseable or
            malformed, or the root lacks ``version``/``name``.
        CircularIncludeError: If an include chain loops.
    """
    root = Path(path).expanduser()
    resolved = _resolve(root, chain=[], shown=[])

    for field in ("version", "name"):
        if getattr(resolved, field) in (None, ""):
            raise ManifestError(f"Missing required field '{field}'", path=root)

    try:
        manifest = Manifest(
            version=resolved.version,
            name=resolved.name,
            apps=resolved.arrays["apps"],
            restore=resolved.arrays["restore"],
            verify=resolved.arrays["verify"],
        )
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest: {e}", path=root) from e

    logger.info(
        "Resolved manifest '%s': %d apps, %d restore, %d verify",
        manifest.name, len(manifest.apps), len(manifest.restore), len(manifest.verify),
    )
    return manifest
