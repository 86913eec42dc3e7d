"""
Manifest hashing — a stable identity for resolved manifest content.

The hash is SHA-256 over canonical JSON (sorted keys, compact
separators, UTF-8) of the resolved content. File paths never take
part, so the same content loaded from two locations hashes the same.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from converge.core.models.manifest import Manifest


def canonical_json(data: Any) -> str:
    """Serialize data so that equal structures give equal strings."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_hash(data: dict[str, Any]) -> str:
    """SHA-256 hex digest (64 chars) of a content mapping."""
    if not isinstance(data, dict):
        raise TypeError(f"Expected a mapping to hash, got {type(data).__name__}")
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


def manifest_hash(manifest: Manifest) -> str:
    """Content hash of a resolved manifest."""
    return compute_hash(manifest.content())
