"""Canonical JSON hashing for ledger seals and synthetic digests."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

# Fields that never take part in an entry's own hash.
_UNHASHED_FIELDS = frozenset({"entry_hash"})


def canonical_json_bytes(obj: Any) -> bytes:
    """Sorted-key, whitespace-free, ASCII-only JSON, UTF-8 encoded."""
    text = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return text.encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def content_address(obj: Any) -> str:
    """Registry-style digest (``sha256:<hex>``) of a JSON-serializable object."""
    return "sha256:" + sha256_hex(canonical_json_bytes(obj))


def compute_entry_hash(entry: Mapping[str, Any]) -> str:
    """Hash of a JSON-mode ledger entry dump, ignoring its own seal."""
    hashed = {key: value for key, value in entry.items() if key not in _UNHASHED_FIELDS}
    return sha256_hex(canonical_json_bytes(hashed))
