"""Deterministic SHA-256 digests of snapshot content.

The digest is taken over a compact JSON serialization that matches what
a JavaScript ``JSON.stringify`` produces for the same rows (no spaces,
non-ASCII kept as-is), so snapshots written by the web exporter verify
here and vice versa.  The serialization follows dict insertion order:
re-keying a row changes its digest unless ``sort_keys`` is set.
"""

import hashlib
import json
from typing import Any


def canonical_json(value: Any, *, sort_keys: bool = False) -> str:
    """Serialize ``value`` the way checksums see it."""
    return json.dumps(
        value,
        separators=(",", ":"),
        ensure_ascii=False,
        sort_keys=sort_keys,
        default=str,
    )


def compute_checksum(value: Any, *, sort_keys: bool = False) -> str:
    """Hex SHA-256 of ``canonical_json(value)``.

    Example:
        >>> compute_checksum([])
        '4f53cda18c2baa0c0354bb5f9a3ecbe5ed12ab4d8e11ba873c2f11161202b945'
    """
    payload = canonical_json(value, sort_keys=sort_keys).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()
