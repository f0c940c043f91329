"""
Deterministic content hashing for managed resources.

A ResourceObject is content-addressed: its ``spec_hash`` is derived from
kind, namespace, name and the rendered body. Two renders with equal hashes
describe the same object, which is what lets the controller skip no-op
updates.

Manifesto:
    - **Deterministic:** Same inputs always produce the same hash
    - **Order-independent for mappings:** Dict key order never changes a hash
    - **Order-dependent for values:** (a, b) ≠ (b, a)

Examples:
    >>> compute_hash("Namespace", "", "ns-42") == compute_hash("Namespace", "", "ns-42")
    True
    >>> spec_hash("Deployment", "ns-42", "deploy-42", {"image": "app:a1"}) != \\
    ...     spec_hash("Deployment", "ns-42", "deploy-42", {"image": "app:b2"})
    True

Tags:
    hashing, idempotency, content-addressing, prcanary
"""

import hashlib
import json
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Args:
        *values: Values to hash (converted to strings, joined with ``|``)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def canonical_json(value: Any) -> str:
    """Serialize *value* with sorted keys and no whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def spec_hash(kind: str, namespace: str, name: str, body: Any, length: int = 32) -> str:
    """Content hash of one rendered resource."""
    return compute_hash(kind, namespace, name, canonical_json(body), length=length)
