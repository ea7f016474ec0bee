"""Canonical serialization utilities for diff-stable engine output.

Composite results are persisted and compared across cycles by downstream
consumers, and the engine configuration is identified by a digest of its
content. Both need a deterministic JSON form:

1. Key ordering: sorted at every level
2. Separators: minimal, no whitespace
3. NaN/inf: replaced with null (JSON has no representation for them)
4. Negative zero: coerced to 0.0 to avoid spurious diffs
5. Datetimes: ISO 8601, enums by value, dataclasses as dicts
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import math
from datetime import datetime
from enum import Enum
from typing import Any

# Digest length in hex chars; matches the snapshot hash convention
DIGEST_LENGTH = 16


def canonical_dumps(obj: Any) -> str:
    """Produce canonical JSON string with sorted keys and minimal separators.

    Uses allow_nan=False to fail fast if NaN/inf values slip through
    sanitization. This ensures JSON validity across all parsers.
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def digest(obj: Any) -> str:
    """SHA-256 of the canonical JSON form, truncated to DIGEST_LENGTH hex chars."""
    canonical_json = canonical_dumps(sanitize_nan_inf(to_jsonable(obj)))
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]


def to_jsonable(obj: Any) -> Any:
    """Recursively convert dataclasses, enums, datetimes and tuples to JSON types."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: to_jsonable(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(item) for item in obj]
    # numpy scalars expose item()
    if hasattr(obj, "item") and callable(obj.item) and not isinstance(obj, (str, bytes)):
        try:
            return obj.item()
        except (TypeError, ValueError):
            return obj
    return obj


def _is_nan_or_inf(x: Any) -> bool:
    """Check if value is NaN or inf, handling numpy types safely."""
    if isinstance(x, bool):
        return False
    try:
        return math.isnan(x) or math.isinf(x)
    except (TypeError, ValueError):
        return False


def _is_negative_zero(x: Any) -> bool:
    """Check if value is -0.0 (which creates diff noise)."""
    if isinstance(x, bool):
        return False
    try:
        return x == 0.0 and math.copysign(1.0, x) < 0
    except (TypeError, ValueError):
        return False


def sanitize_nan_inf(obj: Any) -> Any:
    """Recursively replace NaN, inf, -inf with None and -0.0 with 0.0."""
    if isinstance(obj, dict):
        return {k: sanitize_nan_inf(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [sanitize_nan_inf(item) for item in obj]
    elif _is_nan_or_inf(obj):
        return None
    elif _is_negative_zero(obj):
        return 0.0
    return obj
