"""Data provenance and metadata utilities."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from gscore import ENGINE_VERSION, SCHEMA_VERSION

# Provider error strings are untrusted and can be arbitrarily long
_MAX_ERROR_LENGTH = 300
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


@dataclass(frozen=True)
class ProvenanceEntry:
    """Outcome of one source fetch, kept on the FactorResult for auditability."""

    source: str
    ok: bool
    latency_ms: float | None = None
    error: str | None = None


def sanitize_error(error: BaseException | str | None) -> str | None:
    """
    Render an error for provenance: type-prefixed, control chars removed, truncated.

    Args:
        error: Exception or message (may be None)

    Returns:
        Sanitized message or None if input was None
    """
    if error is None:
        return None
    if isinstance(error, BaseException):
        message = str(error)
        text = f"{type(error).__name__}: {message}" if message else type(error).__name__
    else:
        text = error

    text = _CONTROL_CHARS.sub("", text)
    if len(text) > _MAX_ERROR_LENGTH:
        text = text[:_MAX_ERROR_LENGTH] + "..."
    return text.strip()


def build_meta(operation: str, duration_ms: float | None = None) -> dict[str, Any]:
    """
    Build standard metadata block for engine output.

    Args:
        operation: Name of the operation producing this output
        duration_ms: Execution time in milliseconds (optional)

    Returns:
        Metadata dict with version info
    """
    meta: dict[str, Any] = {
        "engine_version": ENGINE_VERSION,
        "schema_version": SCHEMA_VERSION,
        "operation": operation,
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }
    if duration_ms is not None:
        meta["duration_ms"] = round(duration_ms, 1)
    return meta


def build_provenance(
    source: str,
    ok: bool,
    latency_ms: float | None = None,
    error: BaseException | str | None = None,
) -> ProvenanceEntry:
    """
    Build a provenance entry for a single source fetch.

    Args:
        source: Data source name (e.g., "coinbase", "fred")
        ok: Whether the fetch produced usable data
        latency_ms: Fetch latency in milliseconds
        error: Failure cause, if any

    Returns:
        ProvenanceEntry with a sanitized error message
    """
    return ProvenanceEntry(
        source=source,
        ok=ok,
        latency_ms=round(latency_ms, 1) if latency_ms is not None else None,
        error=sanitize_error(error),
    )
