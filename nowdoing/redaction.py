from __future__ import annotations

from typing import Any

from .config import DEFAULT_REDACTED_LABEL
from .store.types import VISIBILITY_REDACTED


def redact_payload(
    payload: dict[str, Any],
    *,
    is_owner: bool,
    fallback_label: str = DEFAULT_REDACTED_LABEL,
) -> dict[str, Any]:
    """Hide the details of a REDACTED event or active record from non-owners.

    The title becomes the record's own redacted label (or the configured
    fallback) and project/notes/referenceId are nulled. Owners and PUBLIC
    records pass through untouched.
    """

    if is_owner or payload.get("visibility") != VISIBILITY_REDACTED:
        return payload
    label = (payload.get("redactedLabel") or "").strip()
    redacted = dict(payload)
    redacted["title"] = label or fallback_label
    redacted["project"] = None
    redacted["notes"] = None
    redacted["referenceId"] = None
    return redacted
