from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Any
from uuid import uuid4

from . import analytics
from .config import DEFAULT_REDACTED_LABEL
from .errors import AuthorizationError, NotFoundError, ValidationError
from .identity import ViewerContext
from .redaction import redact_payload
from .store import ActiveRecord, ActivityEvent, ActivityStore
from .store.types import (
    DEFAULT_STATUS,
    TASK_STATUSES,
    VISIBILITY_PUBLIC,
    VISIBILITY_REDACTED,
)
from .store.utils import now_utc, parse_iso8601, parse_time_input, to_iso
from .suggestions import build_suggestions

logger = logging.getLogger(__name__)

MAX_EVENTS_LIMIT = 300
DEFAULT_EVENTS_LIMIT = 50
SUGGESTION_SCAN_LIMIT = 300

_OPTIONAL_TEXT_FIELDS = {
    "project": "project",
    "notes": "notes",
    "referenceId": "reference_id",
}


def normalize_status(value: Any) -> str:
    raw = str(value or "").strip().upper().replace("-", "_").replace(" ", "_")
    return raw if raw in TASK_STATUSES else DEFAULT_STATUS


def normalize_visibility(value: Any) -> str:
    raw = str(value or "").strip().upper()
    return VISIBILITY_REDACTED if raw == VISIBILITY_REDACTED else VISIBILITY_PUBLIC


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _required_text(value: Any) -> str:
    return str(value or "").strip()


def _category_from(payload: Mapping[str, Any]) -> Any:
    # "type" is the legacy wire name; "category" wins when both are sent.
    if "category" in payload and payload["category"] is not None:
        return payload["category"]
    return payload.get("type")


def _has_category(payload: Mapping[str, Any]) -> bool:
    return "category" in payload or "type" in payload


def _parse_time_field(payload: Mapping[str, Any], key: str) -> dt.datetime | None:
    value = payload.get(key)
    if value is None:
        return None
    try:
        return parse_time_input(str(value))
    except ValueError as exc:
        raise ValidationError(f"invalid {key}") from exc


def clamp_limit(value: Any, default: int = DEFAULT_EVENTS_LIMIT) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        limit = default
    return max(1, min(MAX_EVENTS_LIMIT, limit))


class ActivityService:
    """Validation, role checks and the active/open-event invariant.

    Every write runs in one store transaction: closing the previous open
    event, writing the event and syncing the active record either all land
    or none do.
    """

    def __init__(
        self,
        store: ActivityStore,
        *,
        redacted_fallback_label: str = DEFAULT_REDACTED_LABEL,
        clock: Callable[[], dt.datetime] = now_utc,
    ) -> None:
        self.store = store
        self.redacted_fallback_label = redacted_fallback_label
        self._clock = clock

    def _now(self) -> dt.datetime:
        return self._clock()

    def _redact(self, payload: dict[str, Any], ctx: ViewerContext) -> dict[str, Any]:
        return redact_payload(
            payload, is_owner=ctx.is_owner, fallback_label=self.redacted_fallback_label
        )

    @staticmethod
    def _require_owner(ctx: ViewerContext) -> None:
        if not ctx.is_owner:
            raise AuthorizationError()

    def get_current(self, ctx: ViewerContext) -> dict[str, Any] | None:
        active = self.store.get_active(ctx.subject)
        if active is None:
            return None
        return self._redact(active.to_payload(), ctx)

    def start_or_update_current(
        self, ctx: ViewerContext, payload: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        self._require_owner(ctx)
        title = _required_text(payload.get("title"))
        category = _required_text(_category_from(payload))
        if not title or not category:
            raise ValidationError("title and category are required")

        now = self._now()
        started = _parse_time_field(payload, "startTime") or now
        ended = _parse_time_field(payload, "endTime")
        if ended is not None and ended < started:
            raise ValidationError("end time cannot be before start time")

        started_iso = to_iso(started)
        event = ActivityEvent(
            id=uuid4().hex,
            subject_upn=ctx.subject,
            title=title,
            category=category,
            status=normalize_status(payload.get("status")),
            project=_optional_text(payload.get("project")),
            notes=_optional_text(payload.get("notes")),
            reference_id=_optional_text(payload.get("referenceId")),
            started_at=started_iso,
            ended_at=to_iso(ended) if ended is not None else None,
            visibility=normalize_visibility(payload.get("visibility")),
            redacted_label=_optional_text(payload.get("redactedLabel")),
        )

        active: ActiveRecord | None = None
        with self.store.transaction():
            previous = self.store.get_open_event(ctx.subject)
            if previous is not None:
                # Never close an event before it began.
                closed_at = max(started_iso, previous.started_at)
                self.store.close_event(previous.id, closed_at)
            self.store.insert_event(event)
            if event.is_open:
                active = ActiveRecord.mirror(event, heartbeat_at=to_iso(now))
                self.store.upsert_active(active)
            else:
                self.store.delete_active(ctx.subject)

        logger.info(
            "activity started",
            extra={"event_id": event.id, "closed": not event.is_open},
        )
        return active.to_payload() if active is not None else None

    def stop_current(self, ctx: ViewerContext) -> dict[str, Any]:
        self._require_owner(ctx)
        now_iso = to_iso(self._now())
        with self.store.transaction():
            open_event = self.store.get_open_event(ctx.subject)
            if open_event is not None:
                self.store.close_event(open_event.id, max(now_iso, open_event.started_at))
            self.store.delete_active(ctx.subject)
        if open_event is not None:
            logger.info("activity stopped", extra={"event_id": open_event.id})
        return {"stopped": True}

    def list_events(self, ctx: ViewerContext, limit: Any = None) -> list[dict[str, Any]]:
        events = self.store.recent_events(ctx.subject, limit=clamp_limit(limit))
        return [self._redact(event.to_payload(), ctx) for event in events]

    def update_event(
        self, ctx: ViewerContext, event_id: str, patch: Mapping[str, Any]
    ) -> dict[str, Any]:
        self._require_owner(ctx)
        with self.store.transaction():
            existing = self.store.get_event(event_id)
            if existing is None or existing.subject_upn != ctx.subject:
                raise NotFoundError("event not found")
            updated = self._apply_patch(existing, patch)
            self.store.update_event(updated)
            if updated.is_open:
                self.store.upsert_active(
                    ActiveRecord.mirror(updated, heartbeat_at=to_iso(self._now()))
                )
            elif existing.is_open:
                self.store.delete_active(ctx.subject)
        logger.info("activity event updated", extra={"event_id": event_id})
        return updated.to_payload()

    def _apply_patch(
        self, existing: ActivityEvent, patch: Mapping[str, Any]
    ) -> ActivityEvent:
        updated = replace(existing)

        if "title" in patch:
            updated.title = _required_text(patch.get("title"))
        if _has_category(patch):
            updated.category = _required_text(_category_from(patch))
        if not updated.title or not updated.category:
            raise ValidationError("title and category are required")

        if "status" in patch:
            updated.status = normalize_status(patch.get("status"))
        for key, attr in _OPTIONAL_TEXT_FIELDS.items():
            if key in patch:
                setattr(updated, attr, _optional_text(patch.get(key)))
        if "visibility" in patch:
            updated.visibility = normalize_visibility(patch.get("visibility"))
        if "redactedLabel" in patch:
            updated.redacted_label = _optional_text(patch.get("redactedLabel"))

        started = _parse_time_field(patch, "startTime")
        if started is not None:
            updated.started_at = to_iso(started)

        if "endTime" in patch:
            ended = _parse_time_field(patch, "endTime")
            if ended is None:
                if not existing.is_open:
                    raise ValidationError(
                        "reopening a closed event is not supported; start a new task instead"
                    )
            else:
                updated.ended_at = to_iso(ended)

        if updated.ended_at is not None:
            start_dt = parse_iso8601(updated.started_at)
            end_dt = parse_iso8601(updated.ended_at)
            if start_dt is not None and end_dt is not None and end_dt < start_dt:
                raise ValidationError("end time cannot be before start time")
        return updated

    def get_suggestions(self, ctx: ViewerContext) -> dict[str, Any]:
        self._require_owner(ctx)
        records: list[Any] = []
        active = self.store.get_active(ctx.subject)
        if active is not None:
            records.append(active)
        records.extend(self.store.recent_events(ctx.subject, limit=SUGGESTION_SCAN_LIMIT))
        return build_suggestions(records)

    def get_analytics(
        self, ctx: ViewerContext, *, now: dt.datetime | None = None
    ) -> dict[str, Any]:
        if now is None:
            now = self._now().astimezone()
        elif now.tzinfo is None:
            now = now.astimezone()
        week_start = analytics.start_of_week(now)
        events = self.store.events_since(
            ctx.subject, to_iso(week_start), limit=analytics.ANALYTICS_EVENT_LIMIT
        )
        return analytics.aggregate(events, now).to_payload()
