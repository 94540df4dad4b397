from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import parse_qs

from ..errors import ActivityError, ValidationError
from ..identity import ViewerContext
from ..service import ActivityService
from ..viewer_http import read_json_object

CURRENT_PATH = "/api/activity/current"
STOP_PATH = "/api/activity/stop"
EVENTS_PATH = "/api/activity/events"
SUGGESTIONS_PATH = "/api/activity/suggestions"
ANALYTICS_PATH = "/api/activity/analytics"


class _ViewerHandler(Protocol):
    headers: Any
    rfile: Any

    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...


def _send_error(handler: _ViewerHandler, exc: ActivityError) -> None:
    handler._send_json({"error": exc.message}, status=exc.status)


def handle_get(
    handler: _ViewerHandler,
    service: ActivityService,
    ctx: ViewerContext,
    path: str,
    query: str,
    *,
    default_limit: int,
) -> bool:
    try:
        if path == CURRENT_PATH:
            handler._send_json({"current": service.get_current(ctx)})
            return True
        if path == EVENTS_PATH:
            params = parse_qs(query)
            limit = params.get("limit", [default_limit])[0]
            handler._send_json({"events": service.list_events(ctx, limit)})
            return True
        if path == SUGGESTIONS_PATH:
            handler._send_json(service.get_suggestions(ctx))
            return True
        if path == ANALYTICS_PATH:
            handler._send_json(service.get_analytics(ctx))
            return True
    except ActivityError as exc:
        _send_error(handler, exc)
        return True
    return False


def handle_post(
    handler: _ViewerHandler,
    service: ActivityService,
    ctx: ViewerContext,
    path: str,
) -> bool:
    if path not in (CURRENT_PATH, STOP_PATH):
        return False
    try:
        payload = read_json_object(handler)
        if path == CURRENT_PATH:
            handler._send_json({"active": service.start_or_update_current(ctx, payload)})
        else:
            handler._send_json(service.stop_current(ctx))
    except ActivityError as exc:
        _send_error(handler, exc)
    return True


def handle_patch(
    handler: _ViewerHandler,
    service: ActivityService,
    ctx: ViewerContext,
    path: str,
) -> bool:
    if path != EVENTS_PATH:
        return False
    try:
        payload = read_json_object(handler)
        event_id = str(payload.get("id") or "").strip()
        if not event_id:
            raise ValidationError("id is required")
        handler._send_json({"event": service.update_event(ctx, event_id, payload)})
    except ActivityError as exc:
        _send_error(handler, exc)
    return True
