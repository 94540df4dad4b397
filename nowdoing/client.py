from __future__ import annotations

import json
import logging
import sqlite3
import threading
from http.client import HTTPConnection, HTTPException, HTTPSConnection
from typing import Any, Protocol
from urllib.parse import urlencode, urlparse

from .errors import ActivityError
from .identity import VIEWER_HEADER, ViewerContext
from .service import ActivityService

DEFAULT_TIMEOUT_S = 5.0
TRANSPORT_ERROR_MESSAGE = "request failed; check that the viewer is running"
STORAGE_ERROR_MESSAGE = "storage unavailable; try again"

logger = logging.getLogger(__name__)


class ActivityClientError(Exception):
    """A failed API call as the grid sees it.

    ``status`` is the HTTP status, or 0 when no response arrived.
    """

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class ActivityClient(Protocol):
    def get_current(self) -> dict[str, Any] | None: ...

    def start(self, payload: dict[str, Any]) -> dict[str, Any] | None: ...

    def stop(self) -> dict[str, Any]: ...

    def list_events(self, limit: int | None = None) -> list[dict[str, Any]]: ...

    def update_event(self, patch: dict[str, Any]) -> dict[str, Any]: ...

    def suggestions(self) -> dict[str, Any]: ...

    def analytics(self) -> dict[str, Any]: ...


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"http://{trimmed}"


def request_json(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    body: dict[str, Any] | None = None,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> tuple[int, Any]:
    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError("missing hostname")
    if parsed.scheme == "https":
        conn = HTTPSConnection(parsed.hostname, parsed.port or 443, timeout=timeout_s)
    else:
        conn = HTTPConnection(parsed.hostname, parsed.port or 80, timeout=timeout_s)
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    body_bytes = None
    if body is not None:
        body_bytes = json.dumps(body, ensure_ascii=False).encode("utf-8")
    request_headers = {"Accept": "application/json"}
    if body_bytes is not None:
        request_headers["Content-Type"] = "application/json"
        request_headers["Content-Length"] = str(len(body_bytes))
    if headers:
        request_headers.update(headers)
    payload: Any = None
    try:
        conn.request(method, path, body=body_bytes, headers=request_headers)
        resp = conn.getresponse()
        status = int(resp.status)
        raw = resp.read()
        if raw:
            try:
                payload = json.loads(raw.decode("utf-8"))
            except json.JSONDecodeError:
                snippet = raw[:240].decode("utf-8", errors="replace").strip()
                payload = {
                    "error": f"non_json_response: {snippet}" if snippet else "non_json_response"
                }
    finally:
        conn.close()
    return status, payload


class HttpActivityClient:
    """Talks to a running ``nowdoing serve`` instance."""

    def __init__(
        self,
        base_url: str,
        *,
        viewer: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.base_url = build_base_url(base_url)
        self.viewer = viewer
        self.timeout_s = timeout_s

    def _call(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        query: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query)}"
        headers = {VIEWER_HEADER: self.viewer} if self.viewer else None
        try:
            status, payload = request_json(
                method, url, headers=headers, body=body, timeout_s=self.timeout_s
            )
        except (OSError, HTTPException) as exc:
            raise ActivityClientError(TRANSPORT_ERROR_MESSAGE, 0) from exc
        if status >= 400:
            message = ""
            if isinstance(payload, dict):
                message = str(payload.get("error") or "")
            raise ActivityClientError(message or f"request failed ({status})", status)
        return payload

    def get_current(self) -> dict[str, Any] | None:
        payload = self._call("GET", "/api/activity/current")
        return payload.get("current") if isinstance(payload, dict) else None

    def start(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        result = self._call("POST", "/api/activity/current", body=payload)
        return result.get("active") if isinstance(result, dict) else None

    def stop(self) -> dict[str, Any]:
        result = self._call("POST", "/api/activity/stop", body={})
        return result if isinstance(result, dict) else {"stopped": True}

    def list_events(self, limit: int | None = None) -> list[dict[str, Any]]:
        query = {"limit": limit} if limit is not None else None
        payload = self._call("GET", "/api/activity/events", query=query)
        items = payload.get("events") if isinstance(payload, dict) else None
        return [item for item in items or [] if isinstance(item, dict)]

    def update_event(self, patch: dict[str, Any]) -> dict[str, Any]:
        payload = self._call("PATCH", "/api/activity/events", body=patch)
        item = payload.get("event") if isinstance(payload, dict) else None
        if not isinstance(item, dict):
            raise ActivityClientError("malformed update response", 0)
        return item

    def suggestions(self) -> dict[str, Any]:
        payload = self._call("GET", "/api/activity/suggestions")
        return payload if isinstance(payload, dict) else {}

    def analytics(self) -> dict[str, Any]:
        payload = self._call("GET", "/api/activity/analytics")
        return payload if isinstance(payload, dict) else {}


class LocalActivityClient:
    """Calls the service in-process, for the CLI when no viewer is running.

    Calls are serialized because the service shares one SQLite connection.
    """

    def __init__(self, service: ActivityService, ctx: ViewerContext) -> None:
        self.service = service
        self.ctx = ctx
        self._lock = threading.Lock()

    def _wrap(self, fn, *args: Any) -> Any:
        try:
            with self._lock:
                return fn(self.ctx, *args)
        except ActivityError as exc:
            raise ActivityClientError(exc.message, exc.status) from exc
        except (sqlite3.Error, OSError) as exc:
            logger.warning("local activity call failed: %s", exc)
            raise ActivityClientError(STORAGE_ERROR_MESSAGE, 0) from exc

    def get_current(self) -> dict[str, Any] | None:
        return self._wrap(self.service.get_current)

    def start(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        return self._wrap(self.service.start_or_update_current, payload)

    def stop(self) -> dict[str, Any]:
        return self._wrap(self.service.stop_current)

    def list_events(self, limit: int | None = None) -> list[dict[str, Any]]:
        return self._wrap(self.service.list_events, limit)

    def update_event(self, patch: dict[str, Any]) -> dict[str, Any]:
        event_id = str(patch.get("id") or "").strip()
        if not event_id:
            raise ActivityClientError("id is required", 400)
        return self._wrap(self.service.update_event, event_id, patch)

    def suggestions(self) -> dict[str, Any]:
        return self._wrap(self.service.get_suggestions)

    def analytics(self) -> dict[str, Any]:
        return self._wrap(self.service.get_analytics)
