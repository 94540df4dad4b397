import http.client
import json
import socket
import threading
from collections.abc import Iterator
from http.server import HTTPServer
from typing import Any

import pytest

from nowdoing.client import ActivityClientError, HttpActivityClient
from nowdoing.viewer import ViewerHandler


@pytest.fixture
def port(monkeypatch) -> Iterator[int]:
    monkeypatch.setenv("NOWDOING_TRUST_VIEWER_HEADER", "1")
    server = HTTPServer(("127.0.0.1", 0), ViewerHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield int(server.server_address[1])
    finally:
        server.shutdown()
        server.server_close()


def _request(
    port: int,
    method: str,
    path: str,
    body: Any = None,
    *,
    viewer: str | None = "me",
    headers: dict[str, str] | None = None,
) -> tuple[int, Any]:
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
    request_headers = dict(headers or {})
    if viewer:
        request_headers["X-Viewer-Upn"] = viewer
    raw: bytes | None = None
    if body is not None:
        raw = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
        request_headers["Content-Type"] = "application/json"
    try:
        conn.request(method, path, body=raw, headers=request_headers)
        resp = conn.getresponse()
        data = resp.read()
        payload = json.loads(data.decode("utf-8")) if data else None
        return resp.status, payload
    finally:
        conn.close()


def test_current_start_and_stop(port: int) -> None:
    assert _request(port, "GET", "/api/activity/current") == (200, {"current": None})

    status, payload = _request(
        port, "POST", "/api/activity/current", {"title": "Write report", "type": "Admin"}
    )
    assert status == 200
    assert payload["active"]["title"] == "Write report"
    assert payload["active"]["category"] == "Admin"

    status, payload = _request(port, "GET", "/api/activity/current", viewer="guest")
    assert status == 200
    assert payload["current"]["title"] == "Write report"

    assert _request(port, "POST", "/api/activity/stop") == (200, {"stopped": True})
    assert _request(port, "POST", "/api/activity/stop") == (200, {"stopped": True})
    assert _request(port, "GET", "/api/activity/current") == (200, {"current": None})


def test_non_owner_writes_are_forbidden(port: int) -> None:
    status, payload = _request(
        port, "POST", "/api/activity/current", {"title": "x", "category": "y"}, viewer="guest"
    )
    assert (status, payload) == (403, {"error": "Forbidden"})

    status, payload = _request(port, "GET", "/api/activity/suggestions", viewer="guest")
    assert status == 403


def test_header_is_ignored_unless_trusted(port: int, monkeypatch) -> None:
    monkeypatch.setenv("NOWDOING_TRUST_VIEWER_HEADER", "0")
    status, _ = _request(port, "POST", "/api/activity/current", {"title": "x", "category": "y"})
    assert status == 403

    monkeypatch.setenv("NOWDOING_DEV_VIEWER_UPN", "me")
    status, _ = _request(port, "POST", "/api/activity/current", {"title": "x", "category": "y"})
    assert status == 200


def test_validation_errors(port: int) -> None:
    status, payload = _request(port, "POST", "/api/activity/current", {"title": " "})
    assert (status, payload) == (400, {"error": "title and category are required"})

    status, payload = _request(port, "POST", "/api/activity/current", b"{nope")
    assert (status, payload) == (400, {"error": "invalid json"})

    status, payload = _request(
        port,
        "POST",
        "/api/activity/current",
        {"title": "x", "category": "y", "startTime": "tomorrow"},
    )
    assert (status, payload) == (400, {"error": "invalid startTime"})


def test_events_listing_and_patch(port: int) -> None:
    for title in ("One", "Two", "Three"):
        _request(port, "POST", "/api/activity/current", {"title": title, "category": "Dev"})

    status, payload = _request(port, "GET", "/api/activity/events?limit=2")
    assert status == 200
    assert len(payload["events"]) == 2

    status, payload = _request(port, "GET", "/api/activity/events")
    events = payload["events"]
    assert len(events) == 3
    assert sum(1 for event in events if event["endedAt"] is None) == 1

    closed = next(event for event in events if event["endedAt"] is not None)
    status, payload = _request(
        port, "PATCH", "/api/activity/events", {"id": closed["id"], "project": "Web"}
    )
    assert status == 200
    assert payload["event"]["project"] == "Web"
    assert payload["event"]["title"] == closed["title"]

    status, payload = _request(
        port, "PATCH", "/api/activity/events", {"id": closed["id"], "endTime": ""}
    )
    assert status == 400

    assert _request(port, "PATCH", "/api/activity/events", {"title": "x"}) == (
        400,
        {"error": "id is required"},
    )
    assert _request(port, "PATCH", "/api/activity/events", {"id": "missing"}) == (
        404,
        {"error": "event not found"},
    )


def test_redacted_events_for_other_viewers(port: int) -> None:
    _request(
        port,
        "POST",
        "/api/activity/current",
        {
            "title": "Interview",
            "category": "Hiring",
            "project": "Secret",
            "visibility": "REDACTED",
            "redactedLabel": "Busy",
        },
    )

    _, owner_view = _request(port, "GET", "/api/activity/events")
    _, guest_view = _request(port, "GET", "/api/activity/events", viewer="guest")

    assert owner_view["events"][0]["title"] == "Interview"
    assert guest_view["events"][0]["title"] == "Busy"
    assert guest_view["events"][0]["project"] is None


def test_suggestions_and_analytics_shapes(port: int) -> None:
    _request(port, "POST", "/api/activity/current", {"title": "Standup", "category": "Meeting"})

    status, suggestions = _request(port, "GET", "/api/activity/suggestions")
    assert status == 200
    assert set(suggestions) == {"titles", "categories", "projects", "taskNotes"}
    assert suggestions["titles"][0] == "Standup"

    status, analytics = _request(port, "GET", "/api/activity/analytics", viewer="guest")
    assert status == 200
    assert set(analytics) == {"todayStart", "weekStart", "todayTotals", "weekTotals", "categories"}


def test_cross_origin_writes_are_rejected(port: int) -> None:
    status, payload = _request(
        port,
        "POST",
        "/api/activity/current",
        {"title": "x", "category": "y"},
        headers={"Origin": "https://evil.test"},
    )
    assert (status, payload) == (403, {"error": "forbidden"})


def test_unknown_paths(port: int) -> None:
    assert _request(port, "GET", "/api/activity/nope") == (404, {"error": "not found"})
    assert _request(port, "GET", "/index.html")[0] == 404


def test_http_client_round_trip(port: int) -> None:
    client = HttpActivityClient(f"127.0.0.1:{port}", viewer="me")

    active = client.start({"title": "Review", "category": "Dev"})
    assert active is not None
    assert client.get_current()["title"] == "Review"

    events = client.list_events(10)
    updated = client.update_event({"id": events[0]["id"], "notes": "PR 12"})
    assert updated["notes"] == "PR 12"

    with pytest.raises(ActivityClientError) as excinfo:
        client.update_event({"id": "missing", "title": "x"})
    assert excinfo.value.status == 404
    assert excinfo.value.message == "event not found"

    assert client.stop() == {"stopped": True}
    assert client.get_current() is None


def test_http_client_transport_error_has_status_zero() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        free_port = sock.getsockname()[1]

    client = HttpActivityClient(f"http://127.0.0.1:{free_port}", timeout_s=1)
    with pytest.raises(ActivityClientError) as excinfo:
        client.list_events()
    assert excinfo.value.status == 0
