from __future__ import annotations

import logging
import os
import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import urlparse

from .config import NowdoingConfig, load_config
from .identity import VIEWER_HEADER, ViewerContext, resolve_context
from .service import ActivityService
from .store import ActivityStore
from .viewer_http import MissingOriginPolicy, reject_cross_origin, send_json_response
from .viewer_routes import activity as viewer_routes_activity

logger = logging.getLogger(__name__)

DEFAULT_VIEWER_HOST = NowdoingConfig.viewer_host
DEFAULT_VIEWER_PORT = NowdoingConfig.viewer_port


class ViewerHandler(BaseHTTPRequestHandler):
    def _send_json(self, payload: dict, status: int = 200) -> None:
        send_json_response(self, payload, status=status)

    def _reject_cross_origin(self, *, missing_origin_policy: MissingOriginPolicy = "allow") -> bool:
        return reject_cross_origin(self, missing_origin_policy=missing_origin_policy)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A003
        if os.environ.get("NOWDOING_VIEWER_LOGS") == "1":
            super().log_message(format, *args)

    def _context(self, cfg: NowdoingConfig) -> ViewerContext:
        viewer = self.headers.get(VIEWER_HEADER) if cfg.trust_viewer_header else None
        return resolve_context(cfg, viewer)

    def _handle(self, method: str) -> None:
        parsed = urlparse(self.path)
        if method != "GET" and self._reject_cross_origin(
            missing_origin_policy="reject_if_unsafe"
        ):
            return
        if not parsed.path.startswith("/api/"):
            self.send_response(404)
            self.end_headers()
            return

        store: ActivityStore | None = None
        try:
            cfg = load_config()
            store = ActivityStore(cfg.db_path)
            service = ActivityService(store, redacted_fallback_label=cfg.redacted_fallback_label)
            ctx = self._context(cfg)
            if method == "GET":
                handled = viewer_routes_activity.handle_get(
                    self,
                    service,
                    ctx,
                    parsed.path,
                    parsed.query,
                    default_limit=cfg.events_default_limit,
                )
            elif method == "POST":
                handled = viewer_routes_activity.handle_post(self, service, ctx, parsed.path)
            else:
                handled = viewer_routes_activity.handle_patch(self, service, ctx, parsed.path)
            if not handled:
                self._send_json({"error": "not found"}, status=404)
        except Exception as exc:
            logger.exception("viewer request failed", extra={"path": parsed.path})
            payload: dict[str, Any] = {"error": "internal server error"}
            if os.environ.get("NOWDOING_VIEWER_DEBUG") == "1":
                payload["detail"] = str(exc)
            self._send_json(payload, status=500)
        finally:
            if store is not None:
                store.close()

    def do_GET(self) -> None:  # noqa: N802
        self._handle("GET")

    def do_POST(self) -> None:  # noqa: N802
        self._handle("POST")

    def do_PATCH(self) -> None:  # noqa: N802
        self._handle("PATCH")


def _serve(host: str, port: int) -> None:
    server = HTTPServer((host, port), ViewerHandler)
    server.serve_forever()


def start_viewer(
    host: str = DEFAULT_VIEWER_HOST,
    port: int = DEFAULT_VIEWER_PORT,
    background: bool = False,
) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.2)
        try:
            if sock.connect_ex((host, port)) == 0:
                return
        except OSError:
            pass
    if background:
        thread = threading.Thread(target=_serve, args=(host, port), daemon=True)
        thread.start()
    else:
        _serve(host, port)
