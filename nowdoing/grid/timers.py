from __future__ import annotations

import logging
import threading
import time

from .controller import GridController

logger = logging.getLogger(__name__)

DEFAULT_POLL_S = 1.0


class AutoRefresher:
    """Refreshes the grid every ``refresh_interval_s`` seconds.

    The interval is read from the controller state on each poll, so changing
    it (or setting it to 0 to turn refresh off) takes effect without a
    restart. Rows being edited are protected by ``auto_refresh_tick``.
    """

    def __init__(self, controller: GridController, *, poll_s: float = DEFAULT_POLL_S) -> None:
        self.controller = controller
        self.poll_s = poll_s
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._last = time.monotonic()

    def due(self, now: float) -> bool:
        interval = self.controller.state.refresh_interval_s
        if interval <= 0:
            self._last = now
            return False
        return now - self._last >= interval

    def tick(self) -> None:
        now = time.monotonic()
        if not self.due(now):
            return
        self._last = now
        try:
            self.controller.auto_refresh_tick()
        except Exception as exc:
            logger.exception("auto refresh failed", exc_info=exc)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._last = time.monotonic()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.poll_s):
            self.tick()


class NowTicker:
    """Advances the grid clock so open rows show a live duration."""

    def __init__(self, controller: GridController, *, interval_s: float = 1.0) -> None:
        self.controller = controller
        self.interval_s = interval_s
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            self.controller.tick()
