from __future__ import annotations

import datetime as dt
import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from .. import views
from ..client import ActivityClient, ActivityClientError
from ..store.utils import now_utc
from . import state as grid
from .columns import DEFAULT_COLUMN_ORDER
from .state import GridState

logger = logging.getLogger(__name__)

DEFAULT_BATCH_WORKERS = 4


@dataclass(frozen=True)
class BatchResult:
    updated: int
    failed: int
    message: str | None = None


def batch_message(updated: int, failed: int) -> str | None:
    if not failed:
        return None
    return f"Updated {updated} row(s). {failed} row(s) failed."


class GridController:
    """Owns a ``GridState`` and performs the side effects around it.

    Transitions run under one lock, so timer threads, batch workers and the
    caller see the same serialized sequence of states. Network calls happen
    outside the lock and their results are merged back as they arrive.
    """

    def __init__(
        self,
        client: ActivityClient,
        storage: views.KeyValueStorage | None = None,
        *,
        tz: dt.tzinfo | None = None,
        clock: Callable[[], dt.datetime] = now_utc,
        events_limit: int | None = None,
        batch_workers: int = DEFAULT_BATCH_WORKERS,
    ) -> None:
        self.client = client
        self.storage = storage if storage is not None else views.MemoryStorage()
        self.clock = clock
        self.events_limit = events_limit
        self.batch_workers = max(1, batch_workers)
        self._lock = threading.RLock()
        self._refresh_in_flight = False
        self._state = GridState(
            column_order=views.load_column_order(self.storage),
            now=clock(),
            tz=tz,
        )

    @property
    def state(self) -> GridState:
        with self._lock:
            return self._state

    def dispatch(self, transition: Callable[..., GridState], *args: Any, **kwargs: Any) -> GridState:
        with self._lock:
            self._state = transition(self._state, *args, **kwargs)
            return self._state

    # Fetching

    def refresh(self) -> bool:
        with self._lock:
            if self._refresh_in_flight:
                return False
            self._refresh_in_flight = True
            self._state = grid.fetch_started(self._state)
            fetched_at = self._state.revision
        try:
            events = self.client.list_events(self.events_limit)
        except ActivityClientError as exc:
            logger.warning("history refresh failed", extra={"status": exc.status})
            with self._lock:
                self._refresh_in_flight = False
                self._state = grid.fetch_failed(self._state, exc.message)
            return False
        with self._lock:
            self._refresh_in_flight = False
            self._state = grid.receive_events(self._state, events, fetched_at)
        return True

    def auto_refresh_tick(self) -> bool:
        # Never pull fresh rows from under an open editor.
        with self._lock:
            if self._state.editing_id is not None:
                return False
        return self.refresh()

    def tick(self, now: dt.datetime | None = None) -> GridState:
        return self.dispatch(grid.tick, now or self.clock())

    # Editing

    def start_editing(self, event_id: str, focus: str | None = None) -> bool:
        """Enter edit mode on a row, committing the previously edited row first.

        Returns False (and stays on the old row) if that commit fails.
        """

        if self.state.editing_id not in (None, event_id) and not self.commit_editing():
            return False
        self.dispatch(grid.begin_edit, event_id, focus)
        return True

    def update_draft(self, event_id: str, **changes: str) -> GridState:
        return self.dispatch(grid.update_draft, event_id, **changes)

    def cancel_editing(self, event_id: str | None = None) -> GridState:
        with self._lock:
            target = event_id or self._state.editing_id
            if target is None:
                return self._state
            self._state = grid.cancel_edit(self._state, target)
            return self._state

    def commit_editing(self) -> bool:
        """Save the open row if it is dirty and leave edit mode.

        Used when focus leaves the editor. True when nothing is being edited.
        """

        current = self.state.editing_id
        if current is None:
            return True
        return self.save_row(current)

    def save_row(self, event_id: str) -> bool:
        with self._lock:
            if not grid.row_has_changes(self._state, event_id):
                if self._state.editing_id == event_id:
                    self._state = grid.close_edit(self._state)
                return True
            if event_id in self._state.saving:
                return False
            patch = self._state.drafts[event_id].to_patch(event_id)
            self._state = grid.save_started(self._state, event_id)
        try:
            updated = self.client.update_event(patch)
        except ActivityClientError as exc:
            logger.warning(
                "history row save failed", extra={"event_id": event_id, "status": exc.status}
            )
            self.dispatch(grid.save_failed, event_id, exc.message)
            return False
        self.dispatch(grid.save_succeeded, updated)
        return True

    # Batch edits

    def apply_batch_edit(self, field: str, value: str) -> BatchResult:
        if field not in grid.BATCH_FIELDS:
            raise ValueError(f"batch edits support {', '.join(grid.BATCH_FIELDS)}")
        ids = grid.selected_ids(self.state)
        if not ids:
            return BatchResult(updated=0, failed=0)

        updated = 0
        failed = 0
        workers = min(self.batch_workers, len(ids))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self.client.update_event, {"id": event_id, field: value}): event_id
                for event_id in ids
            }
            for future in as_completed(futures):
                event_id = futures[future]
                try:
                    event = future.result()
                except ActivityClientError as exc:
                    failed += 1
                    logger.warning(
                        "batch update failed",
                        extra={"event_id": event_id, "status": exc.status},
                    )
                    continue
                updated += 1
                with self._lock:
                    self._state = grid.batch_finished(
                        self._state, [event], (), self._state.error
                    )

        message = batch_message(updated, failed)
        self.dispatch(grid.set_error, message)
        return BatchResult(updated=updated, failed=failed, message=message)

    # Columns

    def move_column(self, source: str, target: str) -> tuple[str, ...]:
        order = self.dispatch(grid.move_column, source, target).column_order
        views.save_column_order(self.storage, order)
        return order

    def reset_columns(self) -> tuple[str, ...]:
        order = self.dispatch(grid.set_column_order, DEFAULT_COLUMN_ORDER).column_order
        views.save_column_order(self.storage, order)
        return order
