from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import NoReturn

import typer
from rich import print

from nowdoing.client import ActivityClient, HttpActivityClient, LocalActivityClient
from nowdoing.config import NowdoingConfig, load_config
from nowdoing.grid.columns import COLUMN_BY_KEY
from nowdoing.identity import resolve_context
from nowdoing.service import ActivityService
from nowdoing.store import ActivityStore
from nowdoing.views import JsonFileStorage


def fail(message: str) -> NoReturn:
    print(f"[red]{message}[/red]")
    raise typer.Exit(code=1)


def config_for_cli(db_path: str | None = None) -> NowdoingConfig:
    cfg = load_config()
    if db_path:
        cfg.db_path = db_path
    return cfg


def store_from_config(cfg: NowdoingConfig) -> ActivityStore:
    # Batch edits call the store from worker threads; LocalActivityClient
    # serializes those calls.
    return ActivityStore(cfg.db_path, check_same_thread=False)


@contextmanager
def open_client(
    cfg: NowdoingConfig, *, viewer: str | None, url: str | None
) -> Iterator[ActivityClient]:
    """Yield an API client: HTTP when ``url`` is given, otherwise in-process.

    In-process calls act as the configured owner unless ``viewer`` says
    otherwise, which lets the CLI preview what other roles see.
    """

    if url:
        yield HttpActivityClient(url, viewer=viewer)
        return
    store = store_from_config(cfg)
    try:
        service = ActivityService(store, redacted_fallback_label=cfg.redacted_fallback_label)
        ctx = resolve_context(cfg, viewer or cfg.owner_upn)
        yield LocalActivityClient(service, ctx)
    finally:
        store.close()


def local_storage(cfg: NowdoingConfig) -> JsonFileStorage:
    return JsonFileStorage(cfg.local_state_path)


def parse_filters(items: list[str] | None) -> dict[str, str]:
    filters: dict[str, str] = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or key not in COLUMN_BY_KEY:
            known = ", ".join(COLUMN_BY_KEY)
            raise typer.BadParameter(f"expected COLUMN=VALUE with COLUMN one of: {known}")
        filters[key] = value
    return filters


def format_minutes(minutes: int) -> str:
    hours, mins = divmod(max(0, int(minutes)), 60)
    if hours:
        return f"{hours}h {mins:02d}m"
    return f"{mins}m"
