from __future__ import annotations

from typing import List, Optional

import typer
from rich import print

from . import __version__
from .commands.activity_cmds import (
    analytics_cmd,
    batch_cmd,
    build_start_payload,
    edit_cmd,
    history_cmd,
    now_cmd,
    start_cmd,
    stop_cmd,
    suggest_cmd,
)
from .commands.common import config_for_cli, local_storage, open_client, parse_filters
from .commands.view_cmds import (
    columns_move_cmd,
    columns_reset_cmd,
    columns_show_cmd,
    views_add_cmd,
    views_delete_cmd,
    views_duplicate_cmd,
    views_list_cmd,
    views_rename_cmd,
)
from .commands.viewer_cmds import serve as _serve
from .grid.state import DEFAULT_PAGE_SIZE
from .store import ActivityStore

app = typer.Typer(help="nowdoing: what I'm doing now, what I did, and where the week went")
views_app = typer.Typer(help="Manage saved history views")
columns_app = typer.Typer(help="Manage history column order")
app.add_typer(views_app, name="views")
app.add_typer(columns_app, name="columns")


@app.command()
def init_db(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Create the SQLite database (no-op if it already exists)."""
    cfg = config_for_cli(db_path)
    store = ActivityStore(cfg.db_path)
    try:
        print(f"Initialized database at {store.db_path}")
    finally:
        store.close()


@app.command()
def serve(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    host: str = typer.Option(None, help="Host to bind the API (default from config)"),
    port: int = typer.Option(None, help="Port to bind the API (default from config)"),
    background: bool = typer.Option(False, help="Run in background"),
    stop: bool = typer.Option(False, help="Stop background server"),
    restart: bool = typer.Option(False, help="Restart background server"),
) -> None:
    """Serve the activity HTTP API."""
    cfg = config_for_cli(db_path)
    _serve(
        db_path=db_path,
        host=host or cfg.viewer_host,
        port=port or cfg.viewer_port,
        background=background,
        stop=stop,
        restart=restart,
    )


@app.command()
def now(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    viewer: str = typer.Option(None, help="View as this user (previews redaction)"),
    url: str = typer.Option(None, help="Use a running server instead of the local database"),
) -> None:
    """Show the task in progress."""
    with open_client(config_for_cli(db_path), viewer=viewer, url=url) as client:
        now_cmd(client=client)


@app.command()
def start(
    title: str = typer.Argument(..., help="What you are working on"),
    category: str = typer.Option(..., "--category", "-c", help="Category (free text)"),
    status: str = typer.Option(None, help="NOT_STARTED, IN_PROGRESS, ON_HOLD or COMPLETED"),
    project: str = typer.Option(None, "--project", "-p", help="Project"),
    notes: str = typer.Option(None, "--notes", "-n", help="Description"),
    reference_id: str = typer.Option(None, "--ref", help="Ticket or other reference id"),
    start_time: str = typer.Option(None, "--from", help="Start time (YYYY-MM-DDTHH:MM or ISO)"),
    end_time: str = typer.Option(None, "--to", help="End time; logs a closed entry"),
    redacted: bool = typer.Option(False, help="Hide details from non-owners"),
    redacted_label: str = typer.Option(None, "--label", help="Title shown when redacted"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    url: str = typer.Option(None, help="Use a running server instead of the local database"),
) -> None:
    """Start a task (closing the current one), or log a past entry with --to."""
    payload = build_start_payload(
        title=title,
        category=category,
        status=status,
        project=project,
        notes=notes,
        reference_id=reference_id,
        start_time=start_time,
        end_time=end_time,
        redacted=redacted,
        redacted_label=redacted_label,
    )
    with open_client(config_for_cli(db_path), viewer=None, url=url) as client:
        start_cmd(client=client, payload=payload)


@app.command()
def stop(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    url: str = typer.Option(None, help="Use a running server instead of the local database"),
) -> None:
    """Stop the task in progress."""
    with open_client(config_for_cli(db_path), viewer=None, url=url) as client:
        stop_cmd(client=client)


@app.command()
def history(
    filters: Optional[List[str]] = typer.Option(
        None, "--filter", "-f", help="Column filter as COLUMN=VALUE (repeatable)"
    ),
    view: str = typer.Option(None, help="Saved view id to apply"),
    sort: str = typer.Option(None, help="Column to sort by"),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
    page: int = typer.Option(1, help="Page number"),
    page_size: int = typer.Option(DEFAULT_PAGE_SIZE, help="Rows per page (10, 25, 50, 100)"),
    limit: int = typer.Option(None, help="Events to load (max 300)"),
    comfort: bool = typer.Option(False, help="Roomier row spacing"),
    watch: bool = typer.Option(False, help="Keep redrawing until Ctrl-C"),
    refresh: int = typer.Option(
        0, help="With --watch, refetch every N seconds (0, 60, 180, 300)"
    ),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    viewer: str = typer.Option(None, help="View as this user (previews redaction)"),
    url: str = typer.Option(None, help="Use a running server instead of the local database"),
) -> None:
    """Show the history grid."""
    cfg = config_for_cli(db_path)
    with open_client(cfg, viewer=viewer, url=url) as client:
        history_cmd(
            client=client,
            storage=local_storage(cfg),
            limit=limit or cfg.events_default_limit,
            filters=parse_filters(filters),
            view=view,
            sort=sort,
            descending=desc,
            page=page,
            page_size=page_size,
            comfort=comfort,
            watch=watch,
            refresh_interval_s=refresh,
        )


@app.command()
def edit(
    event_id: str = typer.Argument(..., help="Event id (a unique prefix is enough)"),
    title: str = typer.Option(None, help="New title"),
    category: str = typer.Option(None, help="New category"),
    status: str = typer.Option(None, help="New status"),
    project: str = typer.Option(None, help="New project ('' clears)"),
    notes: str = typer.Option(None, help="New description ('' clears)"),
    start_time: str = typer.Option(None, "--from", help="New start time"),
    end_time: str = typer.Option(None, "--to", help="New end time"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    url: str = typer.Option(None, help="Use a running server instead of the local database"),
) -> None:
    """Edit one history entry."""
    candidates = {
        "title": title,
        "category": category,
        "status": status,
        "project": project,
        "notes": notes,
        "start_time": start_time,
        "end_time": end_time,
    }
    changes = {key: value for key, value in candidates.items() if value is not None}
    with open_client(config_for_cli(db_path), viewer=None, url=url) as client:
        edit_cmd(client=client, event_id=event_id, changes=changes)


@app.command()
def batch(
    field: str = typer.Argument(..., help="status, category or project"),
    value: str = typer.Argument(..., help="Value to set"),
    event_ids: List[str] = typer.Argument(..., help="Event ids (unique prefixes)"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    url: str = typer.Option(None, help="Use a running server instead of the local database"),
) -> None:
    """Set one field on several history entries."""
    with open_client(config_for_cli(db_path), viewer=None, url=url) as client:
        batch_cmd(client=client, field=field, value=value, event_ids=event_ids)


@app.command()
def suggest(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    url: str = typer.Option(None, help="Use a running server instead of the local database"),
) -> None:
    """List recent titles, categories and projects."""
    with open_client(config_for_cli(db_path), viewer=None, url=url) as client:
        suggest_cmd(client=client)


@app.command()
def analytics(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    viewer: str = typer.Option(None, help="View as this user"),
    url: str = typer.Option(None, help="Use a running server instead of the local database"),
) -> None:
    """Minutes per category today and this week."""
    with open_client(config_for_cli(db_path), viewer=viewer, url=url) as client:
        analytics_cmd(client=client)


@views_app.command("list")
def views_list() -> None:
    """List saved views."""
    views_list_cmd(storage=local_storage(config_for_cli()))


@views_app.command("add")
def views_add(
    name: str = typer.Argument(..., help="View name"),
    filters: Optional[List[str]] = typer.Option(
        None, "--filter", "-f", help="Column filter as COLUMN=VALUE (repeatable)"
    ),
) -> None:
    """Save a filter set as a named view."""
    views_add_cmd(
        storage=local_storage(config_for_cli()), name=name, filters=parse_filters(filters)
    )


@views_app.command("rename")
def views_rename(
    view: str = typer.Argument(..., help="View id or name"),
    name: str = typer.Argument(..., help="New name"),
) -> None:
    """Rename a saved view."""
    views_rename_cmd(storage=local_storage(config_for_cli()), ref=view, name=name)


@views_app.command("duplicate")
def views_duplicate(view: str = typer.Argument(..., help="View id or name")) -> None:
    """Copy a saved view."""
    views_duplicate_cmd(storage=local_storage(config_for_cli()), ref=view)


@views_app.command("delete")
def views_delete(view: str = typer.Argument(..., help="View id or name")) -> None:
    """Delete a saved view."""
    views_delete_cmd(storage=local_storage(config_for_cli()), ref=view)


@columns_app.command("show")
def columns_show() -> None:
    """Show the history column order."""
    columns_show_cmd(storage=local_storage(config_for_cli()))


@columns_app.command("move")
def columns_move(
    source: str = typer.Argument(..., help="Column to move"),
    target: str = typer.Argument(..., help="Column it should land before"),
) -> None:
    """Move a column in front of another."""
    columns_move_cmd(storage=local_storage(config_for_cli()), source=source, target=target)


@columns_app.command("reset")
def columns_reset() -> None:
    """Restore the default column order."""
    columns_reset_cmd(storage=local_storage(config_for_cli()))


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
