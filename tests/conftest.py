from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_local_files(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("NOWDOING_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("NOWDOING_LOCAL_STATE", str(tmp_path / "local_state.json"))
    monkeypatch.setenv("NOWDOING_DB", str(tmp_path / "activity.sqlite"))
    monkeypatch.setenv("NOWDOING_VIEWER_PID", str(tmp_path / "viewer.pid"))
    for name in (
        "NOWDOING_SUBJECT_UPN",
        "NOWDOING_OWNER_UPN",
        "NOWDOING_DEV_VIEWER_UPN",
        "NOWDOING_DEV_VIEWER_ROLE",
        "NOWDOING_TRUST_VIEWER_HEADER",
        "NOWDOING_REDACTED_LABEL",
        "NOWDOING_EVENTS_LIMIT",
    ):
        monkeypatch.delenv(name, raising=False)
