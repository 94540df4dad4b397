import json
from pathlib import Path

import pytest

from nowdoing.config import (
    DEFAULT_REDACTED_LABEL,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_read_config_file_missing_or_blank_is_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "missing.json") == {}
    blank = tmp_path / "blank.json"
    blank.write_text("  \n")
    assert read_config_file(blank) == {}


def test_write_config_file_round_trips(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    write_config_file({"owner_upn": "ada@example.com"}, config_path)

    assert json.loads(config_path.read_text()) == {"owner_upn": "ada@example.com"}
    assert read_config_file(config_path)["owner_upn"] == "ada@example.com"


def test_get_config_path_uses_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("NOWDOING_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


def test_load_config_defaults(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("NOWDOING_DB", raising=False)
    monkeypatch.delenv("NOWDOING_LOCAL_STATE", raising=False)
    cfg = load_config(tmp_path / "none.json")

    assert cfg.subject_upn == "me"
    assert cfg.owner_upn == "me"
    assert cfg.dev_viewer_role is None
    assert cfg.trust_viewer_header is False
    assert cfg.redacted_fallback_label == DEFAULT_REDACTED_LABEL
    assert cfg.viewer_port == 38890
    assert cfg.events_default_limit == 50


def test_load_config_file_then_env(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "owner_upn": "ada@example.com",
                "subject_upn": "ada@example.com",
                "viewer_port": "40000",
                "trust_viewer_header": "yes",
                "unknown_key": 1,
            }
        )
    )
    monkeypatch.setenv("NOWDOING_OWNER_UPN", "grace@example.com")

    cfg = load_config(config_path)

    assert cfg.subject_upn == "ada@example.com"
    assert cfg.owner_upn == "grace@example.com"
    assert cfg.viewer_port == 40000
    assert cfg.trust_viewer_header is True
    assert not hasattr(cfg, "unknown_key")


def test_load_config_invalid_int_warns(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("NOWDOING_VIEWER_PORT", "not-a-port")
    with pytest.warns(RuntimeWarning, match="viewer_port"):
        cfg = load_config(tmp_path / "none.json")
    assert cfg.viewer_port == 38890


def test_load_config_ignores_corrupt_file(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{oops")
    cfg = load_config(config_path)
    assert cfg.owner_upn == "me"


def test_get_env_overrides_lists_only_set_vars(monkeypatch) -> None:
    monkeypatch.setenv("NOWDOING_DEV_VIEWER_ROLE", "MANAGER")
    overrides = get_env_overrides()
    assert overrides["dev_viewer_role"] == "MANAGER"
    assert "owner_upn" not in overrides
