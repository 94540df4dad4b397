from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/nowdoing/config.json").expanduser()
DEFAULT_REDACTED_LABEL = "Busy - perfectly legal and secret activities"

CONFIG_ENV_OVERRIDES = {
    "db_path": "NOWDOING_DB",
    "subject_upn": "NOWDOING_SUBJECT_UPN",
    "owner_upn": "NOWDOING_OWNER_UPN",
    "dev_viewer_upn": "NOWDOING_DEV_VIEWER_UPN",
    "dev_viewer_role": "NOWDOING_DEV_VIEWER_ROLE",
    "trust_viewer_header": "NOWDOING_TRUST_VIEWER_HEADER",
    "redacted_fallback_label": "NOWDOING_REDACTED_LABEL",
    "viewer_host": "NOWDOING_VIEWER_HOST",
    "viewer_port": "NOWDOING_VIEWER_PORT",
    "events_default_limit": "NOWDOING_EVENTS_LIMIT",
    "local_state_path": "NOWDOING_LOCAL_STATE",
}

_INT_KEYS = {"viewer_port", "events_default_limit"}
_BOOL_KEYS = {"trust_viewer_header"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("NOWDOING_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class NowdoingConfig:
    db_path: str = "~/.nowdoing.sqlite"
    # The tracked person. Every read and write is scoped to this subject.
    subject_upn: str = "me"
    owner_upn: str = "me"
    # Stand-ins until a real auth layer provides the viewer.
    dev_viewer_upn: str = "unknown"
    dev_viewer_role: str | None = None
    trust_viewer_header: bool = False
    redacted_fallback_label: str = DEFAULT_REDACTED_LABEL
    viewer_host: str = "127.0.0.1"
    viewer_port: int = 38890
    events_default_limit: int = 50
    local_state_path: str = "~/.config/nowdoing/local_state.json"


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> NowdoingConfig:
    cfg = NowdoingConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg


def _apply_dict(cfg: NowdoingConfig, data: dict[str, Any]) -> NowdoingConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if value is None and key != "dev_viewer_role":
            continue
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: NowdoingConfig) -> NowdoingConfig:
    cfg.db_path = os.getenv("NOWDOING_DB", cfg.db_path)
    cfg.subject_upn = os.getenv("NOWDOING_SUBJECT_UPN", cfg.subject_upn)
    cfg.owner_upn = os.getenv("NOWDOING_OWNER_UPN", cfg.owner_upn)
    cfg.dev_viewer_upn = os.getenv("NOWDOING_DEV_VIEWER_UPN", cfg.dev_viewer_upn)
    cfg.dev_viewer_role = os.getenv("NOWDOING_DEV_VIEWER_ROLE", cfg.dev_viewer_role)
    cfg.trust_viewer_header = _parse_bool(
        os.getenv("NOWDOING_TRUST_VIEWER_HEADER"), cfg.trust_viewer_header
    )
    cfg.redacted_fallback_label = os.getenv(
        "NOWDOING_REDACTED_LABEL", cfg.redacted_fallback_label
    )
    cfg.viewer_host = os.getenv("NOWDOING_VIEWER_HOST", cfg.viewer_host)
    cfg.viewer_port = _parse_int(
        os.getenv("NOWDOING_VIEWER_PORT"), cfg.viewer_port, key="viewer_port"
    )
    cfg.events_default_limit = _parse_int(
        os.getenv("NOWDOING_EVENTS_LIMIT"),
        cfg.events_default_limit,
        key="events_default_limit",
    )
    cfg.local_state_path = os.getenv("NOWDOING_LOCAL_STATE", cfg.local_state_path)
    return cfg
