from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .config import NowdoingConfig

ViewerRole = Literal["BASIC", "MANAGER", "OWNER"]
VIEWER_HEADER = "X-Viewer-Upn"


@dataclass(frozen=True)
class ViewerContext:
    """Who is asking, about whom, and with what role.

    Built once at the request boundary (HTTP handler or CLI) and passed
    into every service call.
    """

    subject: str
    viewer: str
    role: ViewerRole

    @property
    def is_owner(self) -> bool:
        return self.role == "OWNER"


def resolve_role(viewer: str, cfg: NowdoingConfig) -> ViewerRole:
    if viewer.strip().lower() == cfg.owner_upn.strip().lower():
        return "OWNER"
    if (cfg.dev_viewer_role or "").strip().upper() == "MANAGER":
        return "MANAGER"
    return "BASIC"


def resolve_context(cfg: NowdoingConfig, viewer: str | None = None) -> ViewerContext:
    resolved_viewer = (viewer or "").strip() or cfg.dev_viewer_upn
    return ViewerContext(
        subject=cfg.subject_upn,
        viewer=resolved_viewer,
        role=resolve_role(resolved_viewer, cfg),
    )
