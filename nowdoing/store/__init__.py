from __future__ import annotations

from ._store import ActivityStore
from .types import ActiveRecord, ActivityEvent

__all__ = [
    "ActiveRecord",
    "ActivityEvent",
    "ActivityStore",
]
