from __future__ import annotations

from dataclasses import dataclass
from typing import Any

TASK_STATUSES = ("NOT_STARTED", "IN_PROGRESS", "ON_HOLD", "COMPLETED")
DEFAULT_STATUS = "IN_PROGRESS"
VISIBILITY_PUBLIC = "PUBLIC"
VISIBILITY_REDACTED = "REDACTED"

# Fields an active record copies from the open event it mirrors.
MIRRORED_FIELDS = (
    "title",
    "category",
    "status",
    "project",
    "notes",
    "reference_id",
    "visibility",
    "redacted_label",
)


@dataclass
class ActivityEvent:
    id: str
    subject_upn: str
    title: str
    category: str
    status: str
    project: str | None
    notes: str | None
    reference_id: str | None
    started_at: str
    ended_at: str | None
    visibility: str = VISIBILITY_PUBLIC
    redacted_label: str | None = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userUpn": self.subject_upn,
            "title": self.title,
            "category": self.category,
            "type": self.category,
            "status": self.status,
            "project": self.project,
            "notes": self.notes,
            "referenceId": self.reference_id,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "visibility": self.visibility,
            "redactedLabel": self.redacted_label,
        }


@dataclass
class ActiveRecord:
    id: str
    subject_upn: str
    title: str
    category: str
    status: str
    project: str | None
    notes: str | None
    reference_id: str | None
    started_at: str
    last_heartbeat_at: str
    visibility: str = VISIBILITY_PUBLIC
    redacted_label: str | None = None

    @classmethod
    def mirror(cls, event: ActivityEvent, *, heartbeat_at: str) -> ActiveRecord:
        fields = {name: getattr(event, name) for name in MIRRORED_FIELDS}
        return cls(
            id=active_record_id(event.subject_upn),
            subject_upn=event.subject_upn,
            started_at=event.started_at,
            last_heartbeat_at=heartbeat_at,
            **fields,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userUpn": self.subject_upn,
            "title": self.title,
            "category": self.category,
            "type": self.category,
            "status": self.status,
            "project": self.project,
            "notes": self.notes,
            "referenceId": self.reference_id,
            "startedAt": self.started_at,
            "lastHeartbeatAt": self.last_heartbeat_at,
            "visibility": self.visibility,
            "redactedLabel": self.redacted_label,
        }


def active_record_id(subject_upn: str) -> str:
    return f"{subject_upn}:active"
