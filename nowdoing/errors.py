from __future__ import annotations


class ActivityError(Exception):
    """Base for failures surfaced to callers of the activity service."""

    status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ActivityError):
    status = 400


class AuthorizationError(ActivityError):
    status = 403

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class NotFoundError(ActivityError):
    status = 404
