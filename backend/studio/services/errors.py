from __future__ import annotations

from typing import Literal

AccessDeniedReason = Literal["expired", "not_approved", "not_deliverable"]


class StudioError(Exception):
    """Base class for domain errors surfaced verbatim to API callers."""

    code = "error"
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(StudioError):
    code = "validation_error"
    status_code = 400


class InvalidTransition(StudioError):
    code = "invalid_transition"
    status_code = 409


class NotFound(StudioError):
    code = "not_found"
    status_code = 404


class AccessDenied(StudioError):
    code = "access_denied"
    status_code = 403

    def __init__(self, reason: AccessDeniedReason, detail: str | None = None) -> None:
        super().__init__(detail or _ACCESS_DENIED_MESSAGES[reason])
        self.reason: AccessDeniedReason = reason


_ACCESS_DENIED_MESSAGES: dict[str, str] = {
    "expired": "This delivery link has expired",
    "not_approved": "This deliverable has not been approved yet",
    "not_deliverable": "This file is not available to clients",
}
