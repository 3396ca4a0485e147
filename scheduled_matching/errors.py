"""
Error taxonomy for scheduled matching.

Every error carries an operator-facing message; the web layer renders
``to_dict()`` with the class status code.
"""

from typing import Any


class ScheduledMatchingError(Exception):
    """Base exception with structured error info."""

    status_code = 400
    code = "SCHEDULED_MATCHING_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.context:
            result["context"] = self.context
        return result


class ValidationError(ScheduledMatchingError):
    """Malformed or out-of-range input, rejected before any state changes."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(ScheduledMatchingError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}", {"kind": kind, "id": identifier})


class AlreadyRunningError(ScheduledMatchingError):
    status_code = 409
    code = "ALREADY_RUNNING"

    def __init__(self, country: str, batch_id: str | None = None):
        context: dict[str, Any] = {"country": country}
        if batch_id:
            context["batchId"] = batch_id
        super().__init__(f"A matching batch is already running for {country}", context)


class InvalidStateError(ScheduledMatchingError):
    """Illegal state-machine transition. Nothing is mutated."""

    status_code = 409
    code = "INVALID_STATE"

    def __init__(self, kind: str, identifier: str, current: str, action: str):
        super().__init__(
            f"Cannot {action} {kind} {identifier} in status '{current}'",
            {"kind": kind, "id": identifier, "status": current, "action": action},
        )


class ValidationBlockedError(ScheduledMatchingError):
    status_code = 422
    code = "VALIDATION_BLOCKED"

    def __init__(self, blocked_reasons: list[str]):
        self.blocked_reasons = list(blocked_reasons)
        super().__init__(
            "Manual matching blocked: " + ", ".join(self.blocked_reasons),
            {"blockedReasons": self.blocked_reasons},
        )
