"""Tests for the error payloads rendered by the API."""

from scheduled_matching.errors import (
    AlreadyRunningError,
    InvalidStateError,
    NotFoundError,
    ValidationBlockedError,
    ValidationError,
)


def test_plain_error_has_no_context():
    assert ValidationError("batch_size must be an integer").to_dict() == {
        "error": "VALIDATION_ERROR",
        "message": "batch_size must be an integer",
    }


def test_already_running_carries_batch_id():
    error = AlreadyRunningError("KR", "b-1")
    assert error.status_code == 409
    assert error.to_dict()["context"] == {"country": "KR", "batchId": "b-1"}
    assert AlreadyRunningError("KR").context == {"country": "KR"}


def test_blocked_reasons_are_listed():
    error = ValidationBlockedError(["u1 already matched today", "u2 is not active"])
    assert error.status_code == 422
    assert error.blocked_reasons == ["u1 already matched today", "u2 is not active"]
    assert error.to_dict()["context"] == {"blockedReasons": error.blocked_reasons}
    assert "u2 is not active" in error.message


def test_state_and_lookup_errors():
    assert NotFoundError("batch", "b-9").status_code == 404
    state = InvalidStateError("manual matching", "m-1", "completed", "cancel")
    assert state.message == "Cannot cancel manual matching m-1 in status 'completed'"
    assert state.context["status"] == "completed"
