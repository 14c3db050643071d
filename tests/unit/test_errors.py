"""Tests for the error taxonomy."""

import pytest

from src.core.errors import (
    AlreadyCompletedError,
    AlreadyResolvedError,
    ErrorKind,
    MisconfiguredVerifierError,
    NotFoundError,
    PermissionDeniedError,
    UnauthenticatedError,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("error", "status_code", "kind"),
    [
        (NotFoundError("Task not found"), 404, ErrorKind.NOT_FOUND),
        (PermissionDeniedError(), 403, ErrorKind.PERMISSION_DENIED),
        (AlreadyCompletedError(), 400, ErrorKind.ALREADY_COMPLETED),
        (AlreadyResolvedError(), 409, ErrorKind.ALREADY_RESOLVED),
        (MisconfiguredVerifierError(), 400, ErrorKind.MISCONFIGURED_VERIFIER),
        (UnauthenticatedError(), 401, ErrorKind.UNAUTHENTICATED),
    ],
)
def test_error_status_and_kind(error, status_code, kind):
    assert error.status_code == status_code
    assert error.kind == kind


@pytest.mark.unit
def test_default_and_custom_messages():
    assert AlreadyCompletedError().message == "Task already completed today"
    assert NotFoundError("Task not found").message == "Task not found"
    assert str(MisconfiguredVerifierError()) == "AI verification not configured"


@pytest.mark.unit
def test_to_response_envelope():
    body = PermissionDeniedError("Permission denied").to_response().model_dump()

    assert body == {"success": False, "error": {"kind": "permission_denied", "message": "Permission denied"}}
