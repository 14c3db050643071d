"""Domain error taxonomy shared by services and the HTTP/WebSocket layers.

Every error carries a stable ``kind`` (machine readable) and a ``message``
(human readable). The interface layer maps ``status_code`` onto HTTP
responses and reuses ``kind``/``message`` for WebSocket ``error`` events.
"""

from enum import StrEnum

from pydantic import BaseModel


class ErrorKind(StrEnum):
    """Stable identifiers for error responses."""

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    ALREADY_COMPLETED = "already_completed"
    ALREADY_RESOLVED = "already_resolved"
    VALIDATION_FAILED = "validation_failed"
    MISCONFIGURED_VERIFIER = "misconfigured_verifier"
    MISSING_PROOF = "missing_proof"
    UNAUTHENTICATED = "unauthenticated"
    EXTERNAL_SERVICE = "external_service"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal_error"


class ErrorBody(BaseModel):
    """Serialized error payload."""

    kind: str
    message: str


class ErrorResponse(BaseModel):
    """Envelope returned for every failed request."""

    success: bool = False
    error: ErrorBody


class QuestlineError(Exception):
    """Base class for errors the API reports to clients."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_body(self) -> ErrorBody:
        return ErrorBody(kind=self.kind, message=self.message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.to_body())


class NotFoundError(QuestlineError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    default_message = "Not found"


class PermissionDeniedError(QuestlineError):
    kind = ErrorKind.PERMISSION_DENIED
    status_code = 403
    default_message = "Not authorized"


class AlreadyCompletedError(QuestlineError):
    kind = ErrorKind.ALREADY_COMPLETED
    status_code = 400
    default_message = "Task already completed today"


class AlreadyResolvedError(QuestlineError):
    kind = ErrorKind.ALREADY_RESOLVED
    status_code = 409
    default_message = "Verification entry already resolved"


class ValidationFailedError(QuestlineError):
    kind = ErrorKind.VALIDATION_FAILED
    status_code = 400
    default_message = "Validation failed"


class MisconfiguredVerifierError(QuestlineError):
    kind = ErrorKind.MISCONFIGURED_VERIFIER
    status_code = 400
    default_message = "AI verification not configured"


class MissingProofError(QuestlineError):
    kind = ErrorKind.MISSING_PROOF
    status_code = 400
    default_message = "No proof image provided"


class UnauthenticatedError(QuestlineError):
    kind = ErrorKind.UNAUTHENTICATED
    status_code = 401
    default_message = "Authentication required"


class ExternalServiceError(QuestlineError):
    """Failure talking to a third-party service.

    Never surfaced to clients by the verification flow: the AI path converts
    it into a zero-confidence judgement.
    """

    kind = ErrorKind.EXTERNAL_SERVICE
    status_code = 502
    default_message = "External service failed"
