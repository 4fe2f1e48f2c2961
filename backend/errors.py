# errors.py — Application error taxonomy
# Every error carries a stable machine-readable code, a human message and
# optional structured details. main.py renders them as
# {"error": {"code", "message", "details"}, "request_id"}.
from typing import Any, Optional


class AppError(Exception):
    status_code = 500
    code = "SERVER_INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Any] = None,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    code = "AUTH_INVALID_TOKEN"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class AuthorizationError(AppError):
    status_code = 403
    code = "PERMISSION_DENIED"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(AppError):
    """Raised for missing, soft-deleted and foreign-organisation entities alike."""

    status_code = 404

    def __init__(self, resource: str):
        super().__init__(
            f"{resource} not found",
            code="NOT_FOUND_" + resource.upper().replace(" ", "_"),
        )
        self.resource = resource


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT_RESOURCE_EXISTS"


class VersionConflictError(ConflictError):
    code = "CONFLICT_VERSION_MISMATCH"

    def __init__(self, field: str, expected_version: int):
        super().__init__(
            f"{field} was modified concurrently; re-read and retry",
            {"field": field, "expected_version": expected_version},
        )


class InvalidStateError(AppError):
    status_code = 400
    code = "INVALID_STATE"


class FileSizeError(AppError):
    status_code = 400
    code = "FILE_SIZE_EXCEEDED"


class RecordLimitError(AppError):
    status_code = 400
    code = "RECORD_LIMIT_EXCEEDED"


class InviteTokenError(AppError):
    status_code = 400
    code = "INVALID_INVITE_TOKEN"


class CascadeDeleteError(AppError):
    """A soft-delete cascade failed and was rolled back as a whole."""

    status_code = 500
    code = "CASCADE_DELETE_FAILED"

    def __init__(self, entity: str, step: str):
        super().__init__(
            f"Deleting {entity} failed while soft-deleting {step}; no changes were applied",
            {"entity": entity, "step": step},
        )
        self.step = step
