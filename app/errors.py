from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class WorkflowError(ApiError):
    """Base for workflow failures; subclasses pin the HTTP status and code."""

    status_code_default = 400
    code_default = "WORKFLOW_ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(
            status_code=self.status_code_default,
            code=code or self.code_default,
            message=message,
        )


class ValidationError(WorkflowError):
    status_code_default = 422
    code_default = "VALIDATION_ERROR"


class AuthorizationError(WorkflowError):
    status_code_default = 403
    code_default = "FORBIDDEN"


class StateError(WorkflowError):
    status_code_default = 409
    code_default = "INVALID_STATE"


class DuplicateError(StateError):
    code_default = "ALREADY_CHECKED_IN"


class NotFoundError(StateError):
    status_code_default = 404
    code_default = "NOT_FOUND"


class LocationError(WorkflowError):
    status_code_default = 422
    code_default = "LOCATION_INVALID"


class ScheduleError(WorkflowError):
    status_code_default = 422
    code_default = "OUTSIDE_SCHEDULE"


class PersistenceError(WorkflowError):
    status_code_default = 503
    code_default = "PERSISTENCE_ERROR"


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
