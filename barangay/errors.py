"""Workflow error taxonomy and its HTTP rendering."""
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class WorkflowError(Exception):
    """
    Base class for every refusal the workflow core reports.

    Each subclass carries a stable ``code`` and structured ``details`` so a
    client can render a specific message instead of a generic failure.
    """
    code = "workflow_error"
    status_code = 400

    def __init__(self, message: str, **details):
        self.message = message
        self.details = details
        super().__init__(self.message)


class ValidationError(WorkflowError):
    """Malformed or incomplete input, refused before any state write."""
    code = "validation_error"
    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(message, field=field)
        self.field = field


class TransitionError(WorkflowError):
    """A requested state change that cannot be committed."""


class IllegalTransition(TransitionError):
    """The requested pair is not in the legal transition table."""
    code = "illegal_transition"
    status_code = 409

    def __init__(self, current, requested, reason: str = None):
        current_value = getattr(current, "value", current)
        requested_value = getattr(requested, "value", requested)
        message = f"Illegal transition from {current_value} to {requested_value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, current=current_value, requested=requested_value)
        self.current = current_value
        self.requested = requested_value


class StaleState(TransitionError):
    """
    The record changed between read and write; another actor won the race.

    Never retried automatically: reload and let the user decide again.
    """
    code = "stale_state"
    status_code = 409

    def __init__(self, kind, record_id, expected, requested):
        expected_value = getattr(expected, "value", expected)
        requested_value = getattr(requested, "value", requested)
        super().__init__(
            f"{getattr(kind, 'value', kind)} #{record_id} is no longer {expected_value}; reload and retry",
            expected=expected_value,
            requested=requested_value,
        )
        self.expected = expected_value
        self.requested = requested_value


class DuplicateAllocation(WorkflowError):
    """A certificate number collided with an existing allocation."""
    code = "duplicate_allocation"
    status_code = 409

    def __init__(self, certificate_number: str):
        super().__init__(
            f"Certificate number {certificate_number} is already allocated",
            certificate_number=certificate_number,
        )
        self.certificate_number = certificate_number


class AlreadyInvalid(WorkflowError):
    """Revocation was requested for a certificate that is already revoked."""
    code = "already_invalid"
    status_code = 409

    def __init__(self, certificate_number: str):
        super().__init__(
            f"Certificate {certificate_number} is already invalid",
            certificate_number=certificate_number,
        )
        self.certificate_number = certificate_number


class RecordNotFound(WorkflowError):
    code = "not_found"
    status_code = 404

    def __init__(self, kind: str, record_id):
        super().__init__(f"{kind} {record_id} not found", kind=kind, id=record_id)


class PermissionDenied(WorkflowError):
    code = "permission_denied"
    status_code = 403

    def __init__(self, operation: str, role):
        role_value = getattr(role, "value", role)
        super().__init__(
            f"Role {role_value} may not {operation}",
            operation=operation,
            role=role_value,
        )


def _error_payload(code: str, message: str, details):
    return {"code": code, "message": message, "details": details}


def register_error_handlers(app) -> None:
    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.code, exc.message, exc.details),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(code, message, details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        # ctx may hold raw exception objects that are not JSON serialisable
        errors = [
            {k: str(v) if k == "ctx" else v for k, v in err.items()}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=_error_payload("validation_error", "Validation error", errors),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=500,
            content=_error_payload("internal_error", "Internal server error", None),
        )
