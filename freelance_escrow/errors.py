"""Typed service errors and their mapping to HTTP responses.

Services raise these; the single handler registered in ``main`` turns them
into ``{"status": false, "message": ..., "error": code}`` with the mapped
status code. Guard errors are always raised before any gateway call.
"""

from fastapi import Request
from fastapi.responses import JSONResponse


class EscrowError(Exception):
    status_code: int = 500
    code: str = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"status": False, "message": self.message, "error": self.code}


class InvalidArgument(EscrowError):
    status_code = 400
    code = "invalid_argument"


class Conflict(EscrowError):
    """A state guard was violated (already completed, released, escrowed...)."""

    status_code = 400
    code = "conflict"


class FailedPrecondition(EscrowError):
    """A required dependency is missing, e.g. no payout destination on file."""

    status_code = 400
    code = "failed_precondition"


class Forbidden(EscrowError):
    status_code = 403
    code = "forbidden"


class NotFound(EscrowError):
    status_code = 404
    code = "not_found"


class ServiceUnavailable(EscrowError):
    """The payment gateway failed. ``cause`` keeps the gateway's message."""

    status_code = 500
    code = "service_unavailable"

    def __init__(self, message: str, cause: str | None = None) -> None:
        super().__init__(message)
        self.cause = cause

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.cause:
            body["detail"] = self.cause
        return body


async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
