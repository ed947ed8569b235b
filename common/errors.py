"""Domain error taxonomy and the FastAPI handlers that render it."""
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    """Base class for rejected operations. ``kind`` is the machine-readable error code."""

    kind = "service_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Malformed input: out-of-range score, over-length text, empty required field."""

    kind = "validation_error"
    status_code = 422


class ConflictError(ServiceError):
    """The operation contradicts current state (duplicate review, illegal transition)."""

    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class AuthorizationError(ServiceError):
    kind = "authorization_error"
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ServiceError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


def service_error_handler(_: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "kind": exc.kind})


def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"detail": jsonable_encoder(exc.errors()), "kind": ValidationError.kind},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Attach the domain error handlers to an app."""

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
