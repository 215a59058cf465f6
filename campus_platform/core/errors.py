import logging
import traceback

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from campus_platform import config

logger = logging.getLogger(__name__)


class AppError(HTTPException):
    """
    Base class for every failure a service raises on purpose.

    Extra keyword arguments are merged into the JSON error body, e.g.
    ``InvalidStateError("...", total_time_needed=120, available_time=90)``.
    """
    status_code = 400

    def __init__(self, message: str, **extra):
        super().__init__(status_code=self.status_code, detail=message)
        self.message = message
        self.extra = extra


class ValidationError(AppError):
    status_code = 400


class InvalidStateError(AppError):
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class UpstreamFailure(AppError):
    status_code = 502


def error_body(message: str, extra: dict = None, error: str = None) -> dict:
    body = {"success": False, "message": message}
    if extra:
        body.update(jsonable_encoder(extra))
    if error and config.DEBUG:
        body["error"] = error
    return body


# ==================== HANDLERS ====================

async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed upstream: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.extra, error=type(exc).__name__),
        headers=getattr(exc, "headers", None),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", []) if part != "body"),
            "message": err.get("msg"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_body("Validation failed", {"errors": errors}),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(
            "Something went wrong",
            error="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        ),
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
