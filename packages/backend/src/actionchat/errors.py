"""Error taxonomy and the handlers that render it.

Every error leaves the API as ``{"error": str, "details"?: any}``:

- Unauthenticated   401  no valid principal
- Forbidden         403  authenticated, but role/membership insufficient
- NotFound          404  absent, or invisible under org scoping
- ValidationFailed  400  missing, malformed, or out-of-range input
- Conflict          409  uniqueness violation
- UpstreamFailure   500  store error; detail is logged, never returned

Permission and validation errors are raised before any mutation. Store
errors propagate to the app boundary, get logged with request context,
and are answered with a generic 500, as is any exception nothing else
claims. Nothing is retried.
"""

from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger()


class ApiError(Exception):
    """Base for every error the API renders on purpose."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_body(self) -> dict:
        body: dict = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthenticated(ApiError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class ValidationFailed(ApiError):
    status_code = 400
    default_message = "Validation failed"


class Conflict(ApiError):
    status_code = 409
    default_message = "Conflict"


class UpstreamFailure(ApiError):
    status_code = 500
    default_message = "Internal server error"


# ─── Handlers ────────────────────────────────────────────


async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
    if isinstance(exc, UpstreamFailure):
        logger.error(
            "request.upstream_failure",
            method=request.method,
            path=request.url.path,
            error=exc.message,
        )
        return JSONResponse(
            status_code=500, content={"error": UpstreamFailure.default_message}
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def _request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(loc) for loc in err["loc"] if loc != "body"),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": details},
    )


async def _store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "request.store_error",
        method=request.method,
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    # Starlette re-raises after this response is sent, so the server log
    # keeps the traceback as well.
    logger.error(
        "request.unhandled_error",
        method=request.method,
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def install_error_handlers(app: FastAPI) -> None:
    """Register the handlers that turn exceptions into ``{error, details}``."""
    app.add_exception_handler(ApiError, _api_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _request_validation)
    app.add_exception_handler(SQLAlchemyError, _store_error)
    app.add_exception_handler(Exception, _unhandled)
