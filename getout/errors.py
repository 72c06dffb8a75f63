"""Domain exceptions and their HTTP mapping."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class GetOutError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFoundError(GetOutError):
    status_code = 404


class ForbiddenError(GetOutError):
    status_code = 403


class ValidationError(GetOutError):
    status_code = 400


class UnsupportedActivityError(ValidationError):
    """Activity is not a run."""


class MissingRouteError(ValidationError):
    """Activity carries no GPS polyline."""


class StravaAPIError(GetOutError):
    status_code = 502

    def __init__(self, detail: str, upstream_status: int | None = None) -> None:
        super().__init__(detail)
        self.upstream_status = upstream_status


def setup_error_handlers(app: FastAPI) -> None:
    """Register JSON handlers for domain errors and unexpected exceptions."""

    @app.exception_handler(GetOutError)
    async def domain_error_handler(request: Request, exc: GetOutError) -> JSONResponse:
        logger.info(
            "request_rejected",
            path=request.url.path,
            status=exc.status_code,
            error=exc.detail,
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


__all__ = [
    "ForbiddenError",
    "GetOutError",
    "MissingRouteError",
    "NotFoundError",
    "StravaAPIError",
    "UnsupportedActivityError",
    "ValidationError",
    "setup_error_handlers",
]
