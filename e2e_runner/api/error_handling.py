"""
Centralized API error handling.

Every error leaves the API as ``{"ok": false, "message": ...}`` so the
dashboard can show ``message`` verbatim. Domain exceptions raised by the core
map to 4xx; anything unexpected is logged with its traceback and becomes a 500.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from e2e_runner.config import settings
from e2e_runner.core.credentials import RelayConflictError, RelayNotFoundError
from e2e_runner.core.run_state import RunnerConflictError
from e2e_runner.core.selection import InvalidSelectionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApiError:
    status_code: int
    message: str


def _maybe_debug(exc: BaseException) -> str | None:
    if settings.APP_DEBUG:
        return str(exc)
    return None


def error_response(
    status_code: int, message: str, **extra: Any
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"ok": False, "message": message, **extra}
    )


def classify_error(exc: BaseException) -> ApiError | None:
    """Map domain exceptions to HTTP status codes."""
    if isinstance(exc, (RunnerConflictError, RelayConflictError)):
        return ApiError(status.HTTP_409_CONFLICT, str(exc))
    if isinstance(exc, RelayNotFoundError):
        return ApiError(status.HTTP_404_NOT_FOUND, str(exc))
    if isinstance(exc, InvalidSelectionError):
        return ApiError(status.HTTP_400_BAD_REQUEST, str(exc))
    return None


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if any(err.get("type") == "json_invalid" for err in errors):
        return "Invalid JSON body"
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "Invalid request"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def _on_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return error_response(status.HTTP_400_BAD_REQUEST, _validation_message(exc))

    @app.exception_handler(StarletteHTTPException)
    async def _on_http_error(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return error_response(exc.status_code, "Not found")
        return error_response(exc.status_code, str(exc.detail))

    async def _on_domain_error(request: Request, exc: Exception) -> JSONResponse:
        classified = classify_error(exc)
        if classified is None:
            return await _on_unexpected_error(request, exc)
        return error_response(classified.status_code, classified.message)

    for exc_type in (
        RunnerConflictError,
        RelayConflictError,
        RelayNotFoundError,
        InvalidSelectionError,
    ):
        app.add_exception_handler(exc_type, _on_domain_error)

    @app.exception_handler(Exception)
    async def _on_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "API error during '%s %s': %s\n%s",
            request.method,
            request.url.path,
            exc,
            "".join(traceback.format_exception(exc)),
        )
        detail: dict[str, Any] = {}
        dbg = _maybe_debug(exc)
        if dbg:
            detail["debug"] = dbg
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"{request.method} {request.url.path} failed.",
            **detail,
        )
