from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from nanochat.core.exceptions import (
    DecodeError,
    InvalidTransition,
    NetworkError,
    NetworkTimeout,
    NotFound,
    RemoteAPIError,
    StaleReconciliation,
    StoreIOError,
    SyncError,
)

logger = logging.getLogger(__name__)


def _error_payload(*, code: str, message: str, details: Any = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details is not None:
        payload["error"]["details"] = details
    return payload


def _sync_status(exc: SyncError) -> tuple[int, str]:
    if isinstance(exc, NotFound):
        return 404, "not_found"
    if isinstance(exc, DecodeError):
        return 502, "decode_error"
    if isinstance(exc, NetworkTimeout):
        return 504, "network_timeout"
    if isinstance(exc, NetworkError):
        return 503, "network_unavailable"
    if isinstance(exc, RemoteAPIError):
        return 502, "remote_error"
    if isinstance(exc, (StaleReconciliation, InvalidTransition)):
        return 409, "conflict"
    if isinstance(exc, StoreIOError):
        return 500, "store_error"
    return 500, "sync_error"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
        code = f"http_{exc.status_code}"
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(code=code, message=str(exc.detail)),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=_error_payload(
                code="validation_error",
                message="Request validation failed",
                details=exc.errors(),
            ),
        )

    @app.exception_handler(SyncError)
    async def sync_exception_handler(request: Request, exc: SyncError) -> JSONResponse:
        status_code, code = _sync_status(exc)
        details = {k: v for k, v in exc.context().items() if v is not None}
        details["retryable"] = bool(exc.retryable)
        if isinstance(exc, RemoteAPIError):
            details["status_code"] = exc.status_code
        log = logger.error if status_code >= 500 else logger.warning
        log("%s %s -> %s: %s", request.method, request.url.path, code, exc)
        return JSONResponse(
            status_code=status_code,
            content=_error_payload(code=code, message=exc.message, details=details),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error: %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_payload(code="internal_error", message="Internal server error"),
        )
