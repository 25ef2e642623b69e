# nanochat/observability/middleware.py
from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from nanochat.observability.context import request_id_ctx
from nanochat.observability.metrics import observe_ms

logger = logging.getLogger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_ctx.set(rid)
        started = time.perf_counter()
        logger.info(f"{request.method} {request.url.path}")
        try:
            response = await call_next(request)
            elapsed = (time.perf_counter() - started) * 1000.0
            observe_ms("local_api_request_ms", elapsed, method=request.method)
            logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed:.1f} ms)")
            response.headers["x-request-id"] = rid
            return response
        finally:
            request_id_ctx.reset(token)
