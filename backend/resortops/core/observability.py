"""
Observability middleware and utilities.

Provides:
- Correlation ID tracking across requests
- Request/response logging

When CORRELATION_IDS_ENABLED is active every request gets a correlation ID,
echoed back in the X-Correlation-ID response header and prefixed to the
request log lines.
"""

import time
import uuid
import logging
from typing import Callable, Optional
from contextvars import ContextVar

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from resortops.core.feature_flags import is_enabled


correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

request_logger = logging.getLogger("requests")


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Extracts the correlation ID from the X-Correlation-ID header or generates
    a new one, and adds it to the response headers.
    """

    HEADER_NAME = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not is_enabled("CORRELATION_IDS_ENABLED"):
            return await call_next(request)

        correlation_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        response.headers[self.HEADER_NAME] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs request details, timing, and response status."""

    EXCLUDED_PATHS = {"/", "/health", "/metrics", "/docs", "/openapi.json", "/favicon.ico"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.time()
        correlation_id = get_correlation_id() or "-"
        client_ip = request.client.host if request.client else "unknown"

        request_logger.info(
            f"[{correlation_id}] Request: {request.method} {request.url.path} - Client: {client_ip}"
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            request_logger.error(
                f"[{correlation_id}] Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {duration_ms:.2f}ms - Client: {client_ip}"
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"[{correlation_id}] Response: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {duration_ms:.2f}ms - Client: {client_ip}"
        )
        return response
