"""
Observability middleware and utilities.

Provides:
- Correlation ID tracking across requests
- Request/response logging with timing

When correlation IDs are enabled every request gets an ID, taken from the
X-Correlation-ID header or generated, which is stamped on every log record
and echoed back in the response headers.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from stockpilot.core.config import settings

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

logger = logging.getLogger("stockpilot.requests")


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID in context."""
    correlation_id_var.set(correlation_id)


class CorrelationIdFilter(logging.Filter):
    """Attach the current correlation ID to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation IDs to requests.

    Extracts correlation ID from X-Correlation-ID header or generates new one.
    Adds correlation ID to response headers.
    """

    HEADER_NAME = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not settings.correlation_ids_enabled:
            return await call_next(request)

        correlation_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        set_correlation_id(correlation_id)

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log request method, path, status and duration."""

    EXCLUDED_PATHS = {"/health", "/health/ready", "/favicon.ico"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.time()
        correlation_id = get_correlation_id() or "no-correlation-id"

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"[{correlation_id}] {request.method} {request.url.path} "
                f"failed after {duration_ms:.2f}ms: {e}",
                exc_info=True,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(
            log_level,
            f"[{correlation_id}] {request.method} {request.url.path} "
            f"completed {response.status_code} in {duration_ms:.2f}ms",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
