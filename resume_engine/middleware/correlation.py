"""
Correlation ID middleware for request tracing.

Accepts X-Correlation-ID from the client or generates a UUID4, keeps it in a
context variable for the rest of the request and stamps it on every log record
emitted while the request runs.
"""
import contextvars
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from resume_engine.utils.logger import logger

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="")
request_user_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_user_id", default="")


def get_correlation_id() -> str:
    return correlation_id_var.get("")


class CorrelationFilter(logging.Filter):
    """Copy the request's correlation and user ids onto log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = correlation_id_var.get("")
        if not getattr(record, "user_id", None):
            record.user_id = request_user_id_var.get("")
        return True


def install_log_filter(target: logging.Logger = logger) -> None:
    for handler in target.handlers:
        if not any(isinstance(f, CorrelationFilter) for f in handler.filters):
            handler.addFilter(CorrelationFilter())


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        correlation_id_var.set(cid)
        user_id = request.headers.get("x-user-id", "")
        request_user_id_var.set(user_id)

        start = time.monotonic()
        method = request.method
        path = request.url.path

        logger.info(
            "request.started",
            extra={
                "method": method,
                "path": path,
                "client_ip": request.client.host if request.client else "",
            },
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request.failed",
                extra={
                    "method": method,
                    "path": path,
                    "duration_ms": round((time.monotonic() - start) * 1000),
                    "error": str(exc)[:500],
                    "error_type": type(exc).__name__,
                },
            )
            raise

        status = response.status_code
        log_fn = logger.warning if status >= 400 else logger.info
        log_fn(
            "request.completed",
            extra={
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round((time.monotonic() - start) * 1000),
            },
        )

        response.headers["X-Correlation-ID"] = cid
        return response
