"""Structured logging middleware with correlation IDs."""
import structlog
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable
import time

from flagkit.config import get_settings

TRACE_HEADER = "X-Trace-ID"


def configure_logging(debug: bool = False) -> None:
    """Configure structlog for JSON output; DEBUG level when debug is on."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if debug else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False
    )


configure_logging(get_settings().debug)

logger = structlog.get_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation IDs and log all requests.

    Reuses the caller's X-Trace-ID when an SDK sends one, so a decision can
    be followed from the SDK log into ours.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        trace_id = request.headers.get(TRACE_HEADER) or str(uuid.uuid4())
        request.state.trace_id = trace_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(trace_id=trace_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int((time.perf_counter() - start_time) * 1000)
            )
            raise

        logger.info(
            "request_completed",
            status_code=response.status_code,
            latency_ms=int((time.perf_counter() - start_time) * 1000)
        )
        response.headers[TRACE_HEADER] = trace_id
        return response


def get_logger():
    """Get configured structured logger."""
    return logger
