"""Request ID logging context for tracing a call across layers.

Every log record carries the ID of the HTTP request that produced it, so a
confirmation can be followed from the endpoint down to the booking store.

Usage:
    from infrastructure.logging_context import set_request_id

    set_request_id("req-abc123")
    logger.info("Confirming estimate")  # → [req-abc123] Confirming estimate
"""

import logging
from contextvars import ContextVar

_request_id: ContextVar[str] = ContextVar("request_id", default="-")


def set_request_id(request_id: str) -> None:
    """Set the correlation ID for the current async context."""
    _request_id.set(request_id)


def get_request_id() -> str:
    """Retrieve the current correlation ID."""
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """Injects request_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()  # type: ignore[attr-defined]
        return True
