"""
Logging filters for structured log output.

Provides correlation ID tracking across scheduled cycles, batch runs and
flows. The ID lives in a context variable so every asyncio task spawned
from a cycle inherits it.
"""
import contextvars
import logging
import uuid

_correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Get the current correlation ID (empty string if not set)."""
    return _correlation_id.get()


def set_correlation_id(cid: str) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id.set(cid)


def new_correlation_id(prefix: str = "") -> str:
    """Start a fresh correlation ID for a cycle or batch and return it."""
    cid = f"{prefix}-{uuid.uuid4().hex[:8]}" if prefix else uuid.uuid4().hex[:8]
    set_correlation_id(cid)
    return cid


class CorrelationIdFilter(logging.Filter):
    """Attach correlation_id to every log record."""

    def filter(self, record):
        record.correlation_id = get_correlation_id()
        return True
