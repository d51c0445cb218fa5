"""
Correlation ID generation and context management.

Every moderation request and every background detection job runs under a
short correlation ID so log lines, Sentry events and surfaced errors can be
tied back to the same unit of work.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

# Context variable for request/job-scoped correlation ID
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id() -> str:
    """
    Generate a short, unique correlation ID.

    Returns:
        8-character hexadecimal string.
    """
    return uuid.uuid4().hex[:8]


def get_correlation_id() -> str:
    """
    Get the correlation ID of the current context.

    Returns:
        The correlation ID, or empty string if not set.
    """
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """
    Set correlation ID for the current context.

    Args:
        correlation_id: The correlation ID to set.
    """
    correlation_id_var.set(correlation_id)


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """
    Run a block under its own correlation ID and restore the previous one.

    Used by background detection jobs, which do not inherit a request context.

    Args:
        correlation_id: ID to use, generated when omitted.

    Yields:
        The correlation ID active inside the block.
    """
    scoped_id = correlation_id or generate_correlation_id()
    token = correlation_id_var.set(scoped_id)
    try:
        yield scoped_id
    finally:
        correlation_id_var.reset(token)
