"""Correlation ID logging context for tracing a checkout across modules.

Provides a checkout_id-aware logger that attaches a correlation ID to
every log message, so one customer's booking attempt can be followed
from validation through payment confirmation.

Usage:
    from sanaalink.logging_context import get_checkout_logger, set_checkout_id

    set_checkout_id("CHK-abc123")
    logger = get_checkout_logger(__name__)
    logger.info("Creating booking")  # record.checkout_id == "CHK-abc123"
"""

import logging
import uuid
from contextvars import ContextVar

_checkout_id: ContextVar[str] = ContextVar("checkout_id", default="NO_CHECKOUT_ID")


def set_checkout_id(checkout_id: str) -> None:
    """Set the correlation ID for the current async context."""
    _checkout_id.set(checkout_id)


def get_checkout_id() -> str:
    """Retrieve the current correlation ID."""
    return _checkout_id.get()


def new_checkout_id() -> str:
    """Generate and set a fresh correlation ID, returning it."""
    checkout_id = f"CHK-{uuid.uuid4().hex[:8]}"
    set_checkout_id(checkout_id)
    return checkout_id


class CheckoutIdFilter(logging.Filter):
    """Injects checkout_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.checkout_id = _checkout_id.get()  # type: ignore[attr-defined]
        return True


def get_checkout_logger(name: str) -> logging.Logger:
    """Return a logger with the CheckoutIdFilter attached.

    The filter adds ``checkout_id`` to each record so formatters can
    include ``%(checkout_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, CheckoutIdFilter) for f in logger.filters):
        logger.addFilter(CheckoutIdFilter())
    return logger
