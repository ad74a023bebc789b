"""Structured logging utilities with correlation ID support.

Provides:
- Correlation ID context management for request tracing
- Structured logging formatter for consistent log output
- Helper functions for webhook and side-effect logging

Usage:
    from fulfillment.utils.logging import get_logger, set_correlation_id

    # In middleware/request handler:
    set_correlation_id(request.headers.get("X-Correlation-ID"))

    # In service code:
    logger = get_logger(__name__)
    logger.info("Promoting booking", extra={"natural_key": "booking-123"})
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

# Context variable for correlation ID - thread-safe and async-safe
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_correlation_id() -> str:
    """Generate a new correlation ID.

    Returns:
        UUID-based correlation ID string
    """
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current request context.

    Args:
        correlation_id: Optional existing correlation ID. If None, generates new one.

    Returns:
        The correlation ID that was set
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    """Get the current correlation ID.

    Returns:
        Current correlation ID or None if not set
    """
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation_id to the log record.

        Args:
            record: Log record to modify

        Returns:
            True (always allows the record through)
        """
        record.correlation_id = get_correlation_id() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter for structured log output with correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with structured fields.

        Args:
            record: Log record to format

        Returns:
            Formatted log string
        """
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "no-correlation-id"

        base = super().format(record)

        # Prefix for easy grep/filtering
        return f"[{record.correlation_id}] {base}"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install the structured formatter on the root logger.

    Args:
        level: Root log level
    """
    root = logging.getLogger()
    root.setLevel(level)
    if not any(isinstance(h.formatter, StructuredFormatter) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(
            StructuredFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handler.addFilter(CorrelationIdFilter())
        root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())

    return logger


def log_webhook_event(
    logger: logging.Logger,
    event_type: str,
    reference: str | None,
    *,
    payment_type: str | None = None,
    natural_key: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a webhook delivery with structured context.

    Args:
        logger: Logger instance
        event_type: Gateway event type (e.g., "charge.success")
        reference: Gateway transaction reference
        payment_type: payment_type tag if known
        natural_key: Natural key the delivery resolved to
        result: Processing result (success, replay, skipped, unknown_type, error)
        error: Error message if processing failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "event_type": event_type,
        "reference": reference,
    }

    if payment_type:
        context["payment_type"] = payment_type
    if natural_key:
        context["natural_key"] = natural_key
    if result:
        context["result"] = result
    if error:
        context["error"] = error

    context.update(extra)

    msg_parts = [f"Webhook event: {event_type} ({reference or 'no-reference'})"]
    if result:
        msg_parts.append(f"result={result}")
    if payment_type:
        msg_parts.append(f"payment_type={payment_type}")
    if natural_key:
        msg_parts.append(f"natural_key={natural_key}")
    if error:
        msg_parts.append(f"error={error}")

    message = " | ".join(msg_parts)

    if result == "error":
        logger.error(message, extra=context)
    elif result in ("skipped", "unknown_type"):
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_side_effect(
    logger: logging.Logger,
    step: str,
    *,
    natural_key: str | None,
    reference: str | None,
    payment_type: str | None = None,
    error: BaseException | None = None,
    **extra: Any,
) -> None:
    """Log the outcome of a best-effort side effect.

    Failures are logged at ERROR with traceback and everything needed to
    redo the step by hand.

    Args:
        logger: Logger instance
        step: Side-effect name (e.g., "send_confirmation_email")
        natural_key: Natural key of the confirmed record
        reference: Gateway transaction reference
        payment_type: payment_type tag
        error: Exception raised by the step, None on success
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "side_effect": step,
        "natural_key": natural_key,
        "reference": reference,
        "payment_type": payment_type,
    }
    context.update(extra)

    msg_parts = [f"Side effect: {step}", f"natural_key={natural_key}", f"reference={reference}"]
    if payment_type:
        msg_parts.append(f"payment_type={payment_type}")

    if error is not None:
        context["error"] = repr(error)
        msg_parts.append(f"error={error!r}")
        logger.error(
            " | ".join(msg_parts),
            extra=context,
            exc_info=(type(error), error, error.__traceback__),
        )
    else:
        msg_parts.append("result=ok")
        logger.info(" | ".join(msg_parts), extra=context)
