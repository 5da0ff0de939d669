"""Structured logging utilities with correlation ID support.

Provides:
- Correlation ID context management for request tracing
- Structured logging formatter for consistent log output
- Helpers for order transitions, payment operations and webhook events
- Secret redaction for anything credential-shaped that reaches a log line

Usage:
    from ordering.utils.logging import get_logger, set_correlation_id

    # In middleware/request handler:
    set_correlation_id(request.headers.get("X-Correlation-ID"))

    # In service code:
    logger = get_logger(__name__)
    logger.info("Order created", extra={"order_id": "ORD-123"})
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

# Context variable for correlation ID - thread-safe and async-safe
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
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
    """Get the current correlation ID."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


def redact_secret(value: str | None, visible_chars: int = 4) -> str:
    """Redact a credential for logging, keeping a short prefix and suffix.

    Args:
        value: Secret value (may be None)
        visible_chars: Characters to keep on each side

    Returns:
        ``abcd...wxyz`` style string, or ``***`` for short/empty values
    """
    if not value or len(value) <= visible_chars * 2:
        return "***"
    return f"{value[:visible_chars]}...{value[-visible_chars:]}"


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter for structured log output with correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "no-correlation-id"

        base = super().format(record)

        # Correlation ID prefix for easy grep/filtering
        return f"[{record.correlation_id}] {base}"


def configure_logging(level: int = logging.INFO) -> None:
    """Install the structured formatter on the root logger.

    Safe to call more than once; an existing structured handler is reused.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if isinstance(handler.formatter, StructuredFormatter):
            return

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(LOG_FORMAT))
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


def _format_context(prefix: str, context: dict[str, Any], skip: set[str]) -> str:
    parts = [prefix]
    for key, value in context.items():
        if key not in skip:
            parts.append(f"{key}={value}")
    return " | ".join(parts)


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    tenant_id: str | None = None,
    order_id: str | None = None,
    payment_id: str | None = None,
    provider: str | None = None,
    amount_cents: int | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a payment operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., "create_checkout_session")
        tenant_id: Tenant the payment belongs to
        order_id: Order ID if available
        payment_id: Payment ID if available
        provider: Payment provider name
        amount_cents: Amount in cents if relevant
        status: Payment status
        error: Error message if operation failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"operation": operation}

    if tenant_id:
        context["tenant_id"] = tenant_id
    if order_id:
        context["order_id"] = order_id
    if payment_id:
        context["payment_id"] = payment_id
    if provider:
        context["provider"] = provider
    if amount_cents is not None:
        context["amount_cents"] = amount_cents
    if status:
        context["status"] = status
    if error:
        context["error"] = error

    context.update(extra)

    message = _format_context(f"Payment operation: {operation}", context, {"operation"})

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_order_transition(
    logger: logging.Logger,
    *,
    tenant_id: str,
    order_id: str,
    from_status: str,
    to_status: str,
    actor: str,
    **extra: Any,
) -> None:
    """Log an applied order status transition.

    Args:
        logger: Logger instance
        tenant_id: Tenant owning the order
        order_id: Order ID
        from_status: Status before the write
        to_status: Status after the write
        actor: Who drove the change (staff, customer, webhook)
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "tenant_id": tenant_id,
        "order_id": order_id,
        "from_status": from_status,
        "to_status": to_status,
        "actor": actor,
    }
    context.update(extra)

    logger.info(
        "Order %s: %s -> %s (actor=%s, tenant=%s)",
        order_id,
        from_status,
        to_status,
        actor,
        tenant_id,
        extra=context,
    )


def log_webhook_event(
    logger: logging.Logger,
    event_type: str,
    event_id: str,
    *,
    provider: str | None = None,
    tenant_id: str | None = None,
    order_id: str | None = None,
    payment_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a webhook event with structured context.

    Args:
        logger: Logger instance
        event_type: Provider event type (e.g., "checkout.session.completed")
        event_id: Provider event ID
        provider: Provider name
        tenant_id: Associated tenant if known
        order_id: Associated order ID if known
        payment_id: Associated provider payment ID if known
        result: Processing result (completed, duplicate, ignored, unmatched, error, ...)
        error: Error message if processing failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "event_type": event_type,
        "event_id": event_id,
    }

    if provider:
        context["provider"] = provider
    if tenant_id:
        context["tenant_id"] = tenant_id
    if order_id:
        context["order_id"] = order_id
    if payment_id:
        context["payment_id"] = payment_id
    if result:
        context["result"] = result
    if error:
        context["error"] = error

    context.update(extra)

    msg_parts = [f"Webhook event: {event_type} ({event_id})"]
    if provider:
        msg_parts.append(f"provider={provider}")
    if result:
        msg_parts.append(f"result={result}")
    if order_id:
        msg_parts.append(f"order={order_id}")
    if error:
        msg_parts.append(f"error={error}")

    message = " | ".join(msg_parts)

    if result in ("error", "failed"):
        logger.error(message, extra=context)
    elif result in ("duplicate", "ignored", "unmatched", "no_config", "verification_failed"):
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)
