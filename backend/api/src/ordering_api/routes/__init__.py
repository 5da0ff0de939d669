"""API route modules."""

from . import health, orders, payment_configs, payments, webhooks

__all__ = ["health", "orders", "payment_configs", "payments", "webhooks"]
