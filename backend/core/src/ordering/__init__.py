"""Order lifecycle, payment reconciliation and idempotency core for restaurant tenants."""

__version__ = "0.1.0"
