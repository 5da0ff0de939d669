"""Retention jobs for the idempotency cache and webhook ledger.

run_retention_sweep() is called periodically by the API lifespan task; the
Lambda handlers below run the same work from a scheduled trigger when the
API is deployed behind Mangum (where no background task survives).
"""

from typing import Any

from ordering.utils.logging import get_logger
from ordering_api.dependencies import get_idempotency_cache, get_webhook_ledger

logger = get_logger(__name__)


def purge_idempotency_keys() -> int:
    """Evict expired idempotency records."""
    return get_idempotency_cache().purge_expired()


def purge_webhook_ledger() -> int:
    """Delete settled ledger rows older than the retention window."""
    return get_webhook_ledger().purge_expired()


def run_retention_sweep() -> dict[str, int]:
    """Run both purges and report how many rows each removed."""
    result = {
        "idempotency_keys": purge_idempotency_keys(),
        "webhook_events": purge_webhook_ledger(),
    }
    logger.info(
        "Retention sweep removed %d idempotency keys and %d webhook events",
        result["idempotency_keys"],
        result["webhook_events"],
    )
    return result


def purge_idempotency_keys_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Lambda entry point for the scheduled idempotency purge."""
    return {"purged": purge_idempotency_keys()}


def purge_webhook_ledger_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Lambda entry point for the scheduled webhook ledger purge."""
    return {"purged": purge_webhook_ledger()}
