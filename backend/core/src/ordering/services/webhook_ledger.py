"""Deduplicated record of inbound provider webhook events.

The table key is ``provider#provider_event_id``, so the key itself is the
dedup mechanism. A delivery takes ownership of an event by a conditional
write that sets PROCESSING with a fresh claim token; the reconciliation
transaction only commits COMPLETED while that token is still current.

Status rules:
- COMPLETED is final and never rewritten
- PROCESSING blocks other deliveries until the claim goes stale
- NO_CONFIG, VERIFICATION_FAILED and FAILED are retried on redelivery
"""

import hashlib
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from boto3.dynamodb.conditions import Attr

from ordering.config import get_settings
from ordering.models.enums import PaymentProvider, WebhookEventStatus
from ordering.models.webhook import WebhookEnvelope, WebhookLedgerEntry
from ordering.services.dynamodb import DynamoDBService, get_dynamodb_service
from ordering.utils.logging import get_logger

logger = get_logger(__name__)

WEBHOOK_EVENTS_TABLE = "webhook-events"

RETRYABLE_STATUSES = (
    WebhookEventStatus.NO_CONFIG,
    WebhookEventStatus.VERIFICATION_FAILED,
    WebhookEventStatus.FAILED,
)

LEDGER_ATTRIBUTE_NAMES = {"#status": "status", "#provider": "provider", "#payload": "payload"}

_RETRYABLE_CONDITION = "#status IN (:no_config, :verification_failed, :failed)"


def ledger_key(provider: PaymentProvider, provider_event_id: str) -> dict[str, str]:
    return {"ledger_key": f"{provider.value}#{provider_event_id}"}


def compute_payload_hash(payload: bytes) -> str:
    """SHA-256 of the raw webhook body, for auditing redeliveries."""
    return hashlib.sha256(payload).hexdigest()


def _retryable_values() -> dict[str, str]:
    return {
        ":no_config": WebhookEventStatus.NO_CONFIG.value,
        ":verification_failed": WebhookEventStatus.VERIFICATION_FAILED.value,
        ":failed": WebhookEventStatus.FAILED.value,
    }


class WebhookLedger:
    """Conditional-write operations over the webhook-events table."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        claim_timeout_seconds: int | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self.claim_timeout_seconds = (
            claim_timeout_seconds or get_settings().webhook_claim_timeout_seconds
        )

    def get(self, provider: PaymentProvider, provider_event_id: str) -> WebhookLedgerEntry | None:
        item = self.db.get_item(
            WEBHOOK_EVENTS_TABLE,
            ledger_key(provider, provider_event_id),
            consistent_read=True,
        )
        if not item:
            return None
        return _item_to_entry(item)

    def is_settled_or_in_flight(self, entry: WebhookLedgerEntry) -> bool:
        """True when a redelivery must not be processed again."""
        if entry.status == WebhookEventStatus.COMPLETED:
            return True
        if entry.status == WebhookEventStatus.PROCESSING:
            return not self._is_stale(entry)
        return False

    def record_rejection(
        self,
        provider: PaymentProvider,
        envelope: WebhookEnvelope,
        raw_body: bytes,
        status: WebhookEventStatus,
        tenant_id: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Record a delivery that was refused before processing.

        Returns:
            False if the event is already COMPLETED or claimed
        """
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {
            ":status": status.value,
            ":event_type": envelope.event_type,
            ":payload": raw_body.decode("utf-8", errors="replace"),
            ":payload_hash": compute_payload_hash(raw_body),
            ":now": now.isoformat(),
            ":zero": 0,
            ":one": 1,
            ":provider": provider.value,
            ":event_id": envelope.provider_event_id,
            ":error": error_message or status.value,
            **_retryable_values(),
        }
        set_parts = [
            "#status = :status",
            "#provider = :provider",
            "provider_event_id = :event_id",
            "event_type = :event_type",
            "#payload = :payload",
            "payload_hash = :payload_hash",
            "error_message = :error",
            "attempts = if_not_exists(attempts, :zero) + :one",
            "created_at = if_not_exists(created_at, :now)",
            "updated_at = :now",
        ]
        if envelope.provider_payment_id:
            set_parts.append("provider_payment_id = :payment_id")
            values[":payment_id"] = envelope.provider_payment_id
        if tenant_id:
            set_parts.append("tenant_id = :tenant_id")
            values[":tenant_id"] = tenant_id

        attrs = self.db.update_item(
            WEBHOOK_EVENTS_TABLE,
            ledger_key(provider, envelope.provider_event_id),
            update_expression="SET " + ", ".join(set_parts),
            expression_attribute_values=values,
            expression_attribute_names=LEDGER_ATTRIBUTE_NAMES,
            condition_expression=f"attribute_not_exists(ledger_key) OR {_RETRYABLE_CONDITION}",
        )
        return attrs is not None

    def claim(
        self,
        provider: PaymentProvider,
        envelope: WebhookEnvelope,
        raw_body: bytes,
        tenant_id: str,
    ) -> str | None:
        """Take ownership of an event for processing.

        Succeeds for a new event, a retryable one, or one whose PROCESSING
        claim is older than the claim timeout.

        Returns:
            The claim token, or None if another delivery owns or finished it
        """
        now = datetime.now(timezone.utc)
        now_epoch = int(time.time())
        token = uuid.uuid4().hex
        values: dict[str, Any] = {
            ":processing": WebhookEventStatus.PROCESSING.value,
            ":provider": provider.value,
            ":event_id": envelope.provider_event_id,
            ":event_type": envelope.event_type,
            ":payload": raw_body.decode("utf-8", errors="replace"),
            ":payload_hash": compute_payload_hash(raw_body),
            ":tenant_id": tenant_id,
            ":payment_id": envelope.provider_payment_id or "",
            ":token": token,
            ":claimed_at": now_epoch,
            ":stale_before": now_epoch - self.claim_timeout_seconds,
            ":now": now.isoformat(),
            ":zero": 0,
            ":one": 1,
            **_retryable_values(),
        }
        attrs = self.db.update_item(
            WEBHOOK_EVENTS_TABLE,
            ledger_key(provider, envelope.provider_event_id),
            update_expression=(
                "SET #status = :processing, #provider = :provider, "
                "provider_event_id = :event_id, event_type = :event_type, "
                "#payload = :payload, payload_hash = :payload_hash, "
                "tenant_id = :tenant_id, provider_payment_id = :payment_id, "
                "claim_token = :token, claimed_at = :claimed_at, "
                "attempts = if_not_exists(attempts, :zero) + :one, "
                "created_at = if_not_exists(created_at, :now), updated_at = :now "
                "REMOVE error_message"
            ),
            expression_attribute_values=values,
            expression_attribute_names=LEDGER_ATTRIBUTE_NAMES,
            condition_expression=(
                f"attribute_not_exists(ledger_key) OR {_RETRYABLE_CONDITION} "
                "OR (#status = :processing AND claimed_at < :stale_before)"
            ),
        )
        if attrs is None:
            return None

        logger.debug(
            "Claimed webhook %s/%s (attempt %s)",
            provider.value,
            envelope.provider_event_id,
            attrs.get("attempts"),
        )
        return token

    def completion_item(
        self,
        provider: PaymentProvider,
        provider_event_id: str,
        claim_token: str,
    ) -> dict[str, Any]:
        """Transaction item that marks a claimed event COMPLETED."""
        return {
            "Update": {
                "TableName": WEBHOOK_EVENTS_TABLE,
                "Key": ledger_key(provider, provider_event_id),
                "UpdateExpression": "SET #status = :completed, updated_at = :now",
                "ConditionExpression": "#status = :processing AND claim_token = :token",
                "ExpressionAttributeNames": {"#status": "status"},
                "ExpressionAttributeValues": {
                    ":completed": WebhookEventStatus.COMPLETED.value,
                    ":processing": WebhookEventStatus.PROCESSING.value,
                    ":token": claim_token,
                    ":now": datetime.now(timezone.utc).isoformat(),
                },
            }
        }

    def mark_failed(
        self,
        provider: PaymentProvider,
        provider_event_id: str,
        claim_token: str,
        error_message: str,
    ) -> bool:
        """Release a claim after an unexpected error so redelivery retries it."""
        attrs = self.db.update_item(
            WEBHOOK_EVENTS_TABLE,
            ledger_key(provider, provider_event_id),
            update_expression="SET #status = :failed, error_message = :error, updated_at = :now",
            expression_attribute_values={
                ":failed": WebhookEventStatus.FAILED.value,
                ":processing": WebhookEventStatus.PROCESSING.value,
                ":error": error_message[:1000],
                ":token": claim_token,
                ":now": datetime.now(timezone.utc).isoformat(),
            },
            expression_attribute_names={"#status": "status"},
            condition_expression="#status = :processing AND claim_token = :token",
        )
        return attrs is not None

    def purge_older_than(self, cutoff: datetime) -> int:
        """Delete settled entries created before cutoff. In-flight claims are kept."""
        items = self.db.scan_all(
            WEBHOOK_EVENTS_TABLE,
            filter_expression=Attr("status").ne(WebhookEventStatus.PROCESSING.value),
            projection="ledger_key, created_at",
        )
        deleted = 0
        for item in items:
            if datetime.fromisoformat(item["created_at"]) >= cutoff:
                continue
            if self.db.delete_item(
                WEBHOOK_EVENTS_TABLE,
                {"ledger_key": item["ledger_key"]},
                condition_expression="#status <> :processing",
                expression_attribute_values={":processing": WebhookEventStatus.PROCESSING.value},
                expression_attribute_names={"#status": "status"},
            ):
                deleted += 1

        logger.info("Purged %d webhook ledger entries created before %s", deleted, cutoff)
        return deleted

    def purge_expired(self, now: datetime | None = None) -> int:
        """Apply the WEBHOOK_RETENTION_DAYS retention window."""
        now = now or datetime.now(timezone.utc)
        return self.purge_older_than(now - timedelta(days=get_settings().webhook_retention_days))

    def _is_stale(self, entry: WebhookLedgerEntry) -> bool:
        age = datetime.now(timezone.utc) - entry.updated_at
        return age.total_seconds() > self.claim_timeout_seconds


def _item_to_entry(item: dict[str, Any]) -> WebhookLedgerEntry:
    return WebhookLedgerEntry(
        provider=PaymentProvider(item["provider"]),
        provider_event_id=item["provider_event_id"],
        event_type=item.get("event_type", ""),
        status=WebhookEventStatus(item["status"]),
        payload=item.get("payload", ""),
        payload_hash=item.get("payload_hash", ""),
        tenant_id=item.get("tenant_id"),
        provider_payment_id=item.get("provider_payment_id") or None,
        attempts=max(int(item.get("attempts", 1)), 1),
        claim_token=item.get("claim_token"),
        error_message=item.get("error_message"),
        created_at=datetime.fromisoformat(item["created_at"]),
        updated_at=datetime.fromisoformat(item["updated_at"]),
    )
