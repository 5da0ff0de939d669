"""Replay protection for client-mutating requests.

A request carrying ``X-Idempotency-Key`` runs its side effect at most once
per ``(tenant, key)`` within the retention window:

- a live COMPLETED record replays the stored status code and body
- otherwise the key is claimed IN_PROGRESS with an insert-if-absent write,
  so two instances racing on a new key cannot both execute
- only 2xx results are stored; failures release the claim so the client
  can retry with the same key

The DynamoDB store is the default and works across instances. The in-memory
store is only correct for a single-process deployment.
"""

import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from boto3.dynamodb.conditions import Attr

from ordering.config import get_settings
from ordering.models.enums import IdempotencyRecordStatus
from ordering.models.errors import IdempotencyConflictError, InvalidIdempotencyKeyError
from ordering.models.idempotency import CachedResponse, IdempotencyRecord
from ordering.services.dynamodb import DynamoDBService, get_dynamodb_service
from ordering.utils.logging import get_logger

logger = get_logger(__name__)

IDEMPOTENCY_TABLE = "idempotency-keys"
IDEMPOTENCY_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,128}$")

# How long an IN_PROGRESS claim blocks the key if its owner never finishes
IN_PROGRESS_LEASE_SECONDS = 60


def validate_idempotency_key(key: str | None) -> str:
    """Check key shape before use.

    Raises:
        InvalidIdempotencyKeyError: Missing, too short/long, or bad characters
    """
    if not key or not IDEMPOTENCY_KEY_PATTERN.match(key):
        raise InvalidIdempotencyKeyError()
    return key


class IdempotencyStore(ABC):
    """Storage backend for idempotency records."""

    @abstractmethod
    def get(self, cache_key: str) -> IdempotencyRecord | None:
        """Get a record, expired or not."""

    @abstractmethod
    def try_claim(self, record: IdempotencyRecord, now: datetime) -> bool:
        """Insert an IN_PROGRESS record unless a live one exists."""

    @abstractmethod
    def complete(self, record: IdempotencyRecord) -> None:
        """Store the final response for a claimed key."""

    @abstractmethod
    def release(self, cache_key: str) -> None:
        """Drop an IN_PROGRESS claim."""

    @abstractmethod
    def purge_expired(self, now: datetime) -> int:
        """Delete expired records. Returns the number removed."""


class DynamoDBIdempotencyStore(IdempotencyStore):
    """Shared store backed by the ``idempotency-keys`` table.

    ``expires_at`` is epoch seconds so the table's TTL can reap records too.
    """

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self.db = db or get_dynamodb_service()

    def get(self, cache_key: str) -> IdempotencyRecord | None:
        item = self.db.get_item(IDEMPOTENCY_TABLE, {"cache_key": cache_key}, consistent_read=True)
        if not item:
            return None
        return _item_to_record(item)

    def try_claim(self, record: IdempotencyRecord, now: datetime) -> bool:
        return self.db.put_item(
            IDEMPOTENCY_TABLE,
            _record_to_item(record),
            condition_expression="attribute_not_exists(cache_key) OR expires_at < :now",
            expression_attribute_values={":now": int(now.timestamp())},
        )

    def complete(self, record: IdempotencyRecord) -> None:
        self.db.put_item(IDEMPOTENCY_TABLE, _record_to_item(record))

    def release(self, cache_key: str) -> None:
        self.db.delete_item(
            IDEMPOTENCY_TABLE,
            {"cache_key": cache_key},
            condition_expression="#status = :in_progress",
            expression_attribute_values={
                ":in_progress": IdempotencyRecordStatus.IN_PROGRESS.value
            },
            expression_attribute_names={"#status": "status"},
        )

    def purge_expired(self, now: datetime) -> int:
        cutoff = int(now.timestamp())
        items = self.db.scan_all(
            IDEMPOTENCY_TABLE,
            filter_expression=Attr("expires_at").lt(cutoff),
            projection="cache_key",
        )
        deleted = 0
        for item in items:
            if self.db.delete_item(
                IDEMPOTENCY_TABLE,
                {"cache_key": item["cache_key"]},
                condition_expression="expires_at < :now",
                expression_attribute_values={":now": cutoff},
            ):
                deleted += 1
        return deleted


class InMemoryIdempotencyStore(IdempotencyStore):
    """Process-local store.

    Claims are only atomic within one process; running several instances
    against this store lets each execute the same key once.
    """

    def __init__(self) -> None:
        self._records: dict[str, IdempotencyRecord] = {}
        self._lock = threading.Lock()

    def get(self, cache_key: str) -> IdempotencyRecord | None:
        with self._lock:
            return self._records.get(cache_key)

    def try_claim(self, record: IdempotencyRecord, now: datetime) -> bool:
        with self._lock:
            existing = self._records.get(record.cache_key)
            if existing is not None and existing.expires_at >= now:
                return False
            self._records[record.cache_key] = record
            return True

    def complete(self, record: IdempotencyRecord) -> None:
        with self._lock:
            self._records[record.cache_key] = record

    def release(self, cache_key: str) -> None:
        with self._lock:
            existing = self._records.get(cache_key)
            if existing is not None and existing.status == IdempotencyRecordStatus.IN_PROGRESS:
                del self._records[cache_key]

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [k for k, r in self._records.items() if r.expires_at < now]
            for cache_key in expired:
                del self._records[cache_key]
        return len(expired)


class IdempotencyCache:
    """Runs an operation at most once per (tenant, key) and replays its response."""

    def __init__(self, store: IdempotencyStore, ttl_seconds: int | None = None) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds or get_settings().idempotency_ttl_seconds

    def execute(
        self,
        tenant_id: str,
        key: str | None,
        operation: Callable[[], CachedResponse],
    ) -> tuple[CachedResponse, bool]:
        """Run operation under an idempotency key.

        Returns:
            (response, replayed) where replayed is True for a cached response

        Raises:
            InvalidIdempotencyKeyError: Key has the wrong shape
            IdempotencyConflictError: Same key is still executing elsewhere
        """
        key = validate_idempotency_key(key)
        now = datetime.now(timezone.utc)
        cache_key = f"{tenant_id}#{key}"

        cached = self._live_response(cache_key, now)
        if cached is not None:
            return cached, True

        claim = IdempotencyRecord(
            tenant_id=tenant_id,
            key=key,
            status=IdempotencyRecordStatus.IN_PROGRESS,
            created_at=now,
            expires_at=now + timedelta(seconds=min(IN_PROGRESS_LEASE_SECONDS, self.ttl_seconds)),
        )
        if not self.store.try_claim(claim, now):
            cached = self._live_response(cache_key, now)
            if cached is not None:
                return cached, True
            raise IdempotencyConflictError(details={"idempotency_key": key})

        try:
            response = operation()
        except Exception:
            self.store.release(cache_key)
            raise

        if not response.is_success:
            self.store.release(cache_key)
            return response, False

        completed_at = datetime.now(timezone.utc)
        self.store.complete(
            IdempotencyRecord(
                tenant_id=tenant_id,
                key=key,
                status=IdempotencyRecordStatus.COMPLETED,
                response=response,
                created_at=completed_at,
                expires_at=completed_at + timedelta(seconds=self.ttl_seconds),
            )
        )
        logger.debug("Stored idempotent response for tenant %s key %s", tenant_id, key)
        return response, False

    def purge_expired(self, now: datetime | None = None) -> int:
        """Evict expired records. Run from a background sweep, not per request."""
        removed = self.store.purge_expired(now or datetime.now(timezone.utc))
        if removed:
            logger.info("Purged %d expired idempotency records", removed)
        return removed

    def _live_response(self, cache_key: str, now: datetime) -> CachedResponse | None:
        existing = self.store.get(cache_key)
        if existing is None or existing.expires_at < now:
            return None
        if existing.status == IdempotencyRecordStatus.COMPLETED and existing.response:
            return existing.response
        raise IdempotencyConflictError(details={"idempotency_key": existing.key})


def create_idempotency_store(backend: str | None = None) -> IdempotencyStore:
    """Build the store named by IDEMPOTENCY_BACKEND."""
    backend = backend or get_settings().idempotency_backend
    if backend == "memory":
        logger.warning("Using in-memory idempotency store; safe for a single instance only")
        return InMemoryIdempotencyStore()
    return DynamoDBIdempotencyStore()


def _record_to_item(record: IdempotencyRecord) -> dict[str, Any]:
    item: dict[str, Any] = {
        "cache_key": record.cache_key,
        "tenant_id": record.tenant_id,
        "idempotency_key": record.key,
        "status": record.status.value,
        "created_at": record.created_at.isoformat(),
        "expires_at": int(record.expires_at.timestamp()),
    }
    if record.response is not None:
        item["status_code"] = record.response.status_code
        item["body"] = record.response.body
    return item


def _item_to_record(item: dict[str, Any]) -> IdempotencyRecord:
    response = None
    if "status_code" in item:
        response = CachedResponse(status_code=int(item["status_code"]), body=item.get("body", ""))
    return IdempotencyRecord(
        tenant_id=item["tenant_id"],
        key=item["idempotency_key"],
        status=IdempotencyRecordStatus(item["status"]),
        response=response,
        created_at=datetime.fromisoformat(item["created_at"]),
        expires_at=datetime.fromtimestamp(int(item["expires_at"]), tz=timezone.utc),
    )
