"""Idempotency cache records."""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import IdempotencyRecordStatus


class CachedResponse(BaseModel):
    """Status code and serialized body produced by an idempotent operation.

    The body is kept as the exact JSON text sent to the client so a replay
    is byte-identical.
    """

    status_code: int = Field(..., ge=100, le=599)
    body: str = Field(default="", description="Serialized JSON response body")

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class IdempotencyRecord(BaseModel):
    """Cached response for ``(tenant_id, client key)``."""

    tenant_id: str
    key: str
    status: IdempotencyRecordStatus
    response: CachedResponse | None = None
    created_at: datetime
    expires_at: datetime

    @property
    def cache_key(self) -> str:
        return f"{self.tenant_id}#{self.key}"
