"""Wraps mutating route handlers in the idempotency cache.

A route builds a zero-argument operation returning a pydantic model; this
module serializes it once, stores the exact body text, and replays that same
text for repeated keys.
"""

from collections.abc import Callable

from pydantic import BaseModel
from starlette.responses import Response

from ordering.models.idempotency import CachedResponse
from ordering.services.idempotency import IdempotencyCache

IDEMPOTENT_REPLAY_HEADER = "Idempotent-Replayed"


def run_idempotent(
    cache: IdempotencyCache,
    tenant_id: str,
    idempotency_key: str | None,
    operation: Callable[[], BaseModel],
    status_code: int = 200,
) -> Response:
    """Run operation once per key and return its JSON response.

    Without a key the operation simply runs. Domain errors raised by the
    operation propagate to the exception handlers and are not cached.
    """

    def cached_operation() -> CachedResponse:
        result = operation()
        return CachedResponse(status_code=status_code, body=result.model_dump_json())

    if idempotency_key is None:
        response = cached_operation()
        replayed = False
    else:
        response, replayed = cache.execute(tenant_id, idempotency_key, cached_operation)

    http_response = Response(
        content=response.body,
        status_code=response.status_code,
        media_type="application/json",
    )
    if replayed:
        http_response.headers[IDEMPOTENT_REPLAY_HEADER] = "true"
    return http_response
