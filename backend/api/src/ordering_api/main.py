"""FastAPI application for the restaurant ordering REST API.

This package provides REST endpoints for:
- Health checks
- Orders and their kitchen workflow
- Payment intents and per-tenant provider configuration
- Stripe and Square webhooks
"""

import asyncio
import contextlib
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum
from starlette.concurrency import run_in_threadpool

from ordering.config import get_settings
from ordering.utils.logging import configure_logging, get_logger
from ordering_api.exceptions import register_exception_handlers
from ordering_api.jobs import run_retention_sweep
from ordering_api.middleware.correlation import CorrelationIdMiddleware
from ordering_api.routes.health import router as health_router
from ordering_api.routes.orders import router as orders_router
from ordering_api.routes.payment_configs import router as payment_configs_router
from ordering_api.routes.payments import router as payments_router
from ordering_api.routes.webhooks import router as webhooks_router

configure_logging()
logger = get_logger(__name__)


async def _retention_loop(interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_in_threadpool(run_retention_sweep)
        except Exception:
            # Keep sweeping; the next pass retries whatever this one missed
            logger.exception("Retention sweep failed")


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the retention sweep in the background while the server is up."""
    task = asyncio.create_task(
        _retention_loop(get_settings().idempotency_sweep_interval_seconds)
    )
    try:
        yield
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


app = FastAPI(
    title="Restaurant Ordering API",
    description="Multi-tenant ordering, checkout and payment reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

# Include routers under /api prefix
app.include_router(health_router, prefix="/api")
app.include_router(orders_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(payment_configs_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    """Root health check endpoint at /api/ping."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "ordering-api",
    }


# Lambda handler; scheduled purges run via ordering_api.jobs instead of the lifespan task
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "ordering_api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["backend/api/src", "backend/core/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
