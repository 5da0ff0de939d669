"""Health check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from ordering.config import get_settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    environment: str
    timestamp: str


@router.get("/health", summary="Health check", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness check. Does not touch DynamoDB or providers."""
    return HealthResponse(
        status="healthy",
        environment=get_settings().environment,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
