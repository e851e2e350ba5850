import os

from fastapi import APIRouter

from server.models.responses import HealthResponse
from shared.models.base import now_ms

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> HealthResponse:
    """Liveness probe. Answers even while the topic registry is still loading."""
    return HealthResponse(version=os.getenv("APP_VERSION", "unknown"), timestamp=now_ms())
