"""Health check endpoints. No authentication required.

- /health      : service status
- /health/live : liveness probe (always 200)
"""

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "canvasql"}


@router.get("/health/live")
async def liveness():
    """Liveness probe: process is alive."""
    return {"status": "live"}
