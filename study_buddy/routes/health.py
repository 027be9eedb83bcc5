"""
Study Buddy Matchmaker - Health Check Routes

Provides health check endpoints for monitoring.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from study_buddy.dependencies import get_services
from study_buddy.schemas import now_ms
from study_buddy.services.container import Services

router = APIRouter()


@router.get("")
async def health_check(services: Services = Depends(get_services)):
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": now_ms(),
        "storageBackend": services.store.name,
        "activeConnections": len(services.registry),
    }


@router.get("/ready")
async def readiness(services: Services = Depends(get_services)):
    """Readiness check - verifies the shared store answers"""
    if not await services.store.ping():
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "timestamp": now_ms(), "storageBackend": services.store.name},
        )
    return {
        "status": "ready",
        "timestamp": now_ms(),
        "storageBackend": services.store.name,
    }


@router.get("/live")
async def liveness():
    """Liveness check - indicates service is running"""
    return {
        "status": "alive",
        "timestamp": now_ms(),
    }
