"""
Health check routes
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from bookkeeping.api.schemas import HealthResponse

router = APIRouter()


@router.get("/health")
async def health():
    """Basic liveness check"""
    return {"status": "healthy"}


@router.get("/health/database", response_model=HealthResponse)
async def health_database(request: Request):
    """Database health with a fresh ping when the monitor is initialized"""
    monitor = request.app.state.health_monitor
    if monitor is None:
        return JSONResponse(status_code=503, content={"status": "unavailable", "database": "unknown"})
    if monitor.initialized:
        await monitor.check()
    status = monitor.status()
    if status["status"] != "healthy":
        return JSONResponse(status_code=503, content=status)
    return status
