"""
Routing surface: builds the FastAPI application served by the lifecycle
"""
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from bookkeeping.api.exceptions import APIError
from bookkeeping.api.routes import backups, health

logger = logging.getLogger(__name__)

APP_TITLE = "Bookkeeping API"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


def create_app(
    version: str = "0.0.0",
    health_monitor=None,
    backup_pipeline=None,
    rate_limit: str = "1000/hour"
) -> FastAPI:
    """
    Construct the application and bind route handlers

    Args:
        version: Semantic application version reported at /
        health_monitor: HealthMonitor used by /health/database
        backup_pipeline: BackupPipeline used by /api/backups
        rate_limit: Default per-client rate limit

    Returns:
        FastAPI application ready to hand to the serving loop
    """
    app = FastAPI(title=APP_TITLE, version=version)
    app.state.health_monitor = health_monitor
    app.state.backup_pipeline = backup_pipeline
    app.state.limiter = Limiter(key_func=get_remote_address, default_limits=[rate_limit])

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    register_routes(app, version)
    register_exception_handlers(app)
    return app


def register_routes(app: FastAPI, version: str) -> None:
    """Attach routers to the application"""

    @app.get("/")
    async def root():
        return {"message": APP_TITLE, "version": version}

    app.include_router(health.router, tags=["health"])
    app.include_router(backups.router, prefix="/api/backups", tags=["backups"])


def register_exception_handlers(app: FastAPI) -> None:
    """Map exceptions to structured JSON error responses"""

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}")
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded. Please try again later."}
        )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        logger.info(
            f"API Error [{exc.request_id}]: {exc.code} - {exc.message}",
            extra={"path": request.url.path, "method": request.method},
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        request_id = str(uuid.uuid4())[:8]
        logger.error(
            f"Unhandled exception [{request_id}]: {type(exc).__name__}: {exc}",
            exc_info=True,
            extra={"path": request.url.path, "method": request.method},
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "An internal server error occurred",
                    "request_id": request_id,
                }
            }
        )
