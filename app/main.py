import asyncio
import logging
from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager

from app.core.config import get_settings
from app.core.exceptions import AlertServiceError
from app.database.connection import get_db, create_tables, SessionLocal
from app.api.v1.router import api_router
from app.api.middleware.rate_limiting import AuthRateLimitMiddleware
from app.api.middleware.request_logging import RequestLoggingMiddleware
from app.cache.cache_manager import CacheManager
from app.cache.redis_client import get_redis_client, close_redis_connection
from app.notifications.realtime import ConnectionManager, WebSocketTransport
from app.services.notification_service import NotificationService

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting up the application...")
    try:
        create_tables()
        logger.info("Database tables created/verified successfully")
    except SQLAlchemyError as e:
        logger.error(f"Error creating database tables: {e}")
        raise

    connection_manager = ConnectionManager()
    transport = WebSocketTransport(connection_manager, loop=asyncio.get_running_loop())
    notification_service = NotificationService.from_settings(settings, SessionLocal, transport)
    notification_service.start()

    app.state.connection_manager = connection_manager
    app.state.notification_service = notification_service
    app.state.cache = CacheManager(get_redis_client())

    yield

    # Shutdown
    logger.info("Shutting down the application...")
    notification_service.shutdown()
    close_redis_connection()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Smart City alert lifecycle and notification API",
    lifespan=lifespan,
)


@app.exception_handler(AlertServiceError)
async def alert_service_error_handler(request: Request, exc: AlertServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    field_errors = {".".join(str(part) for part in error["loc"]): error["msg"] for error in exc.errors()}
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Validation Error",
            "details": {"field_errors": field_errors},
            "code": "VALIDATION_ERROR",
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail,
            "details": None,
            "code": f"HTTP_{exc.status_code}",
        },
        headers=getattr(exc, "headers", None),
    )


# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add rate limiting middleware for auth endpoints
app.add_middleware(AuthRateLimitMiddleware, prefix=settings.api_v1_prefix)
app.add_middleware(RequestLoggingMiddleware)


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    try:
        # Test database connection
        db.execute(text("SELECT 1"))

        return {
            "status": "healthy",
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "database": "connected",
        }
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "database": "disconnected",
            "error": str(e),
        }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Welcome to the Smart City Alerts API",
        "version": settings.app_version,
        "docs": "/docs",
    }


# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
