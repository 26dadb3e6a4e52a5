"""
FODMAP Classifier API - FastAPI application entry point
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from starlette.responses import Response

from apps.api.routers import products
from packages.common.classification_cache import RedisCacheStore
from packages.common.config import get_settings
from packages.common.database import sessionmanager
from packages.common.logging_config import configure_logging
from packages.common.redis_client import create_redis_client
from packages.domain.classification.classifier_router import ClassifierRouter
from packages.domain.classification.rate_limiter import RedisRateWindow

VERSION = "0.1.0"

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager"""
    logger.info("starting_fodmap_classifier_api",
                environment=settings.environment,
                classifier=settings.classifier,
                version=VERSION)

    # Initialize database connection pool
    await sessionmanager.init(settings.database_url)

    redis = create_redis_client(settings.redis_url)
    app.state.redis = redis
    app.state.classifier_router = ClassifierRouter(
        settings, RedisRateWindow(redis), RedisCacheStore(redis)
    )

    yield

    # Cleanup
    logger.info("shutting_down_fodmap_classifier_api")
    await redis.aclose()
    await sessionmanager.close()


# Create FastAPI application
app = FastAPI(
    title="FODMAP Classifier API",
    description="Classifies grocery products by FODMAP content",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with structured logging"""
    logger.warning("validation_error",
                   path=request.url.path,
                   errors=jsonable_encoder(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors"""
    logger.error("unhandled_exception",
                 path=request.url.path,
                 error=str(exc),
                 exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "request_id": request.headers.get("x-request-id"),
        },
    )


# Include routers
app.include_router(products.router, prefix="/api/v1/products", tags=["Products"])


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check(request: Request):
    """Health check endpoint for Docker and monitoring"""
    try:
        async with sessionmanager.session() as session:
            await session.execute(text("SELECT 1"))

        redis = getattr(request.app.state, "redis", None)
        if redis is not None:
            await redis.ping()

        classifier, ai_configured = request.app.state.classifier_router.describe()

        return {
            "status": "healthy",
            "environment": settings.environment,
            "version": VERSION,
            "classifier": classifier,
            "services": {
                "database": "connected",
                "redis": "connected" if redis is not None else "not_configured",
                "ai": "configured" if ai_configured else "missing_api_key",
            }
        }
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "error": str(e),
            }
        )


# Metrics endpoint (Prometheus)
@app.get("/metrics", tags=["System"])
async def metrics():
    """Prometheus metrics endpoint"""
    if not settings.metrics_enabled:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": "Metrics disabled"}
        )

    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# Root endpoint
@app.get("/", tags=["System"])
async def root():
    """API root endpoint"""
    return {
        "name": "FODMAP Classifier API",
        "version": VERSION,
        "environment": settings.environment,
        "docs": "/docs" if settings.environment != "production" else None,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "apps.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
