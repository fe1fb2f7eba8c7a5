"""
Main FastAPI application for the Flyer Customization Engine
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import httpx
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from flyer_engine.config import settings, get_redis_client, validate_required_config
from flyer_engine.dependencies import build_services
from flyer_engine.logging_config import logger

# Import routers
from flyer_engine.routers import customize, sessions
from flyer_engine.routers import settings as settings_router

VERSION = "2.0.0"

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting Flyer Engine", environment=settings.ENVIRONMENT)

    # Validate required configuration
    validate_required_config()

    # Initialize Sentry if DSN provided
    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.SENTRY_ENVIRONMENT,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[FastApiIntegration()],
        )
        logger.info("Sentry initialized")

    redis_client = get_redis_client()
    app.state.redis = redis_client
    if redis_client is None:
        logger.warning("Redis disabled, using default provider", provider=settings.DEFAULT_AI_PROVIDER)
    else:
        try:
            await redis_client.ping()
            logger.info("Redis connected successfully")
        except Exception as e:
            # Each setting read retries; calls use the default until Redis is back
            logger.warning(
                "Redis not available, using default provider until it recovers",
                provider=settings.DEFAULT_AI_PROVIDER,
                error=str(e),
            )

    app.state.services = build_services(redis_client=redis_client)
    logger.info(
        "Flyer Engine started",
        providers=list(app.state.services.gateway.providers) if app.state.services.gateway else [],
        default_provider=settings.DEFAULT_AI_PROVIDER,
    )

    yield

    # Flush sessions that still have unsaved edits
    for session_id, controller in list(app.state.services.sessions.items()):
        try:
            await controller.close()
        except Exception as e:
            logger.warning("Session flush failed on shutdown", session_id=session_id, error=str(e))

    if redis_client is not None:
        await redis_client.aclose()

    logger.info("Shutting down Flyer Engine")


# Create FastAPI app
app = FastAPI(
    title="Flyer Customization Engine",
    description="AI-assisted personalization of HTML flyer templates",
    version=VERSION,
    lifespan=lifespan
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Parse CORS_ORIGINS from comma-separated string
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in settings.CORS_ORIGINS.split(",")
    if origin.strip()
]

if settings.ENVIRONMENT == "development" or settings.DEBUG:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,  # Cannot use credentials with wildcard origins
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Flyer Customization Engine",
        "version": VERSION,
        "status": "running",
    }


@app.get("/health")
async def health_check(request: Request):
    """Comprehensive health check"""
    health = {
        "status": "healthy",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {}
    }

    health["checks"]["anthropic_api"] = {
        "configured": bool(settings.ANTHROPIC_API_KEY),
        "status": "ok" if settings.ANTHROPIC_API_KEY else "missing"
    }
    health["checks"]["openai_api"] = {
        "configured": bool(settings.OPENAI_API_KEY),
        "status": "ok" if settings.OPENAI_API_KEY else "missing"
    }

    # Check Redis
    try:
        redis_client = getattr(request.app.state, "redis", None)
        if redis_client is not None:
            await redis_client.ping()
            health["checks"]["redis"] = {"status": "ok"}
        else:
            health["checks"]["redis"] = {"status": "disabled"}
    except Exception as e:
        health["checks"]["redis"] = {"status": "error", "error": str(e)}

    # Check render service
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.get(
                f"{settings.PLAYWRIGHT_SERVICE_URL}/health",
                timeout=5
            )
            health["checks"]["render_service"] = {
                "status": "ok" if resp.status_code == 200 else "error"
            }
    except Exception as e:
        health["checks"]["render_service"] = {"status": "error", "error": str(e)}

    # At least one LLM provider must be usable
    provider_ok = any(
        health["checks"][check]["status"] == "ok"
        for check in ("anthropic_api", "openai_api")
    )
    health["status"] = "healthy" if provider_ok else "degraded"

    return health


@app.get("/readiness")
async def readiness_check(request: Request):
    """Kubernetes readiness check"""
    health = await health_check(request)

    if health["status"] == "healthy":
        return {"status": "ready"}
    return JSONResponse(
        status_code=503,
        content={"status": "not_ready", "checks": health["checks"]}
    )


# Include routers
app.include_router(customize.router, prefix="/api", tags=["AI Customization"])
app.include_router(sessions.router, prefix="/api", tags=["Customization Sessions"])
app.include_router(settings_router.router, prefix="/api", tags=["Settings"])


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler with Sentry integration"""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        path=request.url.path,
        exc_info=True
    )

    if settings.SENTRY_DSN:
        sentry_sdk.capture_exception(exc)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.SENTRY_ENVIRONMENT == "development" else None
        }
    )


if __name__ == "__main__":
    import uvicorn
    reload_enabled = settings.ENVIRONMENT == "development" or settings.DEBUG
    uvicorn.run("flyer_engine.main:app", host="0.0.0.0", port=8001, reload=reload_enabled)
