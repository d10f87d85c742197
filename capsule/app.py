# FILE: capsule/app.py
"""
FastAPI application entry point for the Memory Capsule backend
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from capsule import __version__
from capsule.config import get_settings
from capsule.middleware.body_limit import BodySizeLimitMiddleware
from capsule.middleware.correlation import CorrelationIdMiddleware
from capsule.middleware.rate_limit import RateLimitMiddleware
from capsule.routes import health, memory, metrics, uploads
from capsule.services.correlation import get_correlation_id
from capsule.services.errors import CapsuleError
from capsule.services.startup_verify import verify_startup
from capsule.services.telemetry import init_telemetry

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown"""
    logger.info(f"Starting Memory Capsule backend v{__version__}")

    verify_result = await verify_startup()
    if not verify_result["metadata_writable"]:
        raise RuntimeError(f"Metadata directory not writable: {verify_result['metadata_dir']}")

    init_telemetry()

    yield

    logger.info("Shutting down Memory Capsule backend")


app = FastAPI(
    title="Memory Capsule API",
    description="Shareable memory capsules addressed by short secret codes",
    version=__version__,
    lifespan=lifespan
)

# Body size limit
app.add_middleware(BodySizeLimitMiddleware, max_size=settings.body_size_limit_kb * 1024)

# Rate limiting
if settings.rate_limit_enabled:
    app.add_middleware(
        RateLimitMiddleware,
        rpm=settings.rate_limit_rpm,
        trust_forwarded_for=settings.trust_forwarded_for
    )

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Edit-Key", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"],
)

# Outermost, so every response carries the correlation ID
app.add_middleware(CorrelationIdMiddleware)


@app.exception_handler(CapsuleError)
async def capsule_exception_handler(request: Request, exc: CapsuleError):
    correlation_id = get_correlation_id()
    if exc.status_code >= 500:
        logger.error(f"[{correlation_id}] {request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"[{correlation_id}] {request.method} {request.url.path} rejected: {exc.error}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "detail": exc.message, "correlation_id": correlation_id}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    correlation_id = get_correlation_id()
    logger.error(f"[{correlation_id}] Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "detail": "Internal server error", "correlation_id": correlation_id}
    )


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(uploads.router, prefix="/api", tags=["uploads"])
app.include_router(memory.router, prefix="/api", tags=["memory"])
app.include_router(metrics.router, prefix="/metrics", tags=["metrics"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Memory Capsule",
        "version": __version__,
        "status": "active"
    }


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    uvicorn.run(
        "capsule.app:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.environment == "development"
    )
