"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError as BodyValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from api.routes import health, sync, aggregate, sync_config
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.exceptions import (
    SyncException,
    RequestValidationError,
    ConfigurationError,
    ProviderAPIError,
)
from core.logging import setup_logging
from ingestion.scheduler import SyncScheduler
import logging

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Labor & POS Sync API",
    description="Ingests Eitje labor data and Bork POS tickets and aggregates them per day",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(sync.router)
app.include_router(aggregate.router)
app.include_router(sync_config.router)


def status_code_for(exc: SyncException) -> int:
    if isinstance(exc, (RequestValidationError, ConfigurationError)):
        return 400
    if isinstance(exc, ProviderAPIError):
        return 502
    return 500


@app.exception_handler(SyncException)
async def sync_exception_handler(request: Request, exc: SyncException):
    status_code = status_code_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(f"{request.method} {request.url.path} failed: {exc.message}", extra={"error_context": exc.to_dict()})
    return JSONResponse(status_code=status_code, content={"success": False, "error": exc.message})


@app.exception_handler(BodyValidationError)
async def body_validation_handler(request: Request, exc: BodyValidationError):
    errors = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return JSONResponse(status_code=400, content={"success": False, "error": errors})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc) or type(exc).__name__})


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Labor & POS Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")
    
    app.state.scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = SyncScheduler()
        try:
            await scheduler.load_all()
        except Exception as e:
            logger.error(f"Could not load sync configs for the scheduler: {e}")
        scheduler.start()
        app.state.scheduler = scheduler


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Labor & POS Sync API")
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Labor & POS Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "incremental": "/sync/incremental",
            "backfill_worker": "/sync/backfill-worker",
            "backfill": "/sync/backfill",
            "aggregate": "/aggregate",
            "sync_config": "/sync-config",
        }
    }
