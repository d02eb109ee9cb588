"""
FastAPI application main module.
Middleware, error handling, deadline worker lifecycle and health checks.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import uuid
import os
from contextlib import asynccontextmanager
from campaign_ledger import database
from campaign_ledger.api.v1 import api_router
from campaign_ledger.config import APP_ENV, QUEUE_SETTINGS
from campaign_ledger.database import Base
from campaign_ledger.exceptions import LedgerServiceError
from campaign_ledger.jobs import scheduler
from campaign_ledger.jobs.worker_deadlines import DeadlineWorker, LAST_EXCEPTIONS, create_queue
from campaign_ledger.utils import setup_logging, get_logger

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "campaign-ledger"
VERSION = "1.0.0"

_worker: DeadlineWorker | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Creates tables, starts the deadline queue + worker and re-arms every
    outstanding payment deadline from the database.
    """
    logger.info("Application startup initiated")

    global _worker
    try:
        Base.metadata.create_all(bind=database.engine)
        logger.info("Database tables created successfully")

        queue = create_queue()
        # endpoints and services reach the queue through app.state / scheduler, never by importing main
        app.state.deadline_queue = queue  # type: ignore[attr-defined]
        scheduler.attach_queue(queue)

        session = database.SessionLocal()
        try:
            scheduler.recover_deadlines(session)
        finally:
            session.close()

        _worker = DeadlineWorker(queue)
        _worker.start()
        logger.info("Deadline queue + worker started")
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if _worker:
            _worker.stop(timeout=5.0)
            logger.info("Deadline worker stopped")
        scheduler.detach_queue()
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Campaign Ledger",
    description="""
    Balance ledger and campaign payment lifecycle for an influencer marketplace.

    ## Features
    * **Append-only ledger** - every balance change is a ledger entry
    * **Campaign lifecycle** - review, payment deadline, activation, settlement
    * **Payouts** - single, batch and custom distributions with budget refunds
    * **Withdrawals** - reserve, approve, complete, reject or cancel

    ## Authentication
    Use Bearer token authentication with your API key:
    ```
    Authorization: Bearer <api_key>
    ```
    """,
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response


@app.exception_handler(LedgerServiceError)
async def ledger_error_handler(request: Request, exc: LedgerServiceError):
    """Typed service errors carry their own status and machine-readable code."""
    request_id = getattr(request.state, "request_id", "unknown")

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Service error",
        code=exc.code,
        status_code=exc.status_code,
        error_message=exc.message,
        context=exc.context,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    message = exc.message
    if exc.status_code >= 500 and exc.status_code != 502 and APP_ENV != "development":
        message = "Internal server error"
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": message,
            "code": exc.code,
            "request_id": request_id
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "code": "request_validation_error",
            "details": jsonable_encoder(exc.errors()),
            "request_id": request_id
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        },
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    content = {
        "success": False,
        "message": "Internal server error",
        "code": "internal_error",
        "request_id": request_id
    }
    if APP_ENV == "development":
        content["detail"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    queue = getattr(app.state, "deadline_queue", None)
    queue_backend = "memory"
    if queue is not None and queue.snapshot().get("redis_active"):
        queue_backend = "redis"
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": time.time(),
        "queue_backend": queue_backend,
    }


@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Detailed health check with database, queue and worker status."""
    health_status = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": time.time(),
        "checks": {}
    }

    db = database.SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except SQLAlchemyError as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"
    finally:
        db.close()

    queue = getattr(app.state, "deadline_queue", None)
    if queue is not None:
        snap = queue.snapshot()
        health_status["checks"]["queue"] = {
            k: v for k, v in snap.items() if k in {"depth", "ready", "scheduled", "redis_active"}
        }
        if QUEUE_SETTINGS.get("use_redis") and not snap.get("redis_active"):
            health_status["checks"]["redis"] = "unavailable"
            health_status["status"] = "degraded"

    health_status["checks"]["deadline_worker"] = "running" if _worker and _worker.is_alive() else "stopped"
    health_status["checks"]["recent_job_failures"] = len(LAST_EXCEPTIONS)

    return health_status


@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Campaign Ledger API",
        "version": VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "campaign_ledger.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["campaign_ledger"],
        log_level="info",
        access_log=True
    )
