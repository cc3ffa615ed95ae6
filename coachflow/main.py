from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from coachflow.config import settings
from coachflow.api.v1.router import api_router
from coachflow.database import init_db, async_session_factory
from coachflow.jobs.scheduler import start_scheduler, shutdown_scheduler


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables on SQLite deployments (Postgres uses Alembic)
    - Start the retry-queue scheduler when SCHEDULER_ENABLED is set
      (deployments without an external cron)
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if settings.is_sqlite:
        await init_db()

    if settings.SCHEDULER_ENABLED:
        start_scheduler()
        logger.info("Background scheduler started")

    yield

    if settings.SCHEDULER_ENABLED:
        shutdown_scheduler()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Revenue", "description": "Enrollment revenue split, TDS and split configuration"},
    {"name": "Coaches", "description": "Coach payout ledger"},
    {"name": "Enrollments", "description": "Enrollment activation: coach assignment, scheduling, revenue"},
    {"name": "Scheduling", "description": "Event orchestrator, manual scheduling queue and retry queue"},
    {"name": "Sessions", "description": "Coaching session completion"},
]

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Coach assignment, session scheduling and revenue split engine.",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unhandled errors become a JSON 500 with the error type and path."""
    if isinstance(exc, HTTPException):
        status_code = exc.status_code
        error_message = exc.detail
    else:
        status_code = 500
        error_message = str(exc) if settings.DEBUG else "Internal server error"
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": error_message,
            "type": type(exc).__name__,
            "path": str(request.url.path),
            "method": request.method,
        },
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
