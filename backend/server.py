from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import sessions, intake, consent, credit, conflicts

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Workflow sessions live in process memory, so their jobs use the in-memory store
scheduler = AsyncIOScheduler()

from job_runner import run_workflow_session_reaper, run_conflict_rescan

SESSION_REAPER_INTERVAL_SECONDS = int(os.environ.get("SESSION_REAPER_INTERVAL_SECONDS", "60"))
CONFLICT_RESCAN_INTERVAL_MINUTES = int(os.environ.get("CONFLICT_RESCAN_INTERVAL_MINUTES", "0"))


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.environ.get("PYTEST_RUNNING"):
        yield
        return

    # Startup
    logger.info("Starting Intake Workflow API")
    await database.connect()

    # Close idle workflow sessions (stops orphaned pollers and subscriptions)
    scheduler.add_job(
        run_workflow_session_reaper,
        IntervalTrigger(seconds=SESSION_REAPER_INTERVAL_SECONDS),
        id="workflow_session_reaper",
        name="Workflow Session Reaper",
        replace_existing=True
    )

    if CONFLICT_RESCAN_INTERVAL_MINUTES > 0:
        scheduler.add_job(
            run_conflict_rescan,
            IntervalTrigger(minutes=CONFLICT_RESCAN_INTERVAL_MINUTES),
            id="conflict_rescan",
            name="Conflict Rescan",
            replace_existing=True
        )

    scheduler.start()
    logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down Intake Workflow API")
    scheduler.shutdown(wait=False)
    logger.info("Background job scheduler stopped")
    from services.workflow_sessions import workflow_sessions
    workflow_sessions.close_all()
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Intake Workflow API",
    description="Client intake, credit decision and conflict-of-interest workflow",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sessions.router)
app.include_router(intake.router)
app.include_router(consent.router)
app.include_router(credit.router)
app.include_router(conflicts.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "Intake Workflow",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "database": "connected" if await database.ping() else "disconnected",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


# Version/build stamp for deployment verification (commit SHA set by CI/CD, e.g. GIT_COMMIT_SHA)
@app.get("/api/version")
async def version_info():
    return {
        "commit_sha": os.getenv("GIT_COMMIT_SHA", os.getenv("BUILD_SHA", "unknown")),
        "environment": os.getenv("ENVIRONMENT", "development"),
    }

# Validation error handler: log request_id + full errors (loc path)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    path = getattr(request, "url", None) and getattr(request.url, "path", "") or ""
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


def jsonable_errors(errors):
    # ctx may carry exception instances (e.g. from validators)
    return [{k: v for k, v in e.items() if k != "ctx"} for e in errors]


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
