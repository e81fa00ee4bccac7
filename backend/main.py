"""FastAPI application entry point."""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config.settings import get_settings
from backend.config.logging_config import setup_logging, get_logger
from backend.storage.database import dispose_engine, init_db
from backend.api.dependencies import close_dependencies
from backend.api.routes import audit, fax, history, opportunities

VERSION = "0.1.0"

settings = get_settings()

# Initialize logging
setup_logging(
    log_level=settings.log_level,
    log_file=settings.log_file,
    json_output=settings.app_env != "development",
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Prescriber Fax Request Service", env=settings.app_env)

    if not settings.opportunity_api_token:
        logger.warning("OPPORTUNITY_API_TOKEN not set, calling the opportunity store unauthenticated")
    if settings.demo_account:
        logger.warning("Demo account enabled, patient names are shown unmasked")

    # Audit tables
    await init_db()

    yield

    logger.info("Shutting down Prescriber Fax Request Service")
    await close_dependencies()
    await dispose_engine()


# Create FastAPI app
app = FastAPI(
    title="Prescriber Fax Request Service",
    description="Prescriber change-request faxes with a per-prescriber volume gate",
    version=VERSION,
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-Requested-With"],
    expose_headers=["Content-Disposition", "X-Fax-History-Id"],
)


# Exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled errors with an error id and return a generic 500 body."""
    error_id = str(uuid.uuid4())[:8]
    logger.error(
        "Unhandled exception",
        error_id=error_id,
        error=str(exc),
        path=request.url.path,
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "error_id": error_id}
    )


# Include routers
app.include_router(fax.router, prefix="/api/v1")
app.include_router(history.router, prefix="/api/v1")
app.include_router(opportunities.router, prefix="/api/v1")
app.include_router(audit.router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Liveness probe. Does not call the opportunity store."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Prescriber Fax Request Service",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development"
    )
