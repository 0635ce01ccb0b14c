"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from utils.exceptions import AppError
from services.export_service import ExportService, get_export_service

# Configure logging to show INFO level logs (needed for perf_logger)
logging.basicConfig(
    level=logging.INFO,
    format='%(message)s',  # perf_logger handles the timestamp formatting
    force=True  # Override any existing config
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Starts the export worker and stops it on shutdown.
    """
    # === STARTUP ===
    logger.info("Starting application...")
    settings.export_dir.mkdir(parents=True, exist_ok=True)

    queue = get_export_service().queue
    await queue.start_worker()

    logger.info("Application ready")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down...")
    # Leftover ffmpeg processes would keep writing into the export dir
    await queue.stop_worker(wait_for_current=False)
    logger.info("Shutdown complete")


# Create FastAPI app with lifespan
app = FastAPI(
    title=settings.app_name,
    description="Exports a video through a list of presets, one at a time",
    version="1.0.0",
    debug=settings.debug,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request, exc: AppError):
    """Global handler for custom application errors."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "type": type(exc).__name__}
    )

# Include routers
from routers import exports
app.include_router(exports.router, prefix="/api/exports", tags=["Exports"])


@app.get("/health")
async def health_check(service: ExportService = Depends(get_export_service)):
    """Health check endpoint."""
    queue = service.queue
    current = queue.current_job
    return {
        "status": "healthy",
        "app": settings.app_name,
        "queue_size": queue.queue_size,
        "worker_running": queue.is_running,
        "current_job": current.job_id if current else None,
    }


def find_available_port(host: str, start_port: int, max_attempts: int = 10) -> int:
    """Find the first available port starting from start_port."""
    import socket
    for port in range(start_port, start_port + max_attempts):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((host, port))
                return port
            except socket.error:
                continue
    return -1


if __name__ == "__main__":
    import uvicorn
    import sys

    final_port = find_available_port(settings.host, settings.port)

    if final_port == -1:
        logger.critical(f"FATAL: Could not find any available ports starting from {settings.port}.")
        sys.exit(1)

    settings.port = final_port

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)
