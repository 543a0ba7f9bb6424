"""
FastAPI Application - ServeSense Motion Analysis API
Serve video analysis, target profile and saved sessions.
"""

import shutil
import uuid
import logging
from pathlib import Path

from fastapi import FastAPI, UploadFile, File, Form, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Internal imports
from config.settings import get_settings
from core.pipeline import ServeAnalysisPipeline, create_pipeline
from core.pose_source import resolve_pose_backend
from core.session_recorder import JSONSessionStore
from core.similarity import DEFAULT_TARGET
from core.coaching import METRIC_BANDS
from exceptions import (
    ServeSenseException,
    InvalidVideoFormat,
    FileTooLarge,
    VideoProcessingError
)
from logging_config import setup_logging
from middleware.error_handler import setup_error_handlers
from middleware.performance import PerformanceMiddleware
from middleware.rate_limiter import limiter, setup_rate_limiting

# Load settings
settings = get_settings()

setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    log_file=settings.LOG_FILE
)
logger = logging.getLogger(__name__)

# =============================================================================
# Application Factory
# =============================================================================

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    show_docs = settings.DEBUG and not settings.is_production

    app = FastAPI(
        title=settings.APP_NAME,
        description="Tennis serve motion analysis: pose, racket tracking, metrics and coaching",
        version=settings.APP_VERSION,
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
        openapi_url="/openapi.json" if show_docs else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID"],
        max_age=3600,  # Cache preflight for 1 hour
    )

    app.add_middleware(PerformanceMiddleware)
    setup_error_handlers(app)
    setup_rate_limiting(app)

    return app


app = create_app()

# =============================================================================
# Global State
# =============================================================================

# Allowed video types with extensions
ALLOWED_VIDEO_TYPES = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/webm": ".webm"
}

UPLOAD_DIR = Path(settings.UPLOAD_DIR)
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

session_store = JSONSessionStore(settings.SESSIONS_DIR)

# Resolved once so a missing estimator is not retried on every request
POSE_BACKEND = resolve_pose_backend(settings.POSE_BACKEND)


def build_pipeline() -> ServeAnalysisPipeline:
    """Fresh pipeline per analysis; throttles and history are per video."""
    return create_pipeline(
        pose_backend=POSE_BACKEND,
        dominant_side=settings.DOMINANT_SIDE,
        store=session_store
    )


def run_analysis(video_path: str, save: bool) -> dict:
    """Analyze one uploaded video, releasing the pipeline's estimator afterwards"""
    with build_pipeline() as pipeline:
        return pipeline.analyze_video(video_path, save)

# =============================================================================
# Response Models
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    service: str
    version: str

# =============================================================================
# File Validation Helpers
# =============================================================================

def validate_video_file(file: UploadFile) -> str:
    """
    Validate uploaded video file.

    Returns:
        Generated safe filename

    Raises:
        InvalidVideoFormat: If file type not allowed
        FileTooLarge: If file exceeds size limit
    """
    if file.content_type not in ALLOWED_VIDEO_TYPES:
        raise InvalidVideoFormat(
            content_type=file.content_type or "unknown",
            allowed_types=list(ALLOWED_VIDEO_TYPES.keys())
        )

    if file.size and file.size > settings.max_video_size_bytes:
        raise FileTooLarge(
            file_size_mb=file.size / (1024 * 1024),
            max_size_mb=settings.MAX_VIDEO_SIZE_MB
        )

    ext = ALLOWED_VIDEO_TYPES.get(file.content_type, ".mp4")
    return f"{uuid.uuid4()}{ext}"


def cleanup_file(filepath: Path) -> None:
    try:
        if filepath.exists():
            filepath.unlink()
    except OSError as e:
        logger.error(f"Failed to cleanup file {filepath}: {e}")

# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/", response_model=HealthResponse, tags=["Health"])
async def root():
    """Root endpoint - basic health check."""
    return HealthResponse(
        status="ok",
        service=settings.APP_NAME,
        version=settings.APP_VERSION
    )


@app.get("/health", tags=["Health"])
async def health():
    """Simple health check for load balancers."""
    return {"status": "healthy"}


@app.get("/health/live", tags=["Health"])
async def health_live():
    """Liveness check - is service responding?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"])
async def health_ready():
    """Readiness check - upload and session storage usable?"""
    try:
        disk = shutil.disk_usage(UPLOAD_DIR)
        if disk.free < 100 * 1024 * 1024:  # Less than 100MB
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "reason": "low_disk_space"}
            )

        if not UPLOAD_DIR.exists():
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "reason": "upload_dir_missing"}
            )

        if not session_store.directory.exists():
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "reason": "sessions_dir_missing"}
            )

        return {"status": "ready"}
    except OSError as e:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": str(e)}
        )

# =============================================================================
# Target Profile
# =============================================================================

@app.get("/api/targets", tags=["Analysis"])
async def get_targets():
    """Target serve profile and the good band of each coached metric."""
    return {
        "target": DEFAULT_TARGET.to_dict(),
        "good_bands": {
            name: {"low": band.low, "high": band.high}
            for name, band in METRIC_BANDS.items()
        }
    }

# =============================================================================
# Analyze Endpoint
# =============================================================================

@app.post("/api/analyze", tags=["Analysis"])
@limiter.limit(settings.RATE_LIMIT_ANALYZE)
async def analyze_video(
    request: Request,
    file: UploadFile = File(...),
    save: bool = Form(False)
):
    """
    Upload a serve video and analyze it.

    - **file**: Video file (MP4, MOV, AVI, WebM)
    - **save**: Persist the resulting session
    """
    safe_filename = validate_video_file(file)
    filepath = UPLOAD_DIR / safe_filename

    try:
        with open(filepath, "wb") as buffer:
            # Read in chunks to handle large files
            chunk_size = 1024 * 1024
            total_size = 0

            while True:
                chunk = await file.read(chunk_size)
                if not chunk:
                    break

                total_size += len(chunk)
                if total_size > settings.max_video_size_bytes:
                    raise FileTooLarge(
                        file_size_mb=total_size / (1024 * 1024),
                        max_size_mb=settings.MAX_VIDEO_SIZE_MB
                    )

                buffer.write(chunk)

        logger.info(f"Video uploaded for analysis: {safe_filename} ({total_size / 1024 / 1024:.1f}MB)")

        return await run_in_threadpool(run_analysis, str(filepath), save)

    except ServeSenseException:
        raise
    except Exception as e:
        logger.error(f"Analysis failed: {e}", exc_info=True)
        raise VideoProcessingError(f"Analysis failed: {str(e)}", stage="analysis")
    finally:
        cleanup_file(filepath)

# =============================================================================
# Session Management Endpoints
# =============================================================================

@app.get("/api/sessions", tags=["Sessions"])
async def list_sessions():
    """List saved sessions (lightweight index entries)."""
    return {"sessions": session_store.list_index()}


@app.get("/api/sessions/{session_key}", tags=["Sessions"])
async def get_session(session_key: str):
    """Full saved session record."""
    return session_store.load(session_key).to_dict()


@app.delete("/api/sessions/{session_key}", tags=["Sessions"])
async def delete_session(session_key: str):
    """Delete a saved session and its index entry."""
    session_store.delete(session_key)
    return {"deleted": session_key}

# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
