"""
FastAPI application and API endpoints for FileConverter
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, HTTPException

from . import __version__
from .config import get_config
from .conversion import (
    ConfigurationError, build_encoder_arguments, find_ffmpeg,
    get_format_builder, supported_output_types
)
from .jobs import JobManager, get_job_manager, set_job_manager
from .models import (
    ConversionRequest, FormatInfo, HealthResponse, JobStatusResponse,
    StatsResponse
)

logger = logging.getLogger(__name__)

start_time: float = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global start_time

    start_time = time.time()
    config = get_config()

    job_manager = JobManager()
    set_job_manager(job_manager)

    logger.info(
        f"FileConverter v{__version__} started "
        f"({job_manager.max_workers} workers, ffmpeg: {find_ffmpeg(config.transcoder)})"
    )

    yield

    logger.info("Shutting down FileConverter...")
    job_manager.shutdown(wait=False)
    set_job_manager(None)


def create_app() -> FastAPI:
    app = FastAPI(
        title="FileConverter",
        description="Media file conversion jobs driven by FFmpeg",
        version=__version__,
        lifespan=lifespan,
    )

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        ffmpeg_path = find_ffmpeg(get_config().transcoder)
        return HealthResponse(
            status="healthy",
            version=__version__,
            uptime_seconds=time.time() - start_time,
            ffmpeg_path=ffmpeg_path,
            ffmpeg_found=os.path.isfile(ffmpeg_path),
            active_jobs=get_job_manager().get_active_count(),
        )

    @app.get("/api/stats", response_model=StatsResponse)
    async def get_stats():
        job_manager = get_job_manager()
        stats = job_manager.stats
        return StatsResponse(
            total_jobs_processed=stats.total_jobs_processed,
            successful_jobs=stats.successful_jobs,
            failed_jobs=stats.failed_jobs,
            cancelled_jobs=stats.cancelled_jobs,
            active_jobs=job_manager.get_active_count(),
            uptime_seconds=stats.uptime_seconds,
        )

    @app.get("/api/formats", response_model=List[FormatInfo])
    async def list_formats():
        """Output types FFmpeg can produce and the settings each one reads."""
        return [
            FormatInfo(
                output_type=output_type,
                required_settings=list(get_format_builder(output_type).required_settings),
            )
            for output_type in supported_output_types()
        ]

    @app.post("/api/convert", response_model=JobStatusResponse)
    async def start_conversion(request: ConversionRequest):
        """Start a new conversion job."""
        # Reject bad presets before a worker picks the job up
        try:
            build_encoder_arguments(request.output_type, request.settings)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=e.message)

        record = get_job_manager().submit(request)
        return record.to_status_response()

    @app.get("/api/convert/{job_id}", response_model=JobStatusResponse)
    async def get_job_status(job_id: str):
        """Get the status of a conversion job."""
        record = get_job_manager().get(job_id)
        if not record:
            raise HTTPException(status_code=404, detail="Job not found")
        return record.to_status_response()

    @app.post("/api/convert/{job_id}/cancel")
    async def cancel_job(job_id: str):
        """Cancel a conversion job."""
        job_manager = get_job_manager()
        if not job_manager.get(job_id):
            raise HTTPException(status_code=404, detail="Job not found")

        if not job_manager.cancel(job_id):
            raise HTTPException(status_code=400, detail="Job cannot be cancelled")

        return {"status": "cancelled", "job_id": job_id}

    return app


app = create_app()
