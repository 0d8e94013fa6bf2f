import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .errors import QueueFullError
from .models import CamelModel, ContentSubmission, ProcessingStatus, ValidationResult
from .orchestrator import JobOrchestrator
from .settings import ALLOWED_ORIGINS, SERVICE_NAME, SERVICE_VERSION
from .validator import validate

logger = logging.getLogger(__name__)


class ValidationRequest(BaseModel):
    content: Any = None


class BatchValidationRequest(BaseModel):
    items: List[ValidationRequest]


class BatchValidationResponse(CamelModel):
    results: List[ValidationResult]
    total_processing_time: float


def processing_time(start: datetime, end: Optional[datetime]) -> str:
    if end is None:
        return "0m 0s"
    seconds = int((end - start).total_seconds())
    return f"{seconds // 60}m {seconds % 60}s"


def _validate_content(content: Any) -> ValidationResult:
    if content is None:
        return ValidationResult(is_valid=False, errors=["No content provided for validation"])
    return validate(content)


def create_app(orchestrator_factory: Optional[Callable[[], JobOrchestrator]] = None) -> FastAPI:
    factory = orchestrator_factory or JobOrchestrator

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Created here so the job queue binds to the server's event loop
        orchestrator = factory()
        app.state.orchestrator = orchestrator
        orchestrator.start()
        try:
            yield
        finally:
            await orchestrator.stop()

    app = FastAPI(title="DevTeam Content Integration API", version=SERVICE_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
    )

    def _orchestrator(request: Request) -> JobOrchestrator:
        return request.app.state.orchestrator

    @app.get("/health")
    def health(request: Request):
        orchestrator = _orchestrator(request)
        return {
            "ok": True,
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "workers": orchestrator.worker_count if orchestrator.running else 0,
            "queueSize": orchestrator.queue_size,
        }

    @app.post("/api/v1/process-content", status_code=202)
    async def process_content(submission: ContentSubmission, request: Request):
        orchestrator = _orchestrator(request)
        try:
            job = await orchestrator.submit(
                submission.game_manifest,
                submission.deployment_options,
                submission.processing_options,
            )
        except QueueFullError as e:
            logger.warning(f"Rejected submission: {e}")
            raise HTTPException(503, str(e))

        return {
            "jobId": job.job_id,
            "status": job.status.value,
            "progress": job.progress,
            "message": job.message,
            "startTime": job.start_time.isoformat(),
            "processingUrl": f"/api/v1/process-content/{job.job_id}",
        }

    @app.get("/api/v1/process-content/{job_id}")
    async def job_status(job_id: str, request: Request):
        job = await _orchestrator(request).get_status(job_id)
        if not job:
            raise HTTPException(404, f"No processing job found with ID: {job_id}")
        return job.to_payload()

    @app.get("/api/v1/process-content")
    async def list_jobs(
        request: Request,
        status: Optional[ProcessingStatus] = None,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        jobs = await _orchestrator(request).list_jobs()
        if status is not None:
            jobs = [j for j in jobs if j.status == status]
        return {
            "totalJobs": len(jobs),
            "limit": limit,
            "offset": offset,
            "jobs": [j.to_payload() for j in jobs[offset:offset + limit]],
        }

    @app.get("/api/v1/game-delivery/{job_id}")
    async def game_delivery(job_id: str, request: Request):
        job = await _orchestrator(request).get_status(job_id)
        if not job:
            raise HTTPException(404, f"No processing job found with ID: {job_id}")
        if job.status != ProcessingStatus.COMPLETED:
            raise HTTPException(409, f"Job is currently {job.status.value} ({job.progress}% complete)")
        return {
            "jobId": job.job_id,
            "deploymentUrls": job.deployment_urls,
            "processingTime": processing_time(job.start_time, job.end_time),
        }

    @app.post("/api/v1/validate-content", response_model=ValidationResult, response_model_by_alias=True)
    def validate_content(req: ValidationRequest):
        result = _validate_content(req.content)
        if not result.is_valid:
            logger.info(f"Content validation failed with {len(result.errors)} errors")
        return result

    @app.post("/api/v1/validate-content/batch", response_model=BatchValidationResponse)
    def validate_batch(req: BatchValidationRequest):
        started = time.perf_counter()
        results = [_validate_content(item.content) for item in req.items]
        return BatchValidationResponse(
            results=results,
            total_processing_time=round((time.perf_counter() - started) * 1000, 3),
        )

    return app


app = create_app()
