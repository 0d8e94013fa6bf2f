import asyncio
import itertools
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from langgraph.graph import END, StateGraph

from .branding import BrandingResolver, default_resolver
from .deployment import ArtifactPublisher, default_publisher, resolve_target
from .errors import (
    DeploymentError,
    InvalidTransitionError,
    JobTimeoutError,
    ManifestValidationError,
    PackagingError,
    PipelineError,
    QueueFullError,
)
from .job_store import JobStore, default_store
from .models import (
    STATUS_ORDER,
    ContentSubmission,
    DeploymentOptions,
    PipelineState,
    Priority,
    ProcessingJob,
    ProcessingOptions,
    ProcessingStatus,
)
from .notifier import WebhookNotifier
from .packager import PackageBuilder
from .settings import (
    ALLOW_PARTIAL_PACKAGING,
    DEPLOYMENT_BASE_URL,
    JOB_TIMEOUT_S,
    QUEUE_MAXSIZE,
    WORKER_COUNT,
)
from .transformer import apply_branding, normalize_scenes
from .validator import validate

logger = logging.getLogger(__name__)

PRIORITY_RANK = {Priority.HIGH: 0, Priority.NORMAL: 1, Priority.LOW: 2}
SHUTDOWN_ERROR = "Service shut down before the job finished"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


class JobOrchestrator:
    """Owns the job lifecycle: accepts submissions, runs the stage graph, records status.

    Submissions go onto a bounded priority queue drained by a fixed pool of
    worker tasks. Each job runs under a wall-clock deadline; a job that
    overruns it is failed with a timeout error.
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        branding: Optional[BrandingResolver] = None,
        packager: Optional[PackageBuilder] = None,
        publisher: Optional[ArtifactPublisher] = None,
        notifier: Optional[WebhookNotifier] = None,
        worker_count: int = WORKER_COUNT,
        queue_maxsize: int = QUEUE_MAXSIZE,
        job_timeout: float = JOB_TIMEOUT_S,
        allow_partial_packaging: bool = ALLOW_PARTIAL_PACKAGING,
        base_url: str = DEPLOYMENT_BASE_URL,
    ):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.store = store or default_store()
        self.branding = branding or default_resolver()
        self.packager = packager or PackageBuilder()
        self.publisher = publisher or default_publisher()
        self.notifier = notifier or WebhookNotifier()
        self.worker_count = worker_count
        self.job_timeout = job_timeout
        self.allow_partial_packaging = allow_partial_packaging
        self.base_url = base_url

        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue(maxsize=queue_maxsize)
        self._sequence = itertools.count()
        self._workers: List[asyncio.Task] = []
        # worker index -> job it is running
        self._active: Dict[int, str] = {}
        self.graph = self._build_graph()

    # --- lifecycle ---

    def start(self):
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"pipeline-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Started {self.worker_count} pipeline workers")

    async def stop(self):
        """Cancel the workers and fail every job that was running or still queued."""
        workers, self._workers = self._workers, []
        interrupted = list(self._active.values())
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._active.clear()

        while not self._queue.empty():
            _, _, job_id, _ = self._queue.get_nowait()
            interrupted.append(job_id)
            self._queue.task_done()

        if interrupted:
            logger.warning(f"Stopping with {len(interrupted)} unfinished jobs, marking them failed")
        for job_id in interrupted:
            await self._fail(job_id, [SHUTDOWN_ERROR])

    async def drain(self):
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def __aenter__(self) -> "JobOrchestrator":
        self.start()
        return self

    async def __aexit__(self, *exc_info):
        await self.stop()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    # --- public operations ---

    async def submit(self, manifest: Dict[str, Any], deployment_options: DeploymentOptions,
                     processing_options: Optional[ProcessingOptions] = None) -> ProcessingJob:
        """Record a ``received`` job and enqueue it. Returns before validation runs."""
        submission = ContentSubmission(
            game_manifest=manifest,
            deployment_options=deployment_options,
            processing_options=processing_options or ProcessingOptions(),
        )
        if self._queue.full():
            raise QueueFullError(f"Job queue is full ({self._queue.maxsize} pending)")

        game_id = manifest.get("gameId")
        job = ProcessingJob(
            job_id=generate_job_id(),
            game_id=game_id if isinstance(game_id, str) else None,
            municipality_id=deployment_options.municipality_id,
            formats=list(deployment_options.formats),
            message="Content received, starting validation",
            start_time=_now(),
        )
        await self._save(job)

        priority = PRIORITY_RANK[submission.processing_options.priority]
        try:
            self._queue.put_nowait((priority, next(self._sequence), job.job_id, submission))
        except asyncio.QueueFull:
            await self.store.delete_job(job.job_id)
            raise QueueFullError(f"Job queue is full ({self._queue.maxsize} pending)")

        logger.info(f"Accepted job {job.job_id} for game {job.game_id} ({submission.processing_options.priority.value} priority)")
        return job

    async def get_status(self, job_id: str) -> Optional[ProcessingJob]:
        return await self.store.get_job(job_id)

    async def list_jobs(self) -> List[ProcessingJob]:
        return await self.store.list_jobs()

    # --- worker ---

    async def _worker(self, index: int):
        while True:
            _, _, job_id, submission = await self._queue.get()
            self._active[index] = job_id
            try:
                await self.process(job_id, submission)
            except Exception:
                logger.exception(f"Worker {index} crashed while processing job {job_id}")
            finally:
                self._active.pop(index, None)
                self._queue.task_done()

    async def process(self, job_id: str, submission: ContentSubmission):
        """Run one job to a terminal state, then notify. Never raises for stage errors."""
        try:
            await asyncio.wait_for(self._run_pipeline(job_id, submission), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            error = JobTimeoutError(f"Job exceeded {self.job_timeout:g}s deadline")
            logger.error(f"Job {job_id} timed out: {error.message}")
            await self._fail(job_id, error.errors)
        except PipelineError as e:
            logger.error(f"Job {job_id} failed during {e.kind}: {e.message}")
            await self._fail(job_id, e.errors)
        except Exception as e:
            logger.exception(f"Job {job_id} failed with unexpected error")
            await self._fail(job_id, [f"{type(e).__name__}: {e}"])

        webhook_url = submission.processing_options.webhook_url
        if webhook_url:
            job = await self.store.get_job(job_id)
            if job and job.status.is_terminal:
                await self.notifier.notify(webhook_url, job)

    async def _run_pipeline(self, job_id: str, submission: ContentSubmission):
        logger.info(f"Starting pipeline for job {job_id}")
        final_state = await self.graph.ainvoke(PipelineState(job_id=job_id, submission=submission))
        await self._complete(
            job_id,
            final_state.get("deployment_urls") or {},
            list((final_state.get("packages") or {}).keys()),
            final_state.get("warnings") or [],
        )

    # --- stage graph ---

    def _build_graph(self):
        g = StateGraph(PipelineState)
        g.add_node("validate", self.node_validate)
        g.add_node("process", self.node_process)
        g.add_node("brand", self.node_brand)
        g.add_node("package", self.node_package)
        g.add_node("deploy", self.node_deploy)
        g.set_entry_point("validate")
        g.add_edge("validate", "process")
        g.add_edge("process", "brand")
        g.add_edge("brand", "package")
        g.add_edge("package", "deploy")
        g.add_edge("deploy", END)
        return g.compile()

    async def node_validate(self, state: PipelineState) -> dict:
        await self._advance(state.job_id, ProcessingStatus.VALIDATING, 10, "Validating content structure")
        result = await asyncio.to_thread(validate, state.submission.game_manifest)
        logger.info(f"Validated job {state.job_id} in {result.validation_time:.1f}ms "
                    f"({len(result.errors)} errors, {len(result.warnings)} warnings)")
        if not result.is_valid:
            raise ManifestValidationError(f"Validation failed: {'; '.join(result.errors)}", result.errors)
        return {"validation": result, "warnings": list(result.warnings)}

    async def node_process(self, state: PipelineState) -> dict:
        await self._advance(state.job_id, ProcessingStatus.PROCESSING, 30, "Processing game content")
        manifest = normalize_scenes(state.submission.game_manifest)
        return {"manifest": manifest}

    async def node_brand(self, state: PipelineState) -> dict:
        await self._advance(state.job_id, ProcessingStatus.BRANDING, 50, "Applying municipal branding")
        options = state.submission.deployment_options
        profile = self.branding.resolve(options.municipality_id)
        branded = apply_branding(state.manifest, profile, options.branding_level)
        return {"manifest": branded, "profile": profile}

    async def node_package(self, state: PipelineState) -> dict:
        await self._advance(state.job_id, ProcessingStatus.PACKAGING, 70, "Creating deployment packages")
        formats = state.submission.deployment_options.formats
        report = await asyncio.to_thread(self.packager.build, state.manifest, formats)
        warnings = list(state.warnings)
        if report.failures:
            failed = ", ".join(report.failures)
            if not self.allow_partial_packaging or not report.packages:
                raise PackagingError(f"Packaging failed for: {failed}", list(report.failures.values()))
            logger.warning(f"Job {state.job_id} continuing without formats: {failed}")
            warnings.extend(report.failures.values())
        return {"packages": report.packages, "warnings": warnings}

    async def node_deploy(self, state: PipelineState) -> dict:
        dry_run = state.submission.processing_options.dry_run
        message = "Resolving deployment URLs (dry run)" if dry_run else "Deploying to municipal infrastructure"
        await self._advance(state.job_id, ProcessingStatus.DEPLOYING, 90, message)
        options = state.submission.deployment_options
        urls: Dict[str, str] = {}
        for fmt, package in state.packages.items():
            try:
                target = resolve_target(fmt, package, options, self.base_url)
            except ValueError as e:
                raise DeploymentError(f"Could not resolve {fmt} deployment: {e}") from e
            if not dry_run:
                await self.publisher.publish(target, package)
            urls[fmt] = target.url
        return {"deployment_urls": urls}

    # --- status transitions ---

    async def _save(self, job: ProcessingJob):
        if not await self.store.set_job(job):
            logger.error(f"Could not persist job {job.job_id} ({job.status.value})")

    async def _advance(self, job_id: str, status: ProcessingStatus, progress: int, message: str, **changes):
        job = await self.store.get_job(job_id)
        if job is None:
            raise InvalidTransitionError(f"Unknown job {job_id}")
        if job.status.is_terminal:
            raise InvalidTransitionError(f"Job {job_id} is already {job.status.value}")
        if STATUS_ORDER.index(status) < STATUS_ORDER.index(job.status):
            raise InvalidTransitionError(f"Job {job_id} cannot move from {job.status.value} back to {status.value}")

        logger.info(f"Job {job_id}: {status.value} ({progress}%) {message}")
        updates = {"status": status, "progress": max(job.progress, progress), "message": message, **changes}
        await self._save(job.model_copy(update=updates))

    async def _complete(self, job_id: str, urls: Dict[str, str], built_formats: List[str], warnings: List[str]):
        if not urls or set(urls) != set(built_formats):
            raise DeploymentError("Deployment did not produce a URL for every built package")
        await self._advance(
            job_id, ProcessingStatus.COMPLETED, 100, "Game successfully deployed",
            deployment_urls=dict(urls), warnings=list(warnings), end_time=_now(),
        )

    async def _fail(self, job_id: str, errors: List[str]):
        job = await self.store.get_job(job_id)
        if job is None or job.status.is_terminal:
            return
        errors = [e for e in errors if e] or ["Unknown error"]
        failed = job.model_copy(update={
            "status": ProcessingStatus.FAILED,
            "message": f"Processing failed: {errors[0]}",
            "errors": errors,
            "deployment_urls": None,
            "end_time": _now(),
        })
        await self._save(failed)
