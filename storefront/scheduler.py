"""Background job manager — named recurring jobs on the app's event loop.

Each started job owns one asyncio.Task (its timer). Every firing runs in
its own shielded task, so stop_job() cancels the timer immediately while a
firing already in progress completes. Exceptions inside a firing are caught
here, stored in last_result and logged; the schedule continues.

Timing keeps a fixed phase (start + k * interval). A firing that overruns
its slot is followed by exactly one immediate catch-up firing, never a burst.

Default jobs:
  - catalog-sync:     every CATALOG_SYNC_INTERVAL_MINUTES (started if CATALOG_SYNC_ENABLED)
  - preorder-release: every PREORDER_RELEASE_INTERVAL_MINUTES (started if PREORDER_RELEASE_ENABLED)
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from loguru import logger

from .exceptions import JobNotFoundError

CATALOG_SYNC = "catalog-sync"
PREORDER_RELEASE = "preorder-release"


@dataclass
class JobResult:
    success: bool
    message: str
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "finished_at": self.finished_at.isoformat(),
        }


@dataclass
class Job:
    id: str
    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[object]]
    is_running: bool = False
    is_executing: bool = False
    last_run: datetime | None = None
    next_run: datetime | None = None
    last_result: JobResult | None = None
    _task: asyncio.Task | None = field(default=None, repr=False)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "is_running": self.is_running,
            "is_executing": self.is_executing,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_result": self.last_result.as_dict() if self.last_result else None,
        }


def _describe(outcome) -> str:
    if outcome is None:
        return "ok"
    if isinstance(outcome, dict):
        return ", ".join(f"{k}={v}" for k, v in outcome.items())
    return str(outcome)


class BackgroundJobManager:
    """One instance per process (see main.py lifespan)."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._executions: set[asyncio.Task] = set()

    def _get(self, job_id: str) -> Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFoundError(job_id) from None

    def register_job(
        self,
        job_id: str,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[object]],
    ) -> Job:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        existing = self._jobs.get(job_id)
        if existing and existing.is_running:
            raise ValueError(f"Job {job_id} is running; stop it before re-registering")
        job = Job(id=job_id, name=name, interval_seconds=interval_seconds, func=func)
        self._jobs[job_id] = job
        logger.debug("Registered job {} every {}s", job_id, interval_seconds)
        return job

    # ── Lifecycle ───────────────────────────────────────────────────

    def start_job(self, job_id: str) -> bool:
        """Arm the timer and fire once immediately. False if unknown or already running."""
        job = self._jobs.get(job_id)
        if job is None:
            logger.warning("Cannot start unknown job {}", job_id)
            return False
        if job.is_running:
            logger.info("Job {} already running", job_id)
            return False

        job.is_running = True
        job.next_run = datetime.now(timezone.utc) + timedelta(seconds=job.interval_seconds)
        job._task = asyncio.create_task(self._run_loop(job), name=f"job:{job_id}")
        logger.info("Started job {} ({}s interval)", job_id, job.interval_seconds)
        return True

    def stop_job(self, job_id: str) -> bool:
        """Cancel the timer. A firing in progress completes. False if not running."""
        job = self._jobs.get(job_id)
        if job is None or not job.is_running:
            return False
        if job._task is not None:
            job._task.cancel()
            job._task = None
        job.is_running = False
        job.next_run = None
        logger.info("Stopped job {}", job_id)
        return True

    async def stop_all_jobs(self, timeout: float = 30.0) -> None:
        """Stop every timer, then give in-flight firings up to timeout seconds."""
        for job_id in list(self._jobs):
            self.stop_job(job_id)
        if self._executions:
            _, pending = await asyncio.wait(set(self._executions), timeout=timeout)
            if pending:
                logger.warning("{} job firings still running at shutdown", len(pending))

    async def execute_job_now(self, job_id: str) -> JobResult:
        """Run once out of band. The timer phase is left alone."""
        job = self._get(job_id)
        result = await self._fire(job)
        if result is None:
            return JobResult(False, f"Job {job_id} is already executing")
        return result

    # ── Accessors ───────────────────────────────────────────────────

    def get_all_jobs(self) -> list[dict]:
        return [job.as_dict() for job in self._jobs.values()]

    def get_job_status(self, job_id: str) -> dict:
        return self._get(job_id).as_dict()

    # ── Internals ───────────────────────────────────────────────────

    async def _fire(self, job: Job) -> JobResult | None:
        task = asyncio.create_task(self._execute(job), name=f"job-run:{job.id}")
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)
        return await asyncio.shield(task)

    async def _execute(self, job: Job) -> JobResult | None:
        if job.is_executing:
            logger.info("Skipping {}: previous run still executing", job.id)
            return None

        job.is_executing = True
        job.last_run = datetime.now(timezone.utc)
        try:
            outcome = await job.func()
            result = JobResult(True, _describe(outcome))
            logger.info("Job {} finished: {}", job.id, result.message)
        except Exception as e:
            result = JobResult(False, f"{type(e).__name__}: {e}")
            logger.error("Job {} failed: {}", job.id, result.message)
        finally:
            job.is_executing = False
        job.last_result = result
        return result

    async def _run_loop(self, job: Job) -> None:
        loop = asyncio.get_running_loop()
        interval = job.interval_seconds
        start = loop.time()
        slot = 0
        while True:
            await self._fire(job)

            now = loop.time()
            slot = max(slot + 1, int((now - start) // interval))
            delay = start + slot * interval - now
            if delay > 0:
                job.next_run = datetime.now(timezone.utc) + timedelta(seconds=delay)
                await asyncio.sleep(delay)
            else:
                logger.warning("Job {} overran its interval; running catch-up now", job.id)


def register_default_jobs(manager: BackgroundJobManager, catalog_service, session_factory, cache, settings) -> None:
    """Register catalog-sync and preorder-release; start the enabled ones."""
    from .services.preorder_service import release_matured_preorders

    async def _catalog_sync():
        summary = await catalog_service.sync_catalog()
        return summary.counts()

    async def _preorder_release():
        db = session_factory()
        try:
            result = release_matured_preorders(db, cache)
        finally:
            db.close()
        if result.failed:
            ids = ", ".join(f["id"] for f in result.failed)
            raise RuntimeError(f"released {len(result.released)}, failed {len(result.failed)}: {ids}")
        return {"released": len(result.released)}

    manager.register_job(
        CATALOG_SYNC, "Catalog sync", settings.catalog_sync_interval_minutes * 60, _catalog_sync
    )
    manager.register_job(
        PREORDER_RELEASE, "Preorder release", settings.preorder_release_interval_minutes * 60, _preorder_release
    )

    if settings.catalog_sync_enabled:
        manager.start_job(CATALOG_SYNC)
    if settings.preorder_release_enabled:
        manager.start_job(PREORDER_RELEASE)
