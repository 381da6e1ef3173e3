"""In-memory job registry and sequential capture scheduler."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from sitecapture import metrics
from sitecapture.schemas import QueueStats

LOGGER = logging.getLogger(__name__)

ProgressReporter = Callable[[int], None]
RunnerType = Callable[["Job", ProgressReporter], Awaitable[Dict[str, Any]]]

DISPATCH_PROGRESS = 25


class JobStatus(str, Enum):
    """Lifecycle states; transitions only move forward."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
_ALLOWED_TRANSITIONS = {
    JobStatus.WAITING: frozenset({JobStatus.ACTIVE}),
    JobStatus.ACTIVE: _TERMINAL,
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    """Raised when a job would move backwards or leave a terminal state."""


@dataclass(frozen=True, slots=True)
class Job:
    """Immutable view of one capture request; the queue replaces it on change."""

    id: int
    type: str
    payload: Any
    created_at: datetime
    status: JobStatus = JobStatus.WAITING
    progress: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    @property
    def url(self) -> str | None:
        return getattr(self.payload, "url", None)


class JobQueue:
    """FIFO scheduler running at most ``concurrency`` pipeline runs at once.

    The default single worker gives strict submission-order execution. Jobs
    live in memory only; ``max_retained_jobs`` (0 = unbounded) evicts the
    oldest terminal jobs once the registry grows past the cap.
    """

    def __init__(
        self,
        *,
        runner: RunnerType | None = None,
        concurrency: int = 1,
        max_retained_jobs: int = 0,
    ) -> None:
        if concurrency < 1:
            msg = "concurrency must be >= 1"
            raise ValueError(msg)
        if runner is None:
            from sitecapture.pipeline import CapturePipeline

            runner = CapturePipeline()
        self._runner = runner
        self._concurrency = concurrency
        self._max_retained_jobs = max(0, max_retained_jobs)
        self._jobs: Dict[int, Job] = {}
        self._pending: Deque[int] = deque()
        self._next_id = 1
        self._active_workers = 0
        self._worker_tasks: set[asyncio.Task[None]] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def submit(self, job_type: str, payload: Any) -> Job:
        """Register a waiting job and start draining if a worker slot is free."""

        job = Job(
            id=self._next_id,
            type=job_type,
            payload=payload,
            created_at=_now(),
        )
        self._next_id += 1
        self._jobs[job.id] = job
        self._pending.append(job.id)
        self._idle.clear()
        LOGGER.info("Queued job %s (%s) for %s", job.id, job_type, job.url)
        self._evict_terminal_jobs()
        self._spawn_workers()
        return job

    def get_job(self, job_id: int | str) -> Job | None:
        try:
            key = int(job_id)
        except (TypeError, ValueError):
            return None
        return self._jobs.get(key)

    def get_by_status(self, status: JobStatus | str) -> List[Job]:
        wanted = JobStatus(status)
        return [job for job in self._jobs.values() if job.status is wanted]

    def stats(self) -> QueueStats:
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1
        return QueueStats(
            waiting=counts[JobStatus.WAITING],
            active=counts[JobStatus.ACTIVE],
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            total=len(self._jobs),
        )

    def set_progress(self, job_id: int, value: int) -> None:
        """Raise an active job's progress; never lowers it and never reports 100 early."""

        job = self._jobs.get(job_id)
        if job is None or job.status is not JobStatus.ACTIVE:
            return
        clamped = max(0, min(int(value), 99))
        if clamped > job.progress:
            self._jobs[job_id] = replace(job, progress=clamped)

    async def wait_idle(self) -> None:
        """Block until no job is waiting or active."""

        await self._idle.wait()

    async def shutdown(self) -> None:
        tasks = list(self._worker_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Worker loop: run the oldest waiting job until none remain."""

        try:
            while self._pending:
                job_id = self._pending.popleft()
                job = self._jobs.get(job_id)
                if job is None or job.status is not JobStatus.WAITING:
                    continue
                await self._execute(job)
        finally:
            self._active_workers -= 1
            if self._active_workers == 0 and not self._pending:
                self._idle.set()

    def _spawn_workers(self) -> None:
        while self._pending and self._active_workers < self._concurrency:
            self._active_workers += 1
            task = asyncio.create_task(self.drain())
            self._worker_tasks.add(task)
            task.add_done_callback(self._worker_tasks.discard)

    async def _execute(self, job: Job) -> None:
        job = self._transition(
            job.id,
            JobStatus.ACTIVE,
            started_at=_now(),
            progress=DISPATCH_PROGRESS,
        )
        LOGGER.info("Job %s started processing %s", job.id, job.url)
        started = time.perf_counter()
        try:
            result = await self._runner(job, partial(self.set_progress, job.id))
        except asyncio.CancelledError:
            self._transition(job.id, JobStatus.FAILED, error="Job cancelled", failed_at=_now())
            raise
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            LOGGER.error("Job %s failed: %s", job.id, message, exc_info=True)
            self._transition(job.id, JobStatus.FAILED, error=message, failed_at=_now())
            metrics.record_job_completion(JobStatus.FAILED.value, time.perf_counter() - started)
            return

        self._transition(
            job.id,
            JobStatus.COMPLETED,
            result=result,
            completed_at=_now(),
            progress=100,
        )
        metrics.record_job_completion(JobStatus.COMPLETED.value, time.perf_counter() - started)
        LOGGER.info("Job %s completed for %s", job.id, job.url)

    def _transition(self, job_id: int, status: JobStatus, **changes: Any) -> Job:
        current = self._jobs[job_id]
        if status not in _ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTransition(f"Job {job_id}: {current.status.value} -> {status.value}")
        if "progress" in changes:
            changes["progress"] = max(current.progress, changes["progress"])
        updated = replace(current, status=status, **changes)
        self._jobs[job_id] = updated
        if updated.is_terminal:
            self._evict_terminal_jobs()
        return updated

    def _evict_terminal_jobs(self) -> None:
        limit = self._max_retained_jobs
        if not limit or len(self._jobs) <= limit:
            return
        for job_id in [job.id for job in self._jobs.values() if job.is_terminal]:
            if len(self._jobs) <= limit:
                break
            del self._jobs[job_id]
            LOGGER.debug("Evicted job %s from registry", job_id)


def job_snapshot(job: Job) -> Dict[str, Any]:
    """Poll payload for a job: result/error appear only once terminal."""

    payload: Dict[str, Any] = {
        "jobId": job.id,
        "type": job.type,
        "status": job.status.value,
        "progress": job.progress,
        "url": job.url,
        "createdAt": job.created_at.isoformat(),
    }
    if job.started_at is not None:
        payload["startedAt"] = job.started_at.isoformat()
    if job.status is JobStatus.COMPLETED:
        payload["result"] = job.result
        if job.completed_at is not None:
            payload["completedAt"] = job.completed_at.isoformat()
            if job.started_at is not None:
                elapsed = (job.completed_at - job.started_at).total_seconds()
                payload["processingTime"] = f"{elapsed:.3f}s"
    elif job.status is JobStatus.FAILED:
        payload["error"] = job.error
        if job.failed_at is not None:
            payload["failedAt"] = job.failed_at.isoformat()
    return payload


def _now() -> datetime:
    return datetime.now(timezone.utc)
