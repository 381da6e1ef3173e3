"""FastAPI adapter exposing the capture queue."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, status
from prometheus_client import start_http_server
from prometheus_fastapi_instrumentator import Instrumentator

from sitecapture.jobs import Job, JobQueue, job_snapshot
from sitecapture.pipeline import JOB_TYPE, CapturePipeline
from sitecapture.schemas import (
    BatchCreateRequest,
    BatchResponse,
    JobCreateRequest,
    JobHandle,
    QueueStats,
    validate_absolute_url,
)
from sitecapture.settings import settings

LOGGER = logging.getLogger(__name__)
_PROMETHEUS_EXPORTER_STARTED = False


def _start_prometheus_exporter() -> None:
    """Expose Prometheus metrics on the configured auxiliary port."""

    global _PROMETHEUS_EXPORTER_STARTED
    if _PROMETHEUS_EXPORTER_STARTED:
        return
    port = settings.telemetry.prometheus_port
    if port <= 0:
        return
    try:
        start_http_server(port)
    except OSError as exc:  # pragma: no cover - system dependent
        LOGGER.warning("Prometheus exporter failed to bind on port %s: %s", port, exc)
        return
    _PROMETHEUS_EXPORTER_STARTED = True
    LOGGER.info("Prometheus exporter listening on port %s", port)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    _start_prometheus_exporter()
    yield
    await JOB_QUEUE.shutdown()


app = FastAPI(title="Site Capture", lifespan=_lifespan)
instrumentator = Instrumentator()
instrumentator.instrument(app)
try:
    instrumentator.expose(app, include_in_schema=False)
except ValueError:  # pragma: no cover - already registered
    LOGGER.debug("Prometheus /metrics endpoint already exposed")

JOB_QUEUE = JobQueue(
    runner=CapturePipeline(settings),
    concurrency=settings.queue.concurrency,
    max_retained_jobs=settings.queue.max_retained_jobs,
)


def _handle(job: Job) -> JobHandle:
    return JobHandle(
        job_id=job.id,
        status=job.status.value,
        url=job.url or "",
        status_endpoint=f"/api/job/{job.id}",
    )


@app.get("/health", tags=["health"])
async def healthcheck() -> dict[str, str]:
    """Return a simple status useful for smoke tests."""

    return {"status": "ok"}


@app.post(
    "/api/screenshot-async",
    response_model=JobHandle,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_capture(request: JobCreateRequest) -> JobHandle:
    job = JOB_QUEUE.submit(JOB_TYPE, request)
    return _handle(job)


@app.get("/api/job/{job_id}")
async def fetch_job(job_id: str) -> dict[str, Any]:
    job = JOB_QUEUE.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_snapshot(job)


@app.post(
    "/api/batch-screenshot",
    response_model=BatchResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_batch(request: BatchCreateRequest) -> BatchResponse:
    limit = settings.queue.batch_max_urls
    if len(request.urls) > limit:
        raise HTTPException(status_code=400, detail=f"Maximum {limit} URLs allowed per batch")

    invalid: list[dict[str, Any]] = []
    urls: list[str] = []
    for index, url in enumerate(request.urls):
        try:
            urls.append(validate_absolute_url(url))
        except ValueError:
            invalid.append({"index": index, "url": url})
    if invalid:
        raise HTTPException(status_code=400, detail={"error": "Invalid URLs found", "invalidUrls": invalid})

    handles = [
        _handle(JOB_QUEUE.submit(JOB_TYPE, JobCreateRequest(url=url, options=request.options)))
        for url in urls
    ]
    stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return BatchResponse(batch_id=f"batch-{stamp}", jobs=handles, total_jobs=len(handles))


@app.get("/api/queue/stats", response_model=QueueStats, response_model_by_alias=True)
async def queue_stats() -> QueueStats:
    return JOB_QUEUE.stats()
