"""Prometheus collectors for capture jobs."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

JOBS_TOTAL = Counter(
    "sitecapture_jobs_total",
    "Capture jobs that reached a terminal state",
    labelnames=("status",),
)
JOB_DURATION_SECONDS = Histogram(
    "sitecapture_job_duration_seconds",
    "Wall-clock duration of capture-and-analyze runs",
    buckets=(5, 10, 20, 30, 45, 60, 90, 120, 180, 300),
)
DEVICES_SKIPPED_TOTAL = Counter(
    "sitecapture_devices_skipped_total",
    "Requested device names that were not in the registry",
)
DEGRADED_STEPS_TOTAL = Counter(
    "sitecapture_degraded_steps_total",
    "Pipeline steps that timed out or failed without failing the job",
    labelnames=("step",),
)


def record_job_completion(status: str, duration_seconds: float | None = None) -> None:
    JOBS_TOTAL.labels(status=status).inc()
    if duration_seconds is not None and duration_seconds >= 0:
        JOB_DURATION_SECONDS.observe(duration_seconds)


def record_device_skipped() -> None:
    DEVICES_SKIPPED_TOTAL.inc()


def record_degraded_step(step: str) -> None:
    DEGRADED_STEPS_TOTAL.labels(step=step).inc()
