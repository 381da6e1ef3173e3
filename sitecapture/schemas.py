"""Pydantic DTOs shared across the queue and the HTTP adapter."""

from __future__ import annotations

from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

CaptureMode = Literal["desktop", "mobile", "both"]


def coerce_bool(value: Any) -> bool:
    """Strict boolean for loosely-typed option values ("false", 0, None, ...)."""

    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def validate_absolute_url(url: str) -> str:
    """Return ``url`` stripped, or raise ValueError unless it is absolute http(s)."""

    if not isinstance(url, str) or not url.strip():
        msg = "URL is required"
        raise ValueError(msg)
    candidate = url.strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        msg = f"'{candidate}' is not a valid absolute URL"
        raise ValueError(msg)
    return candidate


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CaptureOptions(WireModel):
    """How a job should capture and analyze its target page."""

    width: int = Field(default=1920, ge=1, le=16384, description="Desktop viewport width")
    height: int = Field(default=1080, ge=1, le=16384, description="Desktop viewport height")
    full_page: bool = Field(default=False, description="Capture the full scrollable height")
    capture_mode: CaptureMode = Field(default="both")
    mobile_devices: list[str] | None = Field(
        default=None,
        description="Device profile names; unknown names are skipped",
    )
    capture_colors: bool = Field(default=True)
    capture_fonts: bool = Field(default=True)

    @field_validator("full_page", "capture_colors", "capture_fonts", mode="before")
    @classmethod
    def _strict_bool(cls, value: Any) -> bool:
        return coerce_bool(value)

    @property
    def includes_devices(self) -> bool:
        return self.capture_mode in ("mobile", "both")


class JobCreateRequest(WireModel):
    """Payload clients submit to kick off a capture job."""

    url: str = Field(description="Target URL to capture")
    options: CaptureOptions = Field(default_factory=CaptureOptions)

    @field_validator("url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        return validate_absolute_url(value)


class BatchCreateRequest(WireModel):
    """Several URLs sharing one set of capture options."""

    urls: list[str] = Field(min_length=1)
    options: CaptureOptions = Field(default_factory=CaptureOptions)


class JobHandle(WireModel):
    job_id: int
    status: str
    url: str
    status_endpoint: str


class BatchResponse(WireModel):
    success: bool = True
    batch_id: str
    jobs: list[JobHandle]
    total_jobs: int


class QueueStats(WireModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
