"""Typed configuration objects backed by python-decouple settings."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv

__all__ = [
    "BrowserSettings",
    "NavigationSettings",
    "AnalysisSettings",
    "QueueSettings",
    "TelemetrySettings",
    "Settings",
    "DEFAULT_CHALLENGE_PHRASES",
    "load_config",
    "get_settings",
]

DEFAULT_DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_CHALLENGE_PHRASES: tuple[str, ...] = (
    "checking your browser",
    "verify you are human",
    "cloudflare",
    "captcha",
)


@dataclass(frozen=True, slots=True)
class BrowserSettings:
    """Launch and identity knobs for the per-job Chromium session."""

    playwright_channel: str
    headless: bool
    extra_args: tuple[str, ...]
    desktop_user_agent: str
    desktop_viewport_width: int
    desktop_viewport_height: int
    accept_language: str


@dataclass(frozen=True, slots=True)
class NavigationSettings:
    """Timeouts and settle delays (milliseconds) used while loading pages."""

    navigation_timeout_ms: int
    post_navigation_settle_ms: int
    challenge_extra_wait_ms: int
    challenge_timeout_ms: int
    ready_state_timeout_ms: int
    device_settle_ms: int
    challenge_phrases: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class AnalysisSettings:
    """Bounds for CSS extraction and the screenshot pixel histogram."""

    pixel_sample_stride: int
    pixel_alpha_threshold: int
    pixel_quantize_step: int
    pixel_top_colors: int
    dominant_color_limit: int
    color_detail_limit: int
    font_detail_limit: int
    sample_text_length: int


@dataclass(frozen=True, slots=True)
class QueueSettings:
    """In-memory queue sizing."""

    concurrency: int
    max_retained_jobs: int
    batch_max_urls: int
    default_mobile_devices: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class TelemetrySettings:
    """Prometheus exporter port (0 disables the exporter)."""

    prometheus_port: int


@dataclass(frozen=True, slots=True)
class Settings:
    """Top-level immutable configuration container."""

    env_path: str
    browser: BrowserSettings
    navigation: NavigationSettings
    analysis: AnalysisSettings
    queue: QueueSettings
    telemetry: TelemetrySettings


def load_config(env_path: str = ".env") -> DecoupleConfig:
    """Return a python-decouple config anchored to the repository .env file.

    When the file is absent only the process environment and defaults apply.
    """

    if Path(env_path).is_file():
        return DecoupleConfig(RepositoryEnv(env_path))
    return DecoupleConfig(RepositoryEmpty())


def _int(cfg: DecoupleConfig, key: str, *, default: int) -> int:
    return cfg(key, cast=int, default=default)


def _bool(cfg: DecoupleConfig, key: str, *, default: bool) -> bool:
    return cfg(key, cast=bool, default=default)


def _csv_tuple(cfg: DecoupleConfig, key: str, *, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    raw = cfg(key, default="")
    if not raw:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=1)
def get_settings(env_path: str = ".env") -> Settings:
    """Load and memoize structured settings for the current process."""

    cfg = load_config(env_path)

    browser = BrowserSettings(
        playwright_channel=cfg("PLAYWRIGHT_CHANNEL", default="chromium"),
        headless=_bool(cfg, "BROWSER_HEADLESS", default=True),
        extra_args=_csv_tuple(cfg, "BROWSER_EXTRA_ARGS"),
        desktop_user_agent=cfg("DESKTOP_USER_AGENT", default=DEFAULT_DESKTOP_USER_AGENT),
        desktop_viewport_width=_int(cfg, "DESKTOP_VIEWPORT_WIDTH", default=1920),
        desktop_viewport_height=_int(cfg, "DESKTOP_VIEWPORT_HEIGHT", default=1080),
        accept_language=cfg("ACCEPT_LANGUAGE", default="en-US,en;q=0.9"),
    )
    navigation = NavigationSettings(
        navigation_timeout_ms=_int(cfg, "NAVIGATION_TIMEOUT_MS", default=60_000),
        post_navigation_settle_ms=_int(cfg, "POST_NAVIGATION_SETTLE_MS", default=5_000),
        challenge_extra_wait_ms=_int(cfg, "CHALLENGE_EXTRA_WAIT_MS", default=15_000),
        challenge_timeout_ms=_int(cfg, "CHALLENGE_TIMEOUT_MS", default=30_000),
        ready_state_timeout_ms=_int(cfg, "READY_STATE_TIMEOUT_MS", default=10_000),
        device_settle_ms=_int(cfg, "DEVICE_SETTLE_MS", default=3_000),
        challenge_phrases=_csv_tuple(cfg, "CHALLENGE_PHRASES", default=DEFAULT_CHALLENGE_PHRASES),
    )
    analysis = AnalysisSettings(
        pixel_sample_stride=_int(cfg, "PIXEL_SAMPLE_STRIDE", default=3),
        pixel_alpha_threshold=_int(cfg, "PIXEL_ALPHA_THRESHOLD", default=128),
        pixel_quantize_step=_int(cfg, "PIXEL_QUANTIZE_STEP", default=5),
        pixel_top_colors=_int(cfg, "PIXEL_TOP_COLORS", default=20),
        dominant_color_limit=_int(cfg, "DOMINANT_COLOR_LIMIT", default=10),
        color_detail_limit=_int(cfg, "COLOR_DETAIL_LIMIT", default=20),
        font_detail_limit=_int(cfg, "FONT_DETAIL_LIMIT", default=20),
        sample_text_length=_int(cfg, "SAMPLE_TEXT_LENGTH", default=50),
    )
    queue = QueueSettings(
        concurrency=_int(cfg, "QUEUE_CONCURRENCY", default=1),
        max_retained_jobs=_int(cfg, "QUEUE_MAX_RETAINED_JOBS", default=0),
        batch_max_urls=_int(cfg, "BATCH_MAX_URLS", default=10),
        default_mobile_devices=_csv_tuple(
            cfg,
            "DEFAULT_MOBILE_DEVICES",
            default=("iPhone 12", "Samsung Galaxy S21"),
        ),
    )
    if queue.concurrency < 1:
        msg = "QUEUE_CONCURRENCY must be >= 1"
        raise ValueError(msg)
    if queue.max_retained_jobs < 0:
        msg = "QUEUE_MAX_RETAINED_JOBS must be >= 0"
        raise ValueError(msg)
    if analysis.pixel_sample_stride < 1 or analysis.pixel_quantize_step < 1:
        msg = "PIXEL_SAMPLE_STRIDE and PIXEL_QUANTIZE_STEP must be >= 1"
        raise ValueError(msg)

    telemetry = TelemetrySettings(
        prometheus_port=_int(cfg, "PROMETHEUS_PORT", default=0),
    )

    return Settings(
        env_path=env_path,
        browser=browser,
        navigation=navigation,
        analysis=analysis,
        queue=queue,
        telemetry=telemetry,
    )


# Statically importable settings singleton for modules that prefer constants over DI.
settings: Final[Settings] = get_settings()
