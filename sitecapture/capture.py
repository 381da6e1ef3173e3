"""Single capture pass: screenshot plus font, color and pixel analysis."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from playwright.async_api import Page

from sitecapture import metrics
from sitecapture.extraction import ColorProfile, FontProfile, extract_colors, extract_fonts
from sitecapture.histogram import PixelHistogram, analyze_screenshot
from sitecapture.schemas import coerce_bool
from sitecapture.settings import AnalysisSettings

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CaptureRequest:
    """Per-pass knobs derived from the job's capture options."""

    full_page: bool
    capture_fonts: bool
    capture_colors: bool
    viewport: dict[str, Any]
    user_agent: str
    device: str | None = None
    device_scale_factor: float = 1


@dataclass(slots=True)
class CaptureResult:
    """Output of one desktop or device pass."""

    png_bytes: bytes
    viewport: dict[str, Any]
    user_agent: str
    full_page: bool
    device: str | None = None
    device_scale_factor: float = 1
    final_url: str | None = None
    fonts: Optional[FontProfile] = None
    colors: Optional[ColorProfile] = None
    pixel_histogram: Optional[PixelHistogram] = None

    def analysis_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "colors": self.colors.to_payload() if self.colors else None,
            "fonts": self.fonts.to_payload() if self.fonts else None,
            "pixelHistogram": self.pixel_histogram.to_payload() if self.pixel_histogram else None,
        }
        if self.device:
            payload = {"device": self.device, **payload}
        return payload


async def take_screenshot(page: Page, *, full_page: Any, viewport: dict[str, Any]) -> bytes:
    if coerce_bool(full_page):
        return await page.screenshot(type="png", full_page=True)
    clip = {
        "x": 0,
        "y": 0,
        "width": int(viewport["width"]),
        "height": int(viewport["height"]),
    }
    return await page.screenshot(type="png", full_page=False, clip=clip)


async def capture_one(page: Page, request: CaptureRequest, analysis: AnalysisSettings) -> CaptureResult:
    """Screenshot the page and run the requested extraction sub-steps.

    Sub-step failures leave their profile as None; only the screenshot itself
    may raise.
    """

    label = request.device or "desktop"
    full_page = coerce_bool(request.full_page)
    png_bytes = await take_screenshot(page, full_page=full_page, viewport=request.viewport)
    LOGGER.debug("Captured %s screenshot (%d bytes)", label, len(png_bytes))

    result = CaptureResult(
        png_bytes=png_bytes,
        viewport=dict(request.viewport),
        user_agent=request.user_agent,
        full_page=full_page,
        device=request.device,
        device_scale_factor=request.device_scale_factor,
    )

    if request.capture_fonts:
        result.fonts = await extract_fonts(
            page,
            detail_limit=analysis.font_detail_limit,
            sample_length=analysis.sample_text_length,
        )

    if request.capture_colors:
        result.colors = await extract_colors(
            page,
            dominant_limit=analysis.dominant_color_limit,
            detail_limit=analysis.color_detail_limit,
            sample_length=analysis.sample_text_length,
        )
        result.pixel_histogram = await _pixel_histogram(png_bytes, analysis, label=label)

    return result


async def _pixel_histogram(png_bytes: bytes, analysis: AnalysisSettings, *, label: str) -> Optional[PixelHistogram]:
    try:
        histogram = await analyze_screenshot(
            png_bytes,
            stride=analysis.pixel_sample_stride,
            alpha_threshold=analysis.pixel_alpha_threshold,
            step=analysis.pixel_quantize_step,
            top_n=analysis.pixel_top_colors,
        )
    except Exception as exc:
        LOGGER.warning("Pixel analysis failed for %s: %s", label, exc)
        metrics.record_degraded_step("pixels")
        return None
    LOGGER.debug(
        "Pixel analysis for %s: %d sampled pixels, %d buckets",
        label,
        histogram.total_pixels,
        len(histogram.colors),
    )
    return histogram
