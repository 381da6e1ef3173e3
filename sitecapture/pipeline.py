"""Capture-and-analyze run for one job: launch, navigate, capture, tear down."""

from __future__ import annotations

import base64
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

from playwright.async_api import Page

from sitecapture.browser import BrowserSession, acquire_session, emulate_device, release_session
from sitecapture.capture import CaptureRequest, CaptureResult, capture_one
from sitecapture.devices import DEVICE_PROFILES, DeviceProfile
from sitecapture.emulation import Emulator, for_each_device
from sitecapture.navigation import ChallengeDetector, NavigationOutcome, navigate
from sitecapture.schemas import CaptureOptions, JobCreateRequest
from sitecapture.settings import BrowserSettings, NavigationSettings, Settings, get_settings

LOGGER = logging.getLogger(__name__)

JOB_TYPE = "capture-and-analyze"

ProgressReporter = Callable[[int], None]
SessionAcquirer = Callable[..., Awaitable[BrowserSession]]
SessionReleaser = Callable[[BrowserSession], Awaitable[None]]
Navigator = Callable[..., Awaitable[NavigationOutcome]]

_METADATA_SCRIPT = """
() => {
    const meta = (name) => document.querySelector(`meta[name="${name}"]`)?.content || '';
    return {
        title: document.title,
        description: meta('description'),
        favicon: document.querySelector('link[rel*="icon"]')?.href || '',
        viewport: meta('viewport'),
        mobileOptimized: meta('MobileOptimized'),
        handheldFriendly: meta('HandheldFriendly'),
    };
}
"""


class CapturePipeline:
    """Callable job runner wiring the session, navigation and capture stages.

    Collaborators are injectable so the stage ordering and the session
    release guarantee can be exercised without Chromium.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        acquire: SessionAcquirer | None = None,
        release: SessionReleaser | None = None,
        navigator: Navigator | None = None,
        emulator: Emulator | None = None,
        registry: Mapping[str, DeviceProfile] | None = None,
        detector: ChallengeDetector | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._acquire = acquire or acquire_session
        self._release = release or release_session
        self._navigate = navigator or navigate
        self._emulator = emulator or emulate_device
        self._registry = registry if registry is not None else DEVICE_PROFILES
        self._detector = detector or ChallengeDetector.from_phrases(self.settings.navigation.challenge_phrases)

    async def __call__(self, job: Any, progress: ProgressReporter) -> dict[str, Any]:
        request: JobCreateRequest = job.payload
        return await self.run(request, progress)

    async def run(self, request: JobCreateRequest, progress: ProgressReporter) -> dict[str, Any]:
        options = request.options
        browser_settings: BrowserSettings = self.settings.browser
        nav_settings: NavigationSettings = self.settings.navigation
        started = time.perf_counter()
        LOGGER.info("Starting capture for %s (mode=%s)", request.url, options.capture_mode)

        session = await self._acquire(browser_settings, width=options.width, height=options.height)
        try:
            progress(35)
            outcome = await self._navigate(session.page, request.url, nav_settings, detector=self._detector)
            progress(50)

            desktop = await capture_one(
                session.page,
                CaptureRequest(
                    full_page=options.full_page,
                    capture_fonts=options.capture_fonts,
                    capture_colors=options.capture_colors,
                    viewport=dict(session.viewport),
                    user_agent=session.user_agent,
                ),
                self.settings.analysis,
            )
            progress(70)

            devices: list[CaptureResult] = []
            if options.includes_devices:
                names = self._device_names(options)
                devices = await for_each_device(
                    session,
                    names,
                    self._device_pass(options, outcome, progress, total=len(names)),
                    nav_settings,
                    registry=self._registry,
                    emulator=self._emulator,
                )
            progress(90)

            metadata = await extract_metadata(session.page)
        finally:
            await self._release(session)

        progress(95)
        processing_ms = int((time.perf_counter() - started) * 1000)
        LOGGER.info("Capture completed for %s in %dms", request.url, processing_ms)
        return build_result_payload(
            url=request.url,
            options=options,
            desktop=desktop,
            devices=devices,
            metadata=metadata,
            navigation=outcome,
            processing_ms=processing_ms,
        )

    def _device_names(self, options: CaptureOptions) -> list[str]:
        if options.mobile_devices is not None:
            return list(options.mobile_devices)
        return list(self.settings.queue.default_mobile_devices)

    def _device_pass(
        self,
        options: CaptureOptions,
        outcome: NavigationOutcome,
        progress: ProgressReporter,
        *,
        total: int,
    ) -> Callable[[BrowserSession, DeviceProfile], Awaitable[CaptureResult]]:
        done = 0

        async def _capture(session: BrowserSession, device: DeviceProfile) -> CaptureResult:
            nonlocal done
            result = await capture_one(
                session.page,
                CaptureRequest(
                    full_page=options.full_page,
                    capture_fonts=options.capture_fonts,
                    capture_colors=options.capture_colors,
                    viewport=device.viewport(),
                    user_agent=device.user_agent,
                    device=device.name,
                    device_scale_factor=device.device_scale_factor,
                ),
                self.settings.analysis,
            )
            current_url = session.page.url
            if current_url and current_url != outcome.final_url:
                LOGGER.info("Redirect detected for %s: %s", device.name, current_url)
                result.final_url = current_url
            done += 1
            progress(70 + (20 * done) // max(total, 1))
            return result

        return _capture


async def extract_metadata(page: Page) -> Optional[dict[str, Any]]:
    try:
        return await page.evaluate(_METADATA_SCRIPT)
    except Exception as exc:
        LOGGER.warning("Metadata extraction failed: %s", exc)
        return None


def build_result_payload(
    *,
    url: str,
    options: CaptureOptions,
    desktop: CaptureResult,
    devices: list[CaptureResult],
    metadata: Optional[dict[str, Any]],
    navigation: NavigationOutcome,
    processing_ms: int,
) -> dict[str, Any]:
    """Shape pipeline output into the job result payload."""

    return {
        "success": True,
        "url": url,
        "captureMode": options.capture_mode,
        "screenshots": {
            "desktop": {
                "base64": _b64(desktop.png_bytes),
                "format": "png",
                "size": {
                    "width": desktop.viewport.get("width"),
                    "height": "auto" if desktop.full_page else desktop.viewport.get("height"),
                },
                "viewport": desktop.viewport,
                "userAgent": desktop.user_agent,
            },
            "mobile": [_device_screenshot(result) for result in devices],
        },
        "analysis": {
            "desktop": desktop.analysis_payload(),
            "mobile": [result.analysis_payload() for result in devices],
            "metadata": metadata,
            "navigation": {
                "finalUrl": navigation.final_url,
                "challengeDetected": navigation.challenge_detected,
                "challengeCleared": navigation.challenge_cleared,
                "ready": navigation.ready,
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "processingTimeMs": processing_ms,
        },
        "options": options.model_dump(by_alias=True),
    }


def _device_screenshot(result: CaptureResult) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "device": result.device,
        "base64": _b64(result.png_bytes),
        "format": "png",
        "viewport": result.viewport,
        "userAgent": result.user_agent,
        "pixelRatio": result.device_scale_factor,
    }
    if result.final_url:
        entry["finalUrl"] = result.final_url
    return entry


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
