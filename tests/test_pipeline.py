from __future__ import annotations

import base64
from typing import Any

import pytest
import pyvips

from sitecapture.devices import DeviceProfile
from sitecapture.jobs import JobQueue, JobStatus, job_snapshot
from sitecapture.navigation import NavigationError, NavigationOutcome
from sitecapture.pipeline import JOB_TYPE, CapturePipeline, build_result_payload
from sitecapture.schemas import CaptureOptions, JobCreateRequest
from tests.fakes import FakePage, FakeSession

_METADATA = {
    "title": "Example Domain",
    "description": "",
    "favicon": "",
    "viewport": "width=device-width, initial-scale=1",
    "mobileOptimized": "",
    "handheldFriendly": "",
}


def _png() -> bytes:
    image = (pyvips.Image.black(4, 4, bands=3) + [0, 102, 204]).cast("uchar")
    return image.copy(interpretation="srgb").pngsave_buffer()


class _Harness:
    """Counts session acquire/release and fakes navigation and emulation."""

    def __init__(self, *, navigate_error: Exception | None = None, redirect_to: str | None = None) -> None:
        self.page = FakePage(
            url="https://example.com/",
            screenshot_bytes=_png(),
            evaluate_results={
                "MobileOptimized": _METADATA,
                "headingTags": {"families": ["Inter, sans-serif"], "headings": [], "others": []},
                "detailTags": {"values": ["rgb(10, 20, 30)", "transparent", "inherit"], "details": []},
            },
        )
        self.acquired = 0
        self.released = 0
        self.acquire_kwargs: dict[str, Any] = {}
        self.navigate_error = navigate_error
        self.redirect_to = redirect_to
        self.emulated: list[str] = []

    async def acquire(self, settings: Any, *, width: int, height: int) -> FakeSession:
        self.acquired += 1
        self.acquire_kwargs = {"width": width, "height": height}
        viewport = {"width": width, "height": height, "deviceScaleFactor": 1, "isMobile": False, "hasTouch": False}
        return FakeSession(self.page, user_agent="DesktopUA", viewport=viewport)

    async def release(self, session: FakeSession) -> None:
        self.released += 1

    async def navigate(self, page: FakePage, url: str, settings: Any, *, detector: Any = None) -> NavigationOutcome:
        if self.navigate_error is not None:
            raise self.navigate_error
        return NavigationOutcome(url=url, final_url=page.url)

    async def emulate(self, session: FakeSession, device: DeviceProfile) -> None:
        self.emulated.append(device.name)
        session.user_agent = device.user_agent
        session.viewport = device.viewport()
        if self.redirect_to:
            session.page.url = self.redirect_to

    def pipeline(self, settings) -> CapturePipeline:
        return CapturePipeline(
            settings,
            acquire=self.acquire,
            release=self.release,
            navigator=self.navigate,
            emulator=self.emulate,
        )


def _request(url: str = "https://example.com", **options: Any) -> JobCreateRequest:
    return JobCreateRequest.model_validate({"url": url, "options": options})


@pytest.mark.asyncio
async def test_desktop_only_capture(app_settings):
    harness = _Harness()
    progress: list[int] = []
    request = _request(captureMode="desktop", fullPage=False, width=1200, height=800)

    result = await harness.pipeline(app_settings).run(request, progress.append)

    assert harness.acquire_kwargs == {"width": 1200, "height": 800}
    assert harness.page.screenshot_calls() == [
        {"type": "png", "full_page": False, "clip": {"x": 0, "y": 0, "width": 1200, "height": 800}}
    ]
    desktop = result["screenshots"]["desktop"]
    assert desktop["size"] == {"width": 1200, "height": 800}
    assert desktop["format"] == "png"
    assert desktop["userAgent"] == "DesktopUA"
    assert base64.b64decode(desktop["base64"]) == harness.page.screenshot_bytes
    assert result["screenshots"]["mobile"] == []
    assert result["analysis"]["mobile"] == []
    assert result["analysis"]["desktop"]["colors"]["unique"] == ["rgb(10, 20, 30)"]
    assert result["analysis"]["desktop"]["pixelHistogram"]["colors"][0]["b"] == 200
    assert result["analysis"]["metadata"]["title"] == "Example Domain"
    assert result["captureMode"] == "desktop"
    assert result["options"]["fullPage"] is False
    assert harness.emulated == []
    assert progress == [35, 50, 70, 90, 95]
    assert (harness.acquired, harness.released) == (1, 1)


@pytest.mark.asyncio
async def test_desktop_and_device_capture(app_settings):
    harness = _Harness()
    progress: list[int] = []
    request = _request(captureMode="both", mobileDevices=["iPhone 12"])

    result = await harness.pipeline(app_settings).run(request, progress.append)

    mobile = result["screenshots"]["mobile"]
    assert len(mobile) == 1
    assert mobile[0]["device"] == "iPhone 12"
    assert mobile[0]["viewport"]["width"] == 390
    assert mobile[0]["pixelRatio"] == 3
    assert "finalUrl" not in mobile[0]
    assert result["analysis"]["mobile"][0]["device"] == "iPhone 12"
    assert progress == [35, 50, 70, 90, 90, 95]
    assert (harness.acquired, harness.released) == (1, 1)


@pytest.mark.asyncio
async def test_unknown_device_completes_with_no_mobile_screenshots(app_settings):
    harness = _Harness()
    request = _request(captureMode="mobile", mobileDevices=["Nonexistent Device"])

    result = await harness.pipeline(app_settings).run(request, lambda _: None)

    assert result["success"] is True
    assert result["screenshots"]["mobile"] == []
    assert "desktop" in result["screenshots"]


@pytest.mark.asyncio
async def test_default_devices_follow_settings(app_settings):
    harness = _Harness()

    result = await harness.pipeline(app_settings).run(_request(), lambda _: None)

    assert harness.emulated == list(app_settings.queue.default_mobile_devices)
    assert [entry["device"] for entry in result["screenshots"]["mobile"]] == harness.emulated


@pytest.mark.asyncio
async def test_device_redirect_is_reported(app_settings):
    harness = _Harness(redirect_to="https://m.example.com/")
    request = _request(captureMode="mobile", mobileDevices=["Samsung Galaxy S21"])

    result = await harness.pipeline(app_settings).run(request, lambda _: None)

    assert result["screenshots"]["mobile"][0]["finalUrl"] == "https://m.example.com/"


@pytest.mark.asyncio
async def test_full_page_reports_auto_height(app_settings):
    harness = _Harness()

    result = await harness.pipeline(app_settings).run(_request(captureMode="desktop", fullPage="true"), lambda _: None)

    assert result["screenshots"]["desktop"]["size"]["height"] == "auto"
    assert harness.page.screenshot_calls() == [{"type": "png", "full_page": True}]


@pytest.mark.asyncio
async def test_disabled_analyses_are_null(app_settings):
    harness = _Harness()
    request = _request(captureMode="desktop", captureColors=False, captureFonts=False)

    result = await harness.pipeline(app_settings).run(request, lambda _: None)

    assert result["analysis"]["desktop"] == {"colors": None, "fonts": None, "pixelHistogram": None}


@pytest.mark.asyncio
async def test_session_released_when_navigation_fails(app_settings):
    harness = _Harness(navigate_error=NavigationError("Navigation to https://slow.example timed out after 60000ms"))
    progress: list[int] = []

    with pytest.raises(NavigationError):
        await harness.pipeline(app_settings).run(_request("https://slow.example"), progress.append)

    assert (harness.acquired, harness.released) == (1, 1)
    assert progress == [35]


@pytest.mark.asyncio
async def test_pipeline_as_queue_runner(app_settings):
    harness = _Harness()
    queue = JobQueue(runner=harness.pipeline(app_settings))

    job = queue.submit(JOB_TYPE, _request(captureMode="desktop", width=1200, height=800))
    await queue.wait_idle()

    finished = queue.get_job(job.id)
    assert finished.status is JobStatus.COMPLETED
    assert finished.progress == 100
    snapshot = job_snapshot(finished)
    assert snapshot["result"]["screenshots"]["desktop"]["size"] == {"width": 1200, "height": 800}
    assert (harness.acquired, harness.released) == (1, 1)


@pytest.mark.asyncio
async def test_failed_navigation_fails_job_without_result(app_settings):
    harness = _Harness(navigate_error=NavigationError("Navigation to https://slow.example timed out after 60000ms"))
    queue = JobQueue(runner=harness.pipeline(app_settings))

    job = queue.submit(JOB_TYPE, _request("https://slow.example"))
    await queue.wait_idle()

    snapshot = job_snapshot(queue.get_job(job.id))
    assert snapshot["status"] == "failed"
    assert "navigation" in snapshot["error"].lower()
    assert "result" not in snapshot
    assert (harness.acquired, harness.released) == (1, 1)


def test_build_result_payload_echoes_options():
    from sitecapture.capture import CaptureResult

    options = CaptureOptions(capture_mode="desktop")
    desktop = CaptureResult(png_bytes=b"png", viewport={"width": 10, "height": 20}, user_agent="UA", full_page=False)

    payload = build_result_payload(
        url="https://example.com",
        options=options,
        desktop=desktop,
        devices=[],
        metadata=None,
        navigation=NavigationOutcome(url="https://example.com", final_url="https://example.com/"),
        processing_ms=12,
    )

    assert payload["options"]["captureMode"] == "desktop"
    assert payload["options"]["mobileDevices"] is None
    assert payload["analysis"]["processingTimeMs"] == 12
    assert payload["analysis"]["navigation"]["finalUrl"] == "https://example.com/"
    assert payload["screenshots"]["desktop"]["base64"] == base64.b64encode(b"png").decode()
