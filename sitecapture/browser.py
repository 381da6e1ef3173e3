"""Per-job Chromium session lifecycle (launch, identity, emulation, teardown)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import Browser, BrowserContext, CDPSession, Page, Playwright, async_playwright

from sitecapture.devices import DeviceProfile
from sitecapture.settings import BrowserSettings

LOGGER = logging.getLogger(__name__)

HARDENING_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--memory-pressure-off",
    "--disable-blink-features=AutomationControlled",
    "--disable-web-security",
    "--disable-features=VizDisplayCompositor,TranslateUI",
    "--disable-extensions",
    "--no-first-run",
    "--disable-default-apps",
    "--disable-popup-blocking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-ipc-flooding-protection",
)

_CHANNEL_ALIASES = {
    "cft": "chrome",
    "chrome-for-testing": "chrome",
}

_WEBDRIVER_PATCH = """
delete Object.getPrototypeOf(navigator).webdriver;
Object.defineProperty(navigator, 'webdriver', {
    get: () => undefined,
});
"""


class BrowserLaunchError(RuntimeError):
    """Raised when Chromium cannot be started for a job."""


@dataclass(slots=True)
class BrowserSession:
    """One browser process and its single page, owned by exactly one job."""

    playwright: Playwright
    browser: Browser
    context: BrowserContext
    page: Page
    user_agent: str
    viewport: dict[str, Any]
    cdp: CDPSession | None = field(default=None)


def desktop_headers(settings: BrowserSettings) -> dict[str, str]:
    return {
        "Accept-Language": settings.accept_language,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Upgrade-Insecure-Requests": "1",
    }


def launch_args(settings: BrowserSettings) -> list[str]:
    args = list(HARDENING_ARGS)
    args.extend(arg for arg in settings.extra_args if arg not in args)
    return args


async def acquire_session(
    settings: BrowserSettings,
    *,
    width: int | None = None,
    height: int | None = None,
) -> BrowserSession:
    """Launch Chromium and open the job's single, desktop-configured page."""

    viewport = {
        "width": width or settings.desktop_viewport_width,
        "height": height or settings.desktop_viewport_height,
        "deviceScaleFactor": 1,
        "isMobile": False,
        "hasTouch": False,
    }
    playwright = await async_playwright().start()
    browser: Browser | None = None
    try:
        browser = await _launch_browser(playwright, settings)
        context = await browser.new_context(
            viewport={"width": viewport["width"], "height": viewport["height"]},
            device_scale_factor=1,
            is_mobile=False,
            has_touch=False,
            user_agent=settings.desktop_user_agent,
            extra_http_headers=desktop_headers(settings),
            locale="en-US",
        )
        await context.add_init_script(_WEBDRIVER_PATCH)
        page = await context.new_page()
    except Exception as exc:
        if browser is not None:
            await _quietly(browser.close(), "browser")
        await _quietly(playwright.stop(), "playwright")
        raise BrowserLaunchError(f"Browser launch failed: {exc}") from exc

    return BrowserSession(
        playwright=playwright,
        browser=browser,
        context=context,
        page=page,
        user_agent=settings.desktop_user_agent,
        viewport=viewport,
    )


async def release_session(session: BrowserSession) -> None:
    """Close page, context, browser and driver; never raises."""

    if session.cdp is not None:
        await _quietly(session.cdp.detach(), "cdp session")
    await _quietly(session.page.close(), "page")
    await _quietly(session.context.close(), "context")
    await _quietly(session.browser.close(), "browser")
    await _quietly(session.playwright.stop(), "playwright")


async def emulate_device(session: BrowserSession, device: DeviceProfile) -> None:
    """Re-emulate the session's page as ``device`` (viewport, DPR, UA, touch)."""

    page = session.page
    await page.set_viewport_size({"width": device.width, "height": device.height})
    if session.cdp is None:
        session.cdp = await session.context.new_cdp_session(page)
    cdp = session.cdp
    await cdp.send(
        "Emulation.setDeviceMetricsOverride",
        {
            "width": device.width,
            "height": device.height,
            "deviceScaleFactor": device.device_scale_factor,
            "mobile": device.is_mobile,
        },
    )
    await cdp.send("Emulation.setUserAgentOverride", {"userAgent": device.user_agent})
    await cdp.send(
        "Emulation.setTouchEmulationEnabled",
        {"enabled": device.has_touch, "maxTouchPoints": 5 if device.has_touch else 1},
    )
    session.user_agent = device.user_agent
    session.viewport = device.viewport()


async def _launch_browser(playwright: Playwright, settings: BrowserSettings) -> Browser:
    channel = settings.playwright_channel
    normalized = _normalize_channel(channel)
    if normalized != channel:
        LOGGER.warning(
            "Playwright channel '%s' is not supported; falling back to '%s'",
            channel,
            normalized,
        )
    args = launch_args(settings)
    LOGGER.debug("launching chromium channel=%s args=%s", normalized, args)
    options: dict[str, Any] = {"headless": settings.headless, "args": args}
    if normalized != "chromium":
        options["channel"] = normalized
    return await playwright.chromium.launch(**options)


def _normalize_channel(channel: str) -> str:
    if not channel:
        return "chromium"
    lowered = channel.strip().lower()
    return _CHANNEL_ALIASES.get(lowered, lowered)


async def _quietly(awaitable: Any, what: str) -> None:
    try:
        await awaitable
    except Exception as exc:
        LOGGER.warning("Failed to close %s: %s", what, exc)
