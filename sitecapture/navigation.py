"""Load a target URL and wait out bot-challenge interstitials."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from playwright.async_api import Error as PlaywrightError, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sitecapture import metrics
from sitecapture.settings import NavigationSettings

LOGGER = logging.getLogger(__name__)

_READY_STATE_SCRIPT = "() => document.readyState === 'complete'"
_BODY_TEXT_SCRIPT = "() => (document.body ? document.body.innerText : '').toLowerCase()"
_MARKERS_GONE_SCRIPT = """
(phrases) => {
    const text = (document.body ? document.body.innerText : '').toLowerCase();
    return !phrases.some((phrase) => text.includes(phrase));
}
"""


class NavigationError(RuntimeError):
    """Raised when the target page cannot be loaded at all."""


@dataclass(frozen=True)
class ChallengeDetector:
    """Case-insensitive phrase matcher for anti-bot interstitial text."""

    phrases: tuple[str, ...]

    @classmethod
    def from_phrases(cls, phrases: Iterable[str]) -> ChallengeDetector:
        normalized = tuple(p.strip().lower() for p in phrases if p and p.strip())
        return cls(phrases=normalized)

    def matches(self, text: str | None) -> bool:
        if not text or not self.phrases:
            return False
        lowered = text.lower()
        return any(phrase in lowered for phrase in self.phrases)


@dataclass(slots=True)
class NavigationOutcome:
    """What happened while loading the page (all fields are informational)."""

    url: str
    final_url: str
    challenge_detected: bool = False
    challenge_cleared: bool = True
    ready: bool = True


async def navigate(
    page: Page,
    url: str,
    settings: NavigationSettings,
    *,
    detector: ChallengeDetector | None = None,
) -> NavigationOutcome:
    """Drive ``page`` to ``url``.

    ``goto`` failures raise :class:`NavigationError`. Challenge and ready-state
    waits that time out are logged and tolerated so the capture can proceed with
    whatever rendered.
    """

    detector = detector or ChallengeDetector.from_phrases(settings.challenge_phrases)
    LOGGER.info("Navigating to %s", url)
    try:
        await page.goto(url, wait_until="domcontentloaded", timeout=settings.navigation_timeout_ms)
    except PlaywrightTimeoutError as exc:
        raise NavigationError(
            f"Navigation to {url} timed out after {settings.navigation_timeout_ms}ms"
        ) from exc
    except PlaywrightError as exc:
        raise NavigationError(f"Navigation to {url} failed: {exc}") from exc

    outcome = NavigationOutcome(url=url, final_url=url)
    await page.wait_for_timeout(settings.post_navigation_settle_ms)

    if await detect_challenge(page, detector):
        outcome.challenge_detected = True
        LOGGER.warning("Challenge page detected on %s; waiting for it to clear", url)
        outcome.challenge_cleared = await wait_for_challenge(page, detector, settings)

    outcome.ready = await wait_for_ready_state(page, settings.ready_state_timeout_ms, label=url)
    outcome.final_url = page.url or url
    return outcome


async def detect_challenge(page: Page, detector: ChallengeDetector) -> bool:
    try:
        text = await page.evaluate(_BODY_TEXT_SCRIPT)
    except PlaywrightError as exc:
        LOGGER.warning("Could not read page text for challenge detection: %s", exc)
        return False
    return detector.matches(text)


async def wait_for_challenge(
    page: Page,
    detector: ChallengeDetector,
    settings: NavigationSettings,
) -> bool:
    """Wait an extended delay, then poll until the markers disappear."""

    await page.wait_for_timeout(settings.challenge_extra_wait_ms)
    try:
        await page.wait_for_function(
            _MARKERS_GONE_SCRIPT,
            arg=list(detector.phrases),
            timeout=settings.challenge_timeout_ms,
        )
    except PlaywrightTimeoutError:
        LOGGER.warning("Challenge page may still be active; proceeding anyway")
        metrics.record_degraded_step("challenge")
        return False
    LOGGER.info("Challenge page cleared")
    return True


async def wait_for_ready_state(page: Page, timeout_ms: int, *, label: str) -> bool:
    try:
        await page.wait_for_function(_READY_STATE_SCRIPT, timeout=timeout_ms)
    except PlaywrightTimeoutError:
        LOGGER.warning("Ready state timeout for %s; proceeding", label)
        metrics.record_degraded_step("ready_state")
        return False
    return True
