"""Sequential per-device re-emulation of a job's single page."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Mapping, Sequence, TypeVar

from sitecapture import metrics
from sitecapture.browser import BrowserSession, emulate_device
from sitecapture.devices import DeviceProfile, resolve_devices
from sitecapture.navigation import wait_for_ready_state
from sitecapture.settings import NavigationSettings

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
DeviceCallback = Callable[[BrowserSession, DeviceProfile], Awaitable[T]]
Emulator = Callable[[BrowserSession, DeviceProfile], Awaitable[None]]


async def for_each_device(
    session: BrowserSession,
    device_names: Sequence[str],
    fn: DeviceCallback[T],
    settings: NavigationSettings,
    *,
    registry: Mapping[str, DeviceProfile] | None = None,
    emulator: Emulator | None = None,
) -> List[T]:
    """Emulate each known device in request order and collect ``fn``'s results.

    Unknown names are skipped with a warning.
    """

    apply = emulator or emulate_device
    devices, unknown = resolve_devices(device_names, registry)
    for name in unknown:
        LOGGER.warning("Unknown device: %s, skipping", name)
        metrics.record_device_skipped()

    results: List[T] = []
    for device in devices:
        LOGGER.info("Emulating %s", device.name)
        await apply(session, device)
        await session.page.wait_for_timeout(settings.device_settle_ms)
        await wait_for_ready_state(session.page, settings.ready_state_timeout_ms, label=device.name)
        results.append(await fn(session, device))
    return results
