"""Fixed registry of device profiles used for mobile/tablet emulation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

LOGGER = logging.getLogger(__name__)

_IOS_14_SAFARI = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 14_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/14.0.3 Mobile/15E148 Safari/604.1"
)


@dataclass(frozen=True, slots=True)
class DeviceProfile:
    """Viewport, pixel density and identity of an emulated device."""

    name: str
    user_agent: str
    width: int
    height: int
    device_scale_factor: float
    is_mobile: bool
    has_touch: bool

    def viewport(self) -> dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "deviceScaleFactor": self.device_scale_factor,
            "isMobile": self.is_mobile,
            "hasTouch": self.has_touch,
        }


DEVICE_PROFILES: Mapping[str, DeviceProfile] = {
    profile.name: profile
    for profile in (
        DeviceProfile(
            name="iPhone 12",
            user_agent=_IOS_14_SAFARI,
            width=390,
            height=844,
            device_scale_factor=3,
            is_mobile=True,
            has_touch=True,
        ),
        DeviceProfile(
            name="iPhone 12 Pro",
            user_agent=_IOS_14_SAFARI,
            width=390,
            height=844,
            device_scale_factor=3,
            is_mobile=True,
            has_touch=True,
        ),
        DeviceProfile(
            name="Samsung Galaxy S21",
            user_agent=(
                "Mozilla/5.0 (Linux; Android 11; SM-G991B) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/91.0.4472.120 Mobile Safari/537.36"
            ),
            width=360,
            height=800,
            device_scale_factor=3,
            is_mobile=True,
            has_touch=True,
        ),
        DeviceProfile(
            name="iPad Pro",
            user_agent=(
                "Mozilla/5.0 (iPad; CPU OS 14_4 like Mac OS X) AppleWebKit/605.1.15 "
                "(KHTML, like Gecko) Version/14.0.3 Mobile/15E148 Safari/604.1"
            ),
            width=1024,
            height=1366,
            device_scale_factor=2,
            is_mobile=False,
            has_touch=True,
        ),
        DeviceProfile(
            name="Google Pixel 5",
            user_agent=(
                "Mozilla/5.0 (Linux; Android 11; Pixel 5) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/91.0.4472.120 Mobile Safari/537.36"
            ),
            width=393,
            height=851,
            device_scale_factor=2.75,
            is_mobile=True,
            has_touch=True,
        ),
    )
}


def get_device(name: str, registry: Mapping[str, DeviceProfile] | None = None) -> DeviceProfile | None:
    return (registry if registry is not None else DEVICE_PROFILES).get(name)


def resolve_devices(
    names: Iterable[str],
    registry: Mapping[str, DeviceProfile] | None = None,
) -> tuple[list[DeviceProfile], list[str]]:
    """Split requested names into known profiles (in request order) and unknown names."""

    known: list[DeviceProfile] = []
    unknown: list[str] = []
    for name in names:
        profile = get_device(name, registry)
        if profile is None:
            unknown.append(name)
        else:
            known.append(profile)
    return known, unknown
