from __future__ import annotations

from dataclasses import replace

import pytest

from sitecapture.settings import AnalysisSettings, NavigationSettings, Settings, get_settings
from tests.fakes import FakePage


@pytest.fixture()
def app_settings() -> Settings:
    """Real defaults with every delay zeroed out."""

    base = get_settings()
    navigation: NavigationSettings = replace(
        base.navigation,
        post_navigation_settle_ms=0,
        challenge_extra_wait_ms=0,
        device_settle_ms=0,
    )
    return replace(base, navigation=navigation)


@pytest.fixture()
def nav_settings(app_settings: Settings) -> NavigationSettings:
    return app_settings.navigation


@pytest.fixture()
def analysis_settings(app_settings: Settings) -> AnalysisSettings:
    return app_settings.analysis


@pytest.fixture()
def fake_page() -> FakePage:
    return FakePage()
