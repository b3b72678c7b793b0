"""Shared fixtures: a session manager wired to fake Playwright objects."""

from __future__ import annotations

from pathlib import Path

import pytest

from screenshot_page.config import ServerConfig
from screenshot_page.cookie_store import CookieStore
from screenshot_page.session import BrowserSessionManager
from tests.screenshot_page import fakes


@pytest.fixture(autouse=True)
def skip_stealth(monkeypatch: pytest.MonkeyPatch) -> None:
    """playwright-stealth needs a real page; mark fake pages as hardened instead."""

    async def harden(page: fakes.FakePage) -> None:
        page.hardened = True  # type: ignore[attr-defined]

    monkeypatch.setattr('screenshot_page.session.harden_page', harden)


@pytest.fixture
def config() -> ServerConfig:
    return ServerConfig(
        system_browser_settle_seconds=0.0,
        navigation_settle_seconds=0.05,
        signal_poll_seconds=0.01,
        url_poll_seconds=0.01,
    )


@pytest.fixture
def driver() -> fakes.FakePlaywright:
    return fakes.FakePlaywright()


@pytest.fixture
def spawn() -> fakes.FakeSpawn:
    return fakes.FakeSpawn()


@pytest.fixture
def manager(config: ServerConfig, driver: fakes.FakePlaywright, spawn: fakes.FakeSpawn) -> BrowserSessionManager:
    """Manager with no system browser installed."""
    return BrowserSessionManager(
        config,
        playwright_factory=lambda: driver,
        find_browser=lambda: None,
        spawn=spawn,
    )


@pytest.fixture
def store(tmp_path: Path) -> CookieStore:
    return CookieStore(tmp_path / 'cookies')


@pytest.fixture
def recording_logger() -> fakes.RecordingLogger:
    return fakes.RecordingLogger()
