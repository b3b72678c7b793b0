"""Login-and-wait: hold a visible page open until a human finishes logging in.

States: navigating -> waiting -> resolved | timed-out.

While waiting, independent watchers race and the first to finish decides the
completion signal:

- URL indicator (starts with "http" or contains "/"): poll page.url for it
- selector indicator: wait for a matching element
- no indicator: a main-frame navigation away from login-looking URLs, or the
  marker file written by signal-login-complete
- always: the deadline

Whatever resolves the wait, the page's cookies are saved under the URL the
login started from, and the page stays open as the shared authenticated page.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

from playwright.async_api import Frame, Page

from screenshot_page.config import ServerConfig
from screenshot_page.cookie_store import CookieStore
from screenshot_page.models import CompletionSignal, LoginResult, LoginState
from screenshot_page.paths import LOGIN_SIGNAL_PATH
from screenshot_page.session import BrowserSessionManager
from screenshot_page.utils import LoggerProtocol, Timer, humanize_seconds

__all__ = [
    'LOGIN_URL_MARKERS',
    'LoginWaitController',
    'is_login_url',
    'is_url_indicator',
    'write_login_signal',
]

logger = logging.getLogger(__name__)

# Navigations to URLs containing any of these are treated as still logging in
LOGIN_URL_MARKERS = ('accounts.google.com', 'login', 'signin', 'auth')


def is_url_indicator(indicator: str) -> bool:
    """URL fragments are matched against page.url; anything else is a CSS selector."""
    return indicator.startswith('http') or '/' in indicator


def is_login_url(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in LOGIN_URL_MARKERS)


def write_login_signal(path: Path = LOGIN_SIGNAL_PATH) -> Path:
    """Tell a waiting login-and-wait call that the login is done."""
    path.write_text(datetime.datetime.now(datetime.UTC).isoformat() + '\n')
    logger.info(f'Wrote login signal {path}')
    return path


class LoginWaitController:
    """Drives the shared page through one login wait at a time (not enforced)."""

    def __init__(
        self,
        manager: BrowserSessionManager,
        store: CookieStore,
        config: ServerConfig,
        signal_path: Path = LOGIN_SIGNAL_PATH,
    ) -> None:
        self._manager = manager
        self._store = store
        self._config = config
        self._signal_path = signal_path

    @property
    def signal_path(self) -> Path:
        return self._signal_path

    async def login_and_wait(
        self,
        url: str,
        logger: LoggerProtocol,
        wait_minutes: float = 3.0,
        success_indicator: str | None = None,
        use_system_browser: bool = True,
    ) -> LoginResult:
        """Open the login page visibly, wait for completion, and persist cookies.

        Args:
            url: Login page URL. Cookies are saved under this URL's site identity.
            logger: Logger instance
            wait_minutes: Deadline for the whole wait (navigation excluded)
            success_indicator: URL fragment or CSS selector that marks success
            use_system_browser: Attach to an installed Chrome/Edge instead of bundled Chromium

        Raises:
            playwright.async_api.Error: Navigation or watcher failures.
            CookieStoreError: If the cookies cannot be written.
        """
        timer = Timer()

        await self._transition(logger, 'navigating', url)
        handle = await self._manager.acquire(headless=False, use_system_browser=use_system_browser)
        page = await self._manager.get_or_create_page()

        saved = self._store.load(url)
        if saved:
            await page.context.add_cookies(saved)
            await logger.info(f'Applied {len(saved)} saved cookies')

        # A marker left by an earlier session must not end this wait immediately
        if self._signal_path.exists():
            self._signal_path.unlink(missing_ok=True)
            await logger.debug(f'Removed stale login signal {self._signal_path}')

        await page.goto(url, wait_until='networkidle', timeout=self._config.navigation_timeout_ms)

        timeout_seconds = wait_minutes * 60
        await self._transition(
            logger,
            'waiting',
            f'complete the login in the {handle.browser_type} window (up to {humanize_seconds(timeout_seconds)})',
        )
        signal = await self._wait_for_completion(page, timeout_seconds, success_indicator)

        state: LoginState = 'timed-out' if signal == 'timeout' else 'resolved'
        await self._transition(logger, state, f'{signal} at {page.url}')

        cookies = await page.context.cookies()
        self._store.save(url, cookies)

        return LoginResult(
            browser_type=handle.browser_type,
            initial_url=url,
            final_url=page.url,
            cookie_count=len(cookies),
            completed_via=signal,
            outcome='timed-out' if state == 'timed-out' else 'resolved',
            elapsed_seconds=round(timer.elapsed(), 1),
        )

    async def _transition(self, logger: LoggerProtocol, state: LoginState, detail: str) -> None:
        await logger.info(f'[login {state}] {detail}')

    async def _wait_for_completion(
        self,
        page: Page,
        timeout_seconds: float,
        indicator: str | None,
    ) -> CompletionSignal:
        watchers: list[Coroutine[Any, Any, CompletionSignal]] = []
        if not indicator:
            watchers.append(self._watch_navigation(page))
            watchers.append(self._watch_signal_file())
        elif is_url_indicator(indicator):
            watchers.append(self._watch_url(page, indicator))
        else:
            watchers.append(self._watch_selector(page, indicator))
        watchers.append(self._watch_deadline(timeout_seconds))

        return await _first_completed(watchers)

    async def _watch_url(self, page: Page, fragment: str) -> CompletionSignal:
        while fragment not in page.url:
            await asyncio.sleep(self._config.url_poll_seconds)
        return 'indicator-matched'

    async def _watch_selector(self, page: Page, selector: str) -> CompletionSignal:
        # timeout=0 disables Playwright's own timeout; the deadline watcher bounds it
        await page.wait_for_selector(selector, timeout=0)
        return 'indicator-matched'

    async def _watch_navigation(self, page: Page) -> CompletionSignal:
        left_login = asyncio.Event()

        def on_navigated(frame: Frame) -> None:
            if frame is page.main_frame and not is_login_url(frame.url):
                logger.debug(f'Navigated away from login: {frame.url}')
                left_login.set()

        page.on('framenavigated', on_navigated)
        try:
            await left_login.wait()
            # Let intermediate redirect hops finish
            await asyncio.sleep(self._config.navigation_settle_seconds)
        finally:
            page.remove_listener('framenavigated', on_navigated)
        return 'navigation-away-detected'

    async def _watch_signal_file(self) -> CompletionSignal:
        while not self._signal_path.exists():
            await asyncio.sleep(self._config.signal_poll_seconds)
        self._signal_path.unlink(missing_ok=True)
        return 'external-signal-file'

    async def _watch_deadline(self, timeout_seconds: float) -> CompletionSignal:
        await asyncio.sleep(timeout_seconds)
        return 'timeout'


async def _first_completed(watchers: list[Coroutine[Any, Any, CompletionSignal]]) -> CompletionSignal:
    """Run watchers concurrently; return the first result and cancel the rest.

    Ties go to the earliest watcher in the list. A watcher that fails first
    raises here.
    """
    tasks = [asyncio.create_task(watcher) for watcher in watchers]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    winner = next(task for task in tasks if task in done)
    return winner.result()
