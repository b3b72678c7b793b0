"""Browser session lifecycle.

One process-wide browser handle plus one shared "authenticated page". Tool
calls ask for a mode (headless or visible, bundled or system browser); a
request for a different mode tears the current browser down and launches a
new one. There is no in-place reconfiguration.

System browsers are started as detached processes with a remote debugging
port and a throwaway profile, then attached over CDP. Any failure on that
path falls back to Playwright's bundled Chromium once.

No lock guards the handle. Concurrent acquires with conflicting modes can both
launch; whichever launch completes last is kept and the other is closed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
import shutil
import subprocess
import tempfile
import typing
from collections.abc import Callable
from pathlib import Path

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from screenshot_page.config import ServerConfig
from screenshot_page.discovery import find_system_browser
from screenshot_page.models import BrowserEngine
from screenshot_page.pages import harden_page
from screenshot_page.paths import PROFILE_DIR_PREFIX

__all__ = [
    'BROWSER_ARGS',
    'BrowserHandle',
    'BrowserLaunchError',
    'BrowserMode',
    'BrowserSessionManager',
    'browser_args',
]

logger = logging.getLogger(__name__)

BROWSER_ARGS = (
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-accelerated-2d-canvas',
    '--no-first-run',
    '--no-zygote',
    '--disable-blink-features=AutomationControlled',
    '--disable-features=VizDisplayCompositor,TranslateUI,BlinkGenPropertyTrees',
    '--disable-extensions',
    '--disable-background-timer-throttling',
    '--disable-renderer-backgrounding',
    '--disable-backgrounding-occluded-windows',
    '--disable-ipc-flooding-protection',
    '--disable-default-apps',
    '--disable-sync',
    '--disable-translate',
    '--hide-scrollbars',
    '--mute-audio',
    '--no-default-browser-check',
    '--no-pings',
    '--disable-client-side-phishing-detection',
    '--disable-component-extensions-with-background-pages',
    '--disable-hang-monitor',
    '--disable-prompt-on-repost',
)

PROCESS_EXIT_TIMEOUT_SECONDS = 2


def browser_args(headless: bool) -> list[str]:
    """Launch flags for the bundled engine. GPU is only disabled headless."""
    args = list(BROWSER_ARGS)
    if headless:
        args.append('--disable-gpu')
    return args


class BrowserLaunchError(Exception):
    """System browser could not be started or attached to."""


@dataclasses.dataclass(frozen=True)
class BrowserMode:
    headless: bool
    system_browser: bool

    @classmethod
    def requested(cls, headless: bool, use_system_browser: bool) -> typing.Self:
        # System browsers are only ever driven visibly
        return cls(headless=headless, system_browser=use_system_browser and not headless)

    def __str__(self) -> str:
        visibility = 'headless' if self.headless else 'visible'
        engine = 'system' if self.system_browser else 'bundled'
        return f'{visibility}/{engine}'


@dataclasses.dataclass
class BrowserHandle:
    """A running browser and everything this process owns alongside it.

    `mode` is what was requested; `engine` is what actually runs (bundled after
    a fallback). Reuse decisions compare modes only.
    """

    browser: Browser
    mode: BrowserMode
    engine: BrowserEngine
    executable_path: Path | None = None
    profile_dir: Path | None = None
    process: subprocess.Popen[bytes] | None = None

    @property
    def browser_type(self) -> str:
        if self.engine == 'system':
            return 'system browser'
        return 'bundled Chromium'

    @property
    def visibility(self) -> str:
        return 'headless' if self.mode.headless else 'visible'


class BrowserSessionManager:
    """Owns the single browser handle and the shared authenticated page."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        playwright_factory: Callable[[], typing.Any] = async_playwright,
        find_browser: Callable[[], Path | None] = find_system_browser,
        spawn: Callable[..., subprocess.Popen[bytes]] = subprocess.Popen,
    ) -> None:
        self._config = config
        self._playwright_factory = playwright_factory
        self._find_browser = find_browser
        self._spawn = spawn

        self._playwright: Playwright | None = None
        self._handle: BrowserHandle | None = None
        self._shared_page: Page | None = None

    @property
    def handle(self) -> BrowserHandle | None:
        return self._handle

    @property
    def shared_page(self) -> Page | None:
        """The authenticated page, or None when absent or closed."""
        if self._shared_page is None or self._shared_page.is_closed():
            return None
        return self._shared_page

    async def acquire(self, headless: bool, use_system_browser: bool) -> BrowserHandle:
        """Return a browser in the requested mode, relaunching on any mode change.

        The existing handle is returned as-is when its mode matches; a broken
        session in the right mode is not detected here.
        """
        mode = BrowserMode.requested(headless, use_system_browser)

        current = self._handle
        if current is not None:
            if current.mode == mode:
                return current
            logger.info(f'Browser mode change {current.mode} -> {mode}, relaunching')
            await self.close()

        handle = await self._launch(mode)

        displaced = self._handle
        if displaced is not None and displaced is not handle:
            logger.warning(f'Concurrent launch completed first ({displaced.mode}), closing it')
            self._handle = None
            self._shared_page = None
            await self._close_handle(displaced)

        self._handle = handle
        logger.info(f'Browser ready: {handle.browser_type} ({handle.visibility})')
        return handle

    async def get_or_create_page(self) -> Page:
        """Return the shared page, creating it on the current browser when needed.

        A closed shared page is replaced transparently. With no browser at all a
        visible bundled one is acquired first.
        """
        page = self.shared_page
        if page is not None:
            return page

        stale = self._shared_page
        if stale is not None:
            # Closing the tab leaves its context open
            self._shared_page = None
            await self.close_page(stale)

        handle = self._handle
        if handle is None:
            handle = await self.acquire(headless=False, use_system_browser=False)

        context = await self._new_context(handle.browser)
        page = await context.new_page()
        await harden_page(page)
        self._shared_page = page
        logger.info('Created shared authenticated page')
        return page

    async def new_page(self, width: int, height: int) -> Page:
        """Open a hardened page in its own context. Release it with close_page()."""
        if self._handle is None:
            raise RuntimeError('No browser acquired')

        context = await self._new_context(self._handle.browser, width=width, height=height)
        page = await context.new_page()
        await harden_page(page)
        return page

    async def close_page(self, page: Page) -> None:
        """Close a page opened by new_page() along with its context."""
        try:
            await page.context.close()
        except Exception as e:
            logger.warning(f'Error closing page: {e}')

    async def close(self) -> None:
        """Close the browser and release owned resources. Safe to call repeatedly."""
        handle = self._handle
        self._handle = None
        self._shared_page = None
        if handle is None:
            return

        logger.info(f'Closing {handle.browser_type} ({handle.visibility})')
        await self._close_handle(handle)

    def close_sync(self) -> None:
        """Best-effort synchronous teardown for signal handlers and interpreter exit.

        Only the system browser process and its profile are released. The
        bundled engine is left to exit with the Playwright driver.
        """
        handle = self._handle
        self._handle = None
        self._shared_page = None
        if handle is None:
            return
        _release_owned_resources(handle)

    async def shutdown(self) -> None:
        """Close the browser, then stop the Playwright driver."""
        await self.close()
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f'Error stopping Playwright: {e}')
            self._playwright = None

    # Launching

    async def _driver(self) -> Playwright:
        if self._playwright is None:
            self._playwright = await self._playwright_factory().start()
        return self._playwright

    async def _launch(self, mode: BrowserMode) -> BrowserHandle:
        if mode.system_browser:
            path = self._find_browser()
            if path is None:
                logger.warning('No system browser found, falling back to bundled Chromium')
            else:
                try:
                    return await self._attach_system_browser(mode, path)
                except BrowserLaunchError as e:
                    logger.warning(f'{e}; falling back to bundled Chromium')

        playwright = await self._driver()
        browser = await playwright.chromium.launch(headless=mode.headless, args=browser_args(mode.headless))
        return BrowserHandle(browser=browser, mode=mode, engine='bundled')

    async def _attach_system_browser(self, mode: BrowserMode, path: Path) -> BrowserHandle:
        """Start the browser with a debugging port and a fresh profile, then connect over CDP.

        Raises:
            BrowserLaunchError: If the process cannot be spawned or connected to.
                Nothing is left behind in that case.
        """
        port = random.randint(self._config.debug_port_min, self._config.debug_port_max)
        profile_dir = Path(tempfile.mkdtemp(prefix=PROFILE_DIR_PREFIX))
        command = [
            str(path),
            f'--remote-debugging-port={port}',
            f'--user-data-dir={profile_dir}',
            '--no-first-run',
            '--no-default-browser-check',
            'about:blank',
        ]

        try:
            process = self._spawn(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            _remove_profile_dir(profile_dir)
            raise BrowserLaunchError(f'Failed to start {path}: {e}') from e

        logger.info(f'Started {path.name} on debug port {port} (pid {process.pid})')
        await asyncio.sleep(self._config.system_browser_settle_seconds)

        try:
            playwright = await self._driver()
            browser = await playwright.chromium.connect_over_cdp(f'http://localhost:{port}')
        except PlaywrightError as e:
            _terminate_process(process)
            _remove_profile_dir(profile_dir)
            raise BrowserLaunchError(f'Failed to connect to {path.name} on port {port}: {e}') from e

        return BrowserHandle(
            browser=browser,
            mode=mode,
            engine='system',
            executable_path=path,
            profile_dir=profile_dir,
            process=process,
        )

    async def _new_context(
        self,
        browser: Browser,
        width: int | None = None,
        height: int | None = None,
    ) -> BrowserContext:
        if width is None or height is None:
            return await browser.new_context(
                user_agent=self._config.user_agent,
                locale='en-US',
                no_viewport=True,
            )
        return await browser.new_context(
            user_agent=self._config.user_agent,
            locale='en-US',
            viewport={'width': width, 'height': height},
        )

    async def _close_handle(self, handle: BrowserHandle) -> None:
        try:
            await handle.browser.close()
        except Exception as e:
            logger.warning(f'Error closing browser: {e}')
        # Closing a CDP connection only disconnects; the process is ours to stop
        await asyncio.to_thread(_release_owned_resources, handle)


def _release_owned_resources(handle: BrowserHandle) -> None:
    if handle.process is not None:
        _terminate_process(handle.process)
    if handle.profile_dir is not None:
        _remove_profile_dir(handle.profile_dir)


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=PROCESS_EXIT_TIMEOUT_SECONDS)
    except subprocess.TimeoutExpired:
        process.kill()


def _remove_profile_dir(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f'Could not remove browser profile {path}: {e}')
