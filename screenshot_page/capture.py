"""Screenshot capture for the screenshot-page and screenshot-element tools."""

from __future__ import annotations

import asyncio

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from screenshot_page.config import ServerConfig
from screenshot_page.cookie_store import CookieStore, CookieStoreError
from screenshot_page.models import ElementScreenshot, ImageFormat, PageScreenshot, WaitCondition
from screenshot_page.pages import capture_element_screenshot, capture_page_screenshot, to_wait_until
from screenshot_page.session import BrowserSessionManager
from screenshot_page.utils import LoggerProtocol

__all__ = [
    'ELEMENT_VIEWPORT',
    'CaptureService',
    'ElementNotFoundError',
]

ELEMENT_VIEWPORT = (1920, 1080)

_PADDING_SCRIPT = '(element, padding) => { element.style.padding = `${padding}px`; }'


class ElementNotFoundError(Exception):
    """Selector matched nothing (or never appeared)."""

    def __init__(self, selector: str) -> None:
        super().__init__(f'Element not found with selector: {selector}')
        self.selector = selector


class CaptureService:
    """Takes screenshots on fresh pages or on the shared authenticated page."""

    def __init__(self, manager: BrowserSessionManager, store: CookieStore, config: ServerConfig) -> None:
        self._manager = manager
        self._store = store
        self._config = config

    async def screenshot_page(
        self,
        url: str,
        logger: LoggerProtocol,
        full_page: bool = True,
        width: int = 1920,
        height: int = 1080,
        format: ImageFormat = 'png',
        quality: int | None = None,
        wait_for: WaitCondition = 'networkidle2',
        delay_ms: int = 0,
        use_saved_auth: bool = True,
        reuse_auth_page: bool = False,
        use_default_browser: bool = False,
        visible_browser: bool = False,
    ) -> PageScreenshot:
        """Capture a page, persisting its cookies when a fresh page used saved auth.

        With reuse_auth_page and an open shared page, the shared page is
        navigated (only if its URL differs) and left open. Otherwise a fresh
        page with the requested viewport is used and always closed.
        """
        handle = await self._manager.acquire(
            headless=not visible_browser,
            use_system_browser=use_default_browser and visible_browser,
        )
        wait_until = to_wait_until(wait_for)

        page = self._manager.shared_page if reuse_auth_page else None
        reused = page is not None
        if page is None:
            if reuse_auth_page:
                await logger.info('No open authenticated page, using a fresh page')
            page = await self._manager.new_page(width, height)

        try:
            if reused:
                if page.url != url:
                    await page.goto(url, wait_until=wait_until, timeout=self._config.navigation_timeout_ms)
            else:
                if use_saved_auth:
                    await self._apply_saved_cookies(page, url, logger)
                await page.goto(url, wait_until=wait_until, timeout=self._config.navigation_timeout_ms)

            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)

            image = await capture_page_screenshot(page, format, full_page, quality)
            title = await page.title()
            final_url = page.url

            cookies_saved = 0
            if not reused and use_saved_auth:
                cookies_saved = await self._persist_cookies(page, url, logger)
        finally:
            if not reused:
                await self._manager.close_page(page)

        await logger.info(f'Captured {format} screenshot of {final_url}')
        return PageScreenshot(
            image=image,
            title=title,
            final_url=final_url,
            browser_type=handle.browser_type,
            visible=visible_browser,
            width=width,
            height=height,
            full_page=full_page,
            used_saved_auth=use_saved_auth,
            reused_auth_page=reused,
            cookies_saved=cookies_saved,
        )

    async def screenshot_element(
        self,
        url: str,
        selector: str,
        logger: LoggerProtocol,
        wait_for_selector: bool = True,
        format: ImageFormat = 'png',
        quality: int | None = None,
        padding: int = 0,
        use_saved_auth: bool = True,
        use_default_browser: bool = False,
        visible_browser: bool = False,
    ) -> ElementScreenshot:
        """Capture one element's bounding box on a fresh 1920x1080 page.

        Raises:
            ElementNotFoundError: If the selector matches nothing, or never
                appears within element_wait_timeout_ms when waiting.
        """
        handle = await self._manager.acquire(
            headless=not visible_browser,
            use_system_browser=use_default_browser and visible_browser,
        )
        page = await self._manager.new_page(*ELEMENT_VIEWPORT)

        try:
            if use_saved_auth:
                await self._apply_saved_cookies(page, url, logger)
            await page.goto(url, wait_until='networkidle', timeout=self._config.navigation_timeout_ms)

            if wait_for_selector:
                try:
                    await page.wait_for_selector(selector, timeout=self._config.element_wait_timeout_ms)
                except PlaywrightTimeoutError as e:
                    raise ElementNotFoundError(selector) from e

            element = await page.query_selector(selector)
            if element is None:
                raise ElementNotFoundError(selector)

            if padding > 0:
                await element.evaluate(_PADDING_SCRIPT, padding)

            image = await capture_element_screenshot(page, element, format, quality)
        finally:
            await self._manager.close_page(page)

        await logger.info(f'Captured {format} screenshot of {selector!r} on {url}')
        return ElementScreenshot(
            image=image,
            url=url,
            selector=selector,
            browser_type=handle.browser_type,
            visible=visible_browser,
        )

    async def _apply_saved_cookies(self, page: Page, url: str, logger: LoggerProtocol) -> None:
        cookies = self._store.load(url)
        if cookies:
            await page.context.add_cookies(cookies)
            await logger.info(f'Applied {len(cookies)} saved cookies')

    async def _persist_cookies(self, page: Page, url: str, logger: LoggerProtocol) -> int:
        """Save the page's cookies under the requested URL. Failures don't fail the capture."""
        cookies = await page.context.cookies()
        if not cookies:
            return 0
        try:
            self._store.save(url, cookies)
        except CookieStoreError as e:
            await logger.warning(f'Screenshot kept, but cookies were not saved: {e}')
            return 0
        return len(cookies)
