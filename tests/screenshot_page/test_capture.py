"""Tests for page and element capture."""

from __future__ import annotations

import base64

import pytest

from screenshot_page import pages
from screenshot_page.capture import CaptureService, ElementNotFoundError
from screenshot_page.config import ServerConfig
from screenshot_page.cookie_store import CookieStore, CookieStoreError
from screenshot_page.session import BrowserSessionManager
from tests.screenshot_page import fakes

URL = 'https://example.com'
TRACKING_COOKIE = {
    'name': 'visitor',
    'value': 'v1',
    'domain': 'example.com',
    'path': '/',
    'expires': -1,
    'httpOnly': False,
    'secure': True,
    'sameSite': 'Lax',
}


@pytest.fixture
def service(manager: BrowserSessionManager, store: CookieStore, config: ServerConfig) -> CaptureService:
    return CaptureService(manager, store, config)


def only_page(driver: fakes.FakePlaywright) -> fakes.FakePage:
    [browser] = driver.chromium.launched
    [context] = browser.contexts
    [page] = context.pages
    return page


class TestScreenshotPage:
    async def test_fresh_page_capture(
        self,
        service: CaptureService,
        driver: fakes.FakePlaywright,
        recording_logger: fakes.RecordingLogger,
    ) -> None:
        result = await service.screenshot_page(URL, recording_logger, width=1280, height=800)

        page = only_page(driver)
        assert base64.b64decode(result.image.data) == fakes.PNG_BYTES
        assert result.image.mime_type == 'image/png'
        assert result.title == 'Example Domain'
        assert result.final_url == URL
        assert result.browser_type == 'bundled Chromium'
        assert result.reused_auth_page is False
        assert page.context.options['viewport'] == {'width': 1280, 'height': 800}
        assert page.gotos == [{'url': URL, 'wait_until': 'networkidle', 'timeout': 30_000}]
        assert page.screenshots == [{'full_page': True, 'type': 'png'}]
        assert page.context.closed

    async def test_headless_by_default(self, service: CaptureService, driver: fakes.FakePlaywright) -> None:
        await service.screenshot_page(URL, fakes.RecordingLogger(), use_default_browser=True)
        assert driver.chromium.launched[0].launch_options['headless'] is True

    @pytest.mark.parametrize(
        'wait_for, wait_until',
        [
            ('load', 'load'),
            ('domcontentloaded', 'domcontentloaded'),
            ('networkidle0', 'networkidle'),
            ('networkidle2', 'networkidle'),
        ],
    )
    async def test_wait_condition_mapping(
        self,
        service: CaptureService,
        driver: fakes.FakePlaywright,
        wait_for: str,
        wait_until: str,
    ) -> None:
        await service.screenshot_page(URL, fakes.RecordingLogger(), wait_for=wait_for)  # type: ignore[arg-type]
        assert only_page(driver).gotos[0]['wait_until'] == wait_until

    async def test_jpeg_quality_passed(self, service: CaptureService, driver: fakes.FakePlaywright) -> None:
        result = await service.screenshot_page(
            URL, fakes.RecordingLogger(), format='jpeg', quality=70, full_page=False
        )
        assert only_page(driver).screenshots == [{'full_page': False, 'type': 'jpeg', 'quality': 70}]
        assert result.image.mime_type == 'image/jpeg'

    async def test_png_ignores_quality(self, service: CaptureService, driver: fakes.FakePlaywright) -> None:
        await service.screenshot_page(URL, fakes.RecordingLogger(), quality=50)
        assert 'quality' not in only_page(driver).screenshots[0]

    async def test_webp_full_page_via_cdp(self, service: CaptureService, driver: fakes.FakePlaywright) -> None:
        result = await service.screenshot_page(URL, fakes.RecordingLogger(), format='webp', quality=80)

        page = only_page(driver)
        assert page.screenshots == []
        method, params = page.cdp_calls[-1]
        assert method == 'Page.captureScreenshot'
        assert params is not None
        assert params['format'] == 'webp'
        assert params['quality'] == 80
        assert params['clip'] == {'x': 0, 'y': 0, 'width': 1920, 'height': 4200, 'scale': 1}
        assert base64.b64decode(result.image.data) == fakes.WEBP_BYTES
        assert result.image.mime_type == 'image/webp'

    async def test_webp_viewport_has_no_clip(self, service: CaptureService, driver: fakes.FakePlaywright) -> None:
        await service.screenshot_page(URL, fakes.RecordingLogger(), format='webp', full_page=False)

        [(method, params)] = only_page(driver).cdp_calls
        assert method == 'Page.captureScreenshot'
        assert params == {'format': 'webp'}

    async def test_delay(self, service: CaptureService, monkeypatch: pytest.MonkeyPatch) -> None:
        slept: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            slept.append(seconds)

        monkeypatch.setattr('screenshot_page.capture.asyncio.sleep', fake_sleep)
        await service.screenshot_page(URL, fakes.RecordingLogger(), delay_ms=1500)
        assert slept == [1.5]


class TestCookies:
    """Saved auth on fresh pages."""

    async def test_no_prior_cookies_then_page_cookies_saved(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
        store: CookieStore,
        driver: fakes.FakePlaywright,
    ) -> None:
        await manager.acquire(headless=True, use_system_browser=False)
        driver.chromium.launched[0].cookies_set_on_navigation = [TRACKING_COOKIE]

        result = await service.screenshot_page(URL, fakes.RecordingLogger())

        assert result.cookies_saved == 1
        assert store.load(URL) == [TRACKING_COOKIE]

    async def test_page_without_cookies_saves_nothing(self, service: CaptureService, store: CookieStore) -> None:
        result = await service.screenshot_page(URL, fakes.RecordingLogger())

        assert result.cookies_saved == 0
        assert store.load(URL) == []
        assert not store.path_for(URL).exists()

    async def test_saved_cookies_applied(
        self,
        service: CaptureService,
        store: CookieStore,
        driver: fakes.FakePlaywright,
    ) -> None:
        store.save(URL, [TRACKING_COOKIE])

        await service.screenshot_page(URL, fakes.RecordingLogger())

        assert only_page(driver).context.added_cookies == [TRACKING_COOKIE]

    async def test_saved_auth_disabled(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
        store: CookieStore,
        driver: fakes.FakePlaywright,
    ) -> None:
        store.save(URL, [TRACKING_COOKIE])
        await manager.acquire(headless=True, use_system_browser=False)
        driver.chromium.launched[0].cookies_set_on_navigation = [{**TRACKING_COOKIE, 'value': 'v2'}]

        result = await service.screenshot_page(URL, fakes.RecordingLogger(), use_saved_auth=False)

        assert only_page(driver).context.added_cookies == []
        assert result.cookies_saved == 0
        assert store.load(URL) == [TRACKING_COOKIE]

    async def test_save_failure_does_not_fail_capture(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
        store: CookieStore,
        driver: fakes.FakePlaywright,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def broken_save(url: str, cookies: object) -> None:
            raise CookieStoreError('disk full')

        monkeypatch.setattr(store, 'save', broken_save)
        await manager.acquire(headless=True, use_system_browser=False)
        driver.chromium.launched[0].cookies_set_on_navigation = [TRACKING_COOKIE]
        logger = fakes.RecordingLogger()

        result = await service.screenshot_page(URL, logger)

        assert result.cookies_saved == 0
        assert 'disk full' in logger.text('warning')


class TestReuseAuthPage:
    async def test_reuses_open_shared_page(self, service: CaptureService, manager: BrowserSessionManager) -> None:
        await manager.acquire(headless=True, use_system_browser=False)
        shared = await manager.get_or_create_page()
        shared.url = 'https://example.com/account'

        result = await service.screenshot_page(
            'https://example.com/account', fakes.RecordingLogger(), reuse_auth_page=True
        )

        assert result.reused_auth_page is True
        assert shared.gotos == []
        assert not shared.is_closed()
        assert manager.shared_page is shared

    async def test_navigates_shared_page_when_url_differs(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
        store: CookieStore,
    ) -> None:
        await manager.acquire(headless=True, use_system_browser=False)
        shared = await manager.get_or_create_page()
        shared.context.cookie_jar.append(TRACKING_COOKIE)

        result = await service.screenshot_page(URL, fakes.RecordingLogger(), reuse_auth_page=True)

        assert [g['url'] for g in shared.gotos] == [URL]
        assert not shared.is_closed()
        assert result.cookies_saved == 0
        assert store.load(URL) == []

    async def test_mode_change_discards_shared_page(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
    ) -> None:
        # login-and-wait leaves a visible page behind
        await manager.acquire(headless=False, use_system_browser=False)
        shared = await manager.get_or_create_page()
        logger = fakes.RecordingLogger()

        result = await service.screenshot_page(URL, logger, reuse_auth_page=True)

        assert result.reused_auth_page is False
        assert shared.is_closed()
        assert 'No open authenticated page' in logger.text()

    async def test_closed_shared_page_falls_back_to_fresh(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
    ) -> None:
        await manager.acquire(headless=True, use_system_browser=False)
        shared = await manager.get_or_create_page()
        await shared.close()

        result = await service.screenshot_page(URL, fakes.RecordingLogger(), reuse_auth_page=True)

        assert result.reused_auth_page is False
        assert shared.gotos == []


class TestScreenshotElement:
    async def test_element_capture(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        element = await self._page_with_element(manager, monkeypatch, '#chart')

        result = await service.screenshot_element(URL, '#chart', fakes.RecordingLogger(), format='jpeg', quality=60)

        assert base64.b64decode(result.image.data) == fakes.PNG_BYTES
        assert result.selector == '#chart'
        assert element.screenshots == [{'type': 'jpeg', 'quality': 60}]

    async def test_fixed_viewport_and_page_closed(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await self._page_with_element(manager, monkeypatch, 'main')

        await service.screenshot_element(URL, 'main', fakes.RecordingLogger())

        page = self.pages[0]
        assert page.context.options['viewport'] == {'width': 1920, 'height': 1080}
        assert page.gotos[0]['wait_until'] == 'networkidle'
        assert page.context.closed

    async def test_padding_applied(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        element = await self._page_with_element(manager, monkeypatch, '.card')

        await service.screenshot_element(URL, '.card', fakes.RecordingLogger(), padding=16)

        assert element.style == {'padding': '16px'}

    async def test_webp_clips_to_bounding_box(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await self._page_with_element(manager, monkeypatch, '#logo')

        result = await service.screenshot_element(URL, '#logo', fakes.RecordingLogger(), format='webp')

        method, params = self.pages[0].cdp_calls[-1]
        assert method == 'Page.captureScreenshot'
        assert params is not None
        # Bounding box is viewport-relative; the clip adds the scroll offset
        assert params['clip'] == {'x': 10.0, 'y': 520.0, 'width': 300.0, 'height': 150.0, 'scale': 1}
        assert result.image.mime_type == 'image/webp'

    async def test_missing_element_after_wait(self, service: CaptureService, driver: fakes.FakePlaywright) -> None:
        with pytest.raises(ElementNotFoundError, match='#missing'):
            await service.screenshot_element(URL, '#missing', fakes.RecordingLogger())
        assert only_page(driver).context.closed

    async def test_missing_element_without_wait(self, service: CaptureService, driver: fakes.FakePlaywright) -> None:
        with pytest.raises(ElementNotFoundError) as exc_info:
            await service.screenshot_element(URL, 'div.gone', fakes.RecordingLogger(), wait_for_selector=False)
        assert str(exc_info.value) == 'Element not found with selector: div.gone'
        assert only_page(driver).context.closed

    async def test_navigation_error_propagates_and_closes_page(
        self,
        service: CaptureService,
        manager: BrowserSessionManager,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await self._page_with_element(manager, monkeypatch, '#x')
        self.next_goto_error = fakes.PlaywrightError('net::ERR_CONNECTION_REFUSED')

        with pytest.raises(fakes.PlaywrightError):
            await service.screenshot_element(URL, '#x', fakes.RecordingLogger())
        assert self.pages[0].context.closed

    async def _page_with_element(
        self,
        manager: BrowserSessionManager,
        monkeypatch: pytest.MonkeyPatch,
        selector: str,
    ) -> fakes.FakeElement:
        """Make every page the manager opens contain `selector`."""
        self.pages: list[fakes.FakePage] = []
        self.next_goto_error: Exception | None = None
        element = fakes.FakeElement(selector)
        open_page = manager.new_page

        async def new_page(width: int, height: int) -> fakes.FakePage:
            page = await open_page(width, height)
            page.add_element(selector, element)
            page.goto_error = self.next_goto_error
            self.pages.append(page)
            return page

        monkeypatch.setattr(manager, 'new_page', new_page)
        return element


class TestHardening:
    async def test_stealth_applied_to_page(self, monkeypatch: pytest.MonkeyPatch) -> None:
        hardened: list[object] = []

        class RecordingStealth:
            async def apply_stealth_async(self, page: object) -> None:
                hardened.append(page)

        monkeypatch.setattr(pages, 'Stealth', RecordingStealth)
        page = fakes.FakePage(fakes.FakeContext(fakes.FakeBrowser(), {}))

        await pages.harden_page(page)  # type: ignore[arg-type]

        assert hardened == [page]
