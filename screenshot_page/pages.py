"""Page-level helpers: hardening, load conditions, and screenshot encoding."""

from __future__ import annotations

import base64
from typing import Any, Literal

from playwright.async_api import ElementHandle, Page
from playwright_stealth.stealth import Stealth

from screenshot_page.models import CapturedImage, ImageFormat, WaitCondition

__all__ = [
    'capture_element_screenshot',
    'capture_page_screenshot',
    'harden_page',
    'to_wait_until',
]

type WaitUntil = Literal['load', 'domcontentloaded', 'networkidle']

# Playwright has a single network-idle state (no in-flight requests for 500ms)
_WAIT_UNTIL: dict[str, WaitUntil] = {
    'load': 'load',
    'domcontentloaded': 'domcontentloaded',
    'networkidle0': 'networkidle',
    'networkidle2': 'networkidle',
}


def to_wait_until(condition: WaitCondition) -> WaitUntil:
    """Map a tool-level ready condition to Playwright's wait_until."""
    return _WAIT_UNTIL[condition]


async def harden_page(page: Page) -> None:
    """Apply automation-hardening overrides (navigator.webdriver, plugins, languages, permissions)."""
    await Stealth().apply_stealth_async(page)


async def capture_page_screenshot(
    page: Page,
    format: ImageFormat,
    full_page: bool,
    quality: int | None = None,
) -> CapturedImage:
    """Screenshot the page (full scrollable page or viewport) as base64."""
    if format == 'webp':
        params: dict[str, Any] = {}
        if full_page:
            metrics = await _layout_metrics(page)
            size = metrics.get('cssContentSize') or metrics['contentSize']
            params['clip'] = {'x': 0, 'y': 0, 'width': size['width'], 'height': size['height'], 'scale': 1}
            params['captureBeyondViewport'] = True
        data = await _cdp_capture(page, params, quality)
        return CapturedImage(data=data, format=format)

    raw = await page.screenshot(full_page=full_page, **_playwright_options(format, quality))
    return CapturedImage(data=base64.b64encode(raw).decode('ascii'), format=format)


async def capture_element_screenshot(
    page: Page,
    element: ElementHandle,
    format: ImageFormat,
    quality: int | None = None,
) -> CapturedImage:
    """Screenshot only the element's bounding box as base64."""
    if format == 'webp':
        await element.scroll_into_view_if_needed()
        box = await element.bounding_box()
        if box is None:
            raise ValueError('Element is not visible')
        viewport = (await _layout_metrics(page)).get('cssLayoutViewport', {})
        params = {
            'clip': {
                'x': box['x'] + viewport.get('pageX', 0),
                'y': box['y'] + viewport.get('pageY', 0),
                'width': box['width'],
                'height': box['height'],
                'scale': 1,
            },
            'captureBeyondViewport': True,
        }
        data = await _cdp_capture(page, params, quality)
        return CapturedImage(data=data, format=format)

    raw = await element.screenshot(**_playwright_options(format, quality))
    return CapturedImage(data=base64.b64encode(raw).decode('ascii'), format=format)


def _playwright_options(format: Literal['png', 'jpeg'], quality: int | None) -> dict[str, Any]:
    options: dict[str, Any] = {'type': format}
    # Playwright rejects quality for png
    if format == 'jpeg' and quality is not None:
        options['quality'] = quality
    return options


async def _layout_metrics(page: Page) -> dict[str, Any]:
    cdp = await page.context.new_cdp_session(page)
    try:
        return await cdp.send('Page.getLayoutMetrics')
    finally:
        await cdp.detach()


async def _cdp_capture(page: Page, params: dict[str, Any], quality: int | None) -> str:
    """Page.captureScreenshot via CDP - Playwright's own screenshot API has no webp."""
    params = {'format': 'webp', **params}
    if quality is not None:
        params['quality'] = quality
    cdp = await page.context.new_cdp_session(page)
    try:
        result = await cdp.send('Page.captureScreenshot', params)
    finally:
        await cdp.detach()
    return result['data']
