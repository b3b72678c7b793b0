"""Screenshot Page MCP Server.

Browser screenshots with persistent per-site authentication.

Architecture:
    MCP client ─[stdio]─> FastMCP server
        ├─ BrowserSessionManager   one browser + shared authenticated page
        ├─ LoginWaitController     login-and-wait, signal-login-complete
        ├─ CaptureService          screenshot-page, screenshot-element
        └─ CookieStore             ~/.mcp-screenshot-cookies/<site>.json

Tools: login-and-wait, screenshot-page, screenshot-element,
       signal-login-complete, clear-auth-cookies

Typical flow:
    1. login-and-wait(url) opens a visible browser; log in by hand
    2. signal-login-complete (or just navigate past the login page)
    3. screenshot-page(url) reuses the saved cookies headlessly

Setup:
    uv tool install --editable .
    claude mcp add --scope user screenshot-page -- screenshot-page-mcp
"""

from __future__ import annotations

import atexit
import contextlib
import logging
import signal
import sys
import typing
from urllib.parse import urlparse

import fastmcp.exceptions
import mcp.server.fastmcp
import mcp.types
import pydantic

from screenshot_page.capture import CaptureService, ElementNotFoundError
from screenshot_page.config import load_config
from screenshot_page.cookie_store import CookieStore
from screenshot_page.login import LoginWaitController, write_login_signal
from screenshot_page.models import (
    CompletionSignal,
    ElementScreenshot,
    ImageFormat,
    LoginResult,
    PageScreenshot,
    WaitCondition,
)
from screenshot_page.paths import COOKIES_DIR
from screenshot_page.session import BrowserSessionManager
from screenshot_page.utils import DualLogger, humanize_seconds

__all__ = [
    'main',
    'server',
]

logger = logging.getLogger(__name__)

# Create FastMCP server with lifespan (defined below)
server: mcp.server.fastmcp.FastMCP

_COMPLETION_DESCRIPTIONS: dict[CompletionSignal, str] = {
    'indicator-matched': 'success indicator detected',
    'navigation-away-detected': 'navigation away from the login page',
    'external-signal-file': 'signal-login-complete',
    'timeout': 'wait timed out',
}


def validate_url(url: str) -> None:
    """Reject anything but absolute http(s) URLs before touching the browser."""
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise fastmcp.exceptions.ValidationError(f'Invalid URL: {url}') from e
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise fastmcp.exceptions.ValidationError('URL must start with http:// or https://')


def format_login_summary(result: LoginResult) -> str:
    if result.outcome == 'resolved':
        headline = 'Login session established and cookies saved!'
    else:
        headline = 'Login wait timed out. Cookies present at the deadline were saved.'
    return (
        f'{headline}\n\n'
        f'Browser: {result.browser_type}\n'
        f'Initial URL: {result.initial_url}\n'
        f'Final URL: {result.final_url}\n'
        f'Cookies saved: {result.cookie_count}\n'
        f'Completed via: {_COMPLETION_DESCRIPTIONS[result.completed_via]}\n'
        f'Elapsed: {humanize_seconds(result.elapsed_seconds)}\n\n'
        'The browser window will remain open for future screenshots.'
    )


def format_page_summary(result: PageScreenshot) -> str:
    visibility = 'visible' if result.visible else 'headless'
    return (
        'Screenshot captured successfully!\n\n'
        f'Browser: {result.browser_type} ({visibility})\n'
        f'Page Title: {result.title}\n'
        f'Final URL: {result.final_url}\n'
        f'Format: {result.image.format}\n'
        f'Dimensions: {result.width}x{result.height}\n'
        f'Full Page: {result.full_page}\n'
        f'Used saved auth: {result.used_saved_auth}\n'
        f'Reused auth page: {result.reused_auth_page}'
    )


def format_element_summary(result: ElementScreenshot) -> str:
    visibility = 'visible' if result.visible else 'headless'
    return (
        'Element screenshot captured successfully!\n\n'
        f'Browser: {result.browser_type} ({visibility})\n'
        f'URL: {result.url}\n'
        f'Selector: {result.selector}\n'
        f'Format: {result.image.format}'
    )


def _text_and_image(
    text: str,
    result: PageScreenshot | ElementScreenshot,
) -> list[mcp.types.TextContent | mcp.types.ImageContent]:
    return [
        mcp.types.TextContent(type='text', text=text),
        mcp.types.ImageContent(type='image', data=result.image.data, mimeType=result.image.mime_type),
    ]


def register_tools(capture: CaptureService, login: LoginWaitController, store: CookieStore) -> None:
    """Register service methods as MCP tools via closures."""

    @server.tool(
        name='login-and-wait',
        annotations=mcp.types.ToolAnnotations(
            title='Login and Wait',
            destructiveHint=False,
            idempotentHint=False,
            readOnlyHint=False,
            openWorldHint=True,
        ),
        structured_output=False,
    )
    async def login_and_wait(
        url: str,
        ctx: mcp.server.fastmcp.Context[typing.Any, typing.Any, typing.Any],
        wait_minutes: typing.Annotated[float, pydantic.Field(gt=0)] = 3.0,
        success_indicator: str | None = None,
        use_default_browser: bool = True,
    ) -> str:
        """Open a login page in a visible browser and wait for a manual login, then save the cookies.

        The wait ends on the first of: the success indicator appearing, a navigation
        away from login-looking URLs (no indicator), signal-login-complete being
        called (no indicator), or the deadline. Cookies are saved either way and
        the page stays open for screenshot-page(reuse_auth_page=True).

        Args:
            url: Login page URL (http:// or https://)
            wait_minutes: Maximum minutes to wait for the login (default 3)
            success_indicator: URL fragment (contains "/" or starts with "http") or CSS
                selector that only appears once logged in
            use_default_browser: Attach to the installed Chrome/Edge instead of bundled Chromium
        """
        validate_url(url)
        tool_logger = DualLogger(ctx)
        try:
            result = await login.login_and_wait(
                url,
                tool_logger,
                wait_minutes=wait_minutes,
                success_indicator=success_indicator,
                use_system_browser=use_default_browser,
            )
        except Exception as e:
            await tool_logger.error(f'Error during login process: {e}')
            raise fastmcp.exceptions.ToolError(f'Error during login process: {e}') from e
        return format_login_summary(result)

    @server.tool(
        name='screenshot-page',
        annotations=mcp.types.ToolAnnotations(
            title='Screenshot Page',
            destructiveHint=False,
            idempotentHint=True,
            readOnlyHint=False,
            openWorldHint=True,
        ),
        structured_output=False,
    )
    async def screenshot_page(
        url: str,
        ctx: mcp.server.fastmcp.Context[typing.Any, typing.Any, typing.Any],
        full_page: bool = True,
        width: typing.Annotated[int, pydantic.Field(ge=1, le=10_000)] = 1920,
        height: typing.Annotated[int, pydantic.Field(ge=1, le=10_000)] = 1080,
        format: ImageFormat = 'png',
        quality: typing.Annotated[int | None, pydantic.Field(ge=0, le=100)] = None,
        wait_for: WaitCondition = 'networkidle2',
        delay: typing.Annotated[int, pydantic.Field(ge=0)] = 0,
        use_saved_auth: bool = True,
        reuse_auth_page: bool = False,
        use_default_browser: bool = False,
        visible_browser: bool = False,
    ) -> list[mcp.types.TextContent | mcp.types.ImageContent]:
        """Capture a screenshot of a web page, optionally with saved login cookies.

        Args:
            url: Page URL (http:// or https://)
            full_page: Capture the whole scrollable page instead of the viewport
            width: Viewport width in pixels
            height: Viewport height in pixels
            format: png, jpeg, or webp
            quality: 0-100, jpeg and webp only
            wait_for: Ready condition - load, domcontentloaded, networkidle0, networkidle2
            delay: Extra milliseconds to wait after the page is ready
            use_saved_auth: Apply cookies saved for this site, and save the page's cookies afterwards
            reuse_auth_page: Use the page left open by login-and-wait when it is still open
            use_default_browser: Use the installed Chrome/Edge (only with visible_browser)
            visible_browser: Show the browser window instead of running headless
        """
        validate_url(url)
        tool_logger = DualLogger(ctx)
        try:
            result = await capture.screenshot_page(
                url,
                tool_logger,
                full_page=full_page,
                width=width,
                height=height,
                format=format,
                quality=quality,
                wait_for=wait_for,
                delay_ms=delay,
                use_saved_auth=use_saved_auth,
                reuse_auth_page=reuse_auth_page,
                use_default_browser=use_default_browser,
                visible_browser=visible_browser,
            )
        except Exception as e:
            await tool_logger.error(f'Error capturing screenshot: {e}')
            raise fastmcp.exceptions.ToolError(f'Error capturing screenshot: {e}') from e
        return _text_and_image(format_page_summary(result), result)

    @server.tool(
        name='screenshot-element',
        annotations=mcp.types.ToolAnnotations(
            title='Screenshot Element',
            destructiveHint=False,
            idempotentHint=True,
            readOnlyHint=False,
            openWorldHint=True,
        ),
        structured_output=False,
    )
    async def screenshot_element(
        url: str,
        selector: typing.Annotated[str, pydantic.Field(min_length=1)],
        ctx: mcp.server.fastmcp.Context[typing.Any, typing.Any, typing.Any],
        wait_for_selector: bool = True,
        format: ImageFormat = 'png',
        quality: typing.Annotated[int | None, pydantic.Field(ge=0, le=100)] = None,
        padding: typing.Annotated[int, pydantic.Field(ge=0)] = 0,
        use_saved_auth: bool = True,
        use_default_browser: bool = False,
        visible_browser: bool = False,
    ) -> list[mcp.types.TextContent | mcp.types.ImageContent]:
        """Capture a screenshot of a single element on a web page.

        Args:
            url: Page URL (http:// or https://)
            selector: CSS selector of the element
            wait_for_selector: Wait up to 10 seconds for the element to appear
            format: png, jpeg, or webp
            quality: 0-100, jpeg and webp only
            padding: Inline padding in pixels added around the element before capture
            use_saved_auth: Apply cookies saved for this site
            use_default_browser: Use the installed Chrome/Edge (only with visible_browser)
            visible_browser: Show the browser window instead of running headless
        """
        validate_url(url)
        tool_logger = DualLogger(ctx)
        try:
            result = await capture.screenshot_element(
                url,
                selector,
                tool_logger,
                wait_for_selector=wait_for_selector,
                format=format,
                quality=quality,
                padding=padding,
                use_saved_auth=use_saved_auth,
                use_default_browser=use_default_browser,
                visible_browser=visible_browser,
            )
        except ElementNotFoundError as e:
            await tool_logger.warning(str(e))
            raise fastmcp.exceptions.ToolError(str(e)) from e
        except Exception as e:
            await tool_logger.error(f'Error capturing element screenshot: {e}')
            raise fastmcp.exceptions.ToolError(f'Error capturing element screenshot: {e}') from e
        return _text_and_image(format_element_summary(result), result)

    @server.tool(
        name='signal-login-complete',
        annotations=mcp.types.ToolAnnotations(
            title='Signal Login Complete',
            destructiveHint=False,
            idempotentHint=True,
            readOnlyHint=False,
            openWorldHint=False,
        ),
        structured_output=False,
    )
    async def signal_login_complete(ctx: mcp.server.fastmcp.Context[typing.Any, typing.Any, typing.Any]) -> str:
        """Tell a running login-and-wait that the manual login is complete."""
        tool_logger = DualLogger(ctx)
        try:
            write_login_signal(login.signal_path)
        except OSError as e:
            await tool_logger.error(f'Error signaling login completion: {e}')
            raise fastmcp.exceptions.ToolError(f'Error signaling login completion: {e}') from e
        await tool_logger.info('Login completion signal written')
        return 'Login completion signal sent! The login-and-wait tool should continue shortly.'

    @server.tool(
        name='clear-auth-cookies',
        annotations=mcp.types.ToolAnnotations(
            title='Clear Saved Cookies',
            destructiveHint=True,
            idempotentHint=True,
            readOnlyHint=False,
            openWorldHint=False,
        ),
        structured_output=False,
    )
    async def clear_auth_cookies(
        ctx: mcp.server.fastmcp.Context[typing.Any, typing.Any, typing.Any],
        url: str | None = None,
    ) -> str:
        """Delete saved cookies for one site, or for every site when url is omitted.

        Args:
            url: Any URL on the site whose cookies should be cleared
        """
        if url is not None:
            validate_url(url)
        tool_logger = DualLogger(ctx)
        try:
            if url is None:
                count = store.clear_all()
                await tool_logger.info(f'Cleared {count} cookie records')
                return f'All saved cookies cleared ({count} domains)'

            result = store.clear(url)
        except Exception as e:
            await tool_logger.error(f'Error clearing cookies: {e}')
            raise fastmcp.exceptions.ToolError(f'Error clearing cookies: {e}') from e

        if result.deleted:
            await tool_logger.info(f'Cleared cookies for {result.identity}')
            return f'Cookies cleared for domain: {result.identity}'
        return f'No cookies found for domain: {result.identity}'


@contextlib.asynccontextmanager
async def lifespan(server_instance: mcp.server.fastmcp.FastMCP) -> typing.AsyncIterator[None]:
    """Manage browser lifecycle - initialization before requests, cleanup after shutdown."""
    # Stdout is the MCP transport; everything goes to stderr
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S',
        stream=sys.stderr,
    )
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    config = load_config()
    store = CookieStore(COOKIES_DIR)
    manager = BrowserSessionManager(config)
    register_tools(
        CaptureService(manager, store, config),
        LoginWaitController(manager, store, config),
        store,
    )

    # Register signal handlers to ensure cleanup on SIGTERM/SIGINT
    # This is critical for `claude mcp reconnect` which sends SIGTERM
    def signal_handler(signum: int, frame: typing.Any) -> None:
        logger.info(f'Signal {signum} received, cleaning up browser')
        manager.close_sync()
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)
    atexit.register(manager.close_sync)

    logger.info('Screenshot server initialized')
    logger.info(f'  Cookie directory: {store.directory}')

    try:
        yield
    finally:
        # Graceful shutdown path
        await manager.shutdown()
        atexit.unregister(manager.close_sync)
        logger.info('Server cleanup complete')


# Initialize FastMCP with lifespan
server = mcp.server.fastmcp.FastMCP('screenshot-page', lifespan=lifespan)


def main() -> None:
    """Entry point for the screenshot-page MCP server."""
    print('Starting Screenshot Page MCP server', file=sys.stderr)
    server.run()


if __name__ == '__main__':
    main()
