"""Shared utilities for the screenshot server."""

from __future__ import annotations

import logging
import time
import typing

from mcp.server.fastmcp import Context

__all__ = [
    'DualLogger',
    'LoggerProtocol',
    'Timer',
    'humanize_seconds',
]

_logger = logging.getLogger('screenshot_page.tools')


class LoggerProtocol(typing.Protocol):
    """Protocol for logger - allows services to be MCP-agnostic."""

    async def info(self, msg: str) -> None: ...
    async def debug(self, msg: str) -> None: ...
    async def warning(self, msg: str) -> None: ...
    async def error(self, msg: str) -> None: ...


class DualLogger:
    """Logs messages to stderr (via logging) and to the MCP client context.

    Stdout carries the stdio transport, so nothing here prints to it. The
    context is optional so services can be driven outside of a tool call.
    """

    def __init__(self, ctx: Context[typing.Any, typing.Any, typing.Any] | None = None):
        self.ctx = ctx

    async def info(self, msg: str) -> None:
        _logger.info(msg)
        if self.ctx is not None:
            await self.ctx.info(msg)

    async def debug(self, msg: str) -> None:
        _logger.debug(msg)
        if self.ctx is not None:
            await self.ctx.debug(msg)

    async def warning(self, msg: str) -> None:
        _logger.warning(msg)
        if self.ctx is not None:
            await self.ctx.warning(msg)

    async def error(self, msg: str) -> None:
        _logger.error(msg)
        if self.ctx is not None:
            await self.ctx.error(msg)


class Timer:
    """Simple stopwatch-style timer for measuring elapsed time."""

    def __init__(self):
        self._start = time.perf_counter()

    def elapsed(self) -> float:
        """Return elapsed time in seconds."""
        return time.perf_counter() - self._start


def humanize_seconds(seconds: float) -> str:
    """Convert seconds to a terse duration: 45 sec, 1.5 min, 2.5 hr.

    Sub-second durations are shown with one decimal (0.4 sec) since login
    waits and captures are often that short.
    """
    intervals = [
        ('hr', 3600),
        ('min', 60),
        ('sec', 1),
    ]

    for unit, count in intervals:
        if seconds >= count:
            value = seconds / count
            value_str = f'{value:.1f}'.rstrip('0').rstrip('.')
            return f'{value_str} {unit}'

    return f'{max(seconds, 0.0):.1f} sec'
