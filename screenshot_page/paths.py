"""Centralized file paths for the screenshot server.

Cookie records, the login completion marker, and the optional config file all
live at fixed locations so separate tool calls (and separate server processes)
agree on them.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

__all__ = [
    'CONFIG_PATH',
    'COOKIES_DIR',
    'LOGIN_SIGNAL_PATH',
    'PROFILE_DIR_PREFIX',
]

# One <site identity>.json per site
COOKIES_DIR = Path.home() / '.mcp-screenshot-cookies'

# Written by signal-login-complete, consumed (and deleted) by login-and-wait
LOGIN_SIGNAL_PATH = Path(tempfile.gettempdir()) / 'mcp-login-complete.txt'

CONFIG_PATH = Path.home() / '.config' / 'screenshot-page' / 'config.json'

# Per-launch system browser profiles: <tmp>/screenshot_page_profile_XXXX
PROFILE_DIR_PREFIX = 'screenshot_page_profile_'
