"""System browser discovery.

Finds an installed Chromium-family browser that can be driven over the Chrome
DevTools Protocol. Preference order per platform:

- macOS:   Google Chrome, then Microsoft Edge (application bundles)
- Windows: chrome / msedge on PATH, then the Program Files installs
- Linux:   google-chrome, google-chrome-stable, chromium, chromium-browser on PATH

Safari is never returned - it has no remote debugging endpoint.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
from pathlib import Path

__all__ = [
    'find_system_browser',
]

logger = logging.getLogger(__name__)

MACOS_CANDIDATES = (
    Path('/Applications/Google Chrome.app/Contents/MacOS/Google Chrome'),
    Path('/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge'),
)

WINDOWS_COMMANDS = ('chrome', 'msedge')
WINDOWS_INSTALL_PATHS = (
    Path('Google/Chrome/Application/chrome.exe'),
    Path('Microsoft/Edge/Application/msedge.exe'),
)

LINUX_COMMANDS = ('google-chrome', 'google-chrome-stable', 'chromium', 'chromium-browser')


def find_system_browser() -> Path | None:
    """Return the preferred system browser executable, or None if none is installed."""
    system = platform.system()

    if system == 'Darwin':
        path = _first_existing(MACOS_CANDIDATES)
    elif system == 'Windows':
        path = _first_on_path(WINDOWS_COMMANDS)
        if path is None:
            program_files = Path(os.environ.get('PROGRAMFILES', r'C:\Program Files'))
            path = _first_existing(program_files / p for p in WINDOWS_INSTALL_PATHS)
    elif system == 'Linux':
        path = _first_on_path(LINUX_COMMANDS)
    else:
        logger.warning(f'No system browser discovery for platform: {system}')
        path = None

    if path is None:
        logger.info('No system browser found')
    else:
        logger.info(f'Found system browser: {path}')
    return path


def _first_on_path(commands: tuple[str, ...]) -> Path | None:
    for command in commands:
        found = shutil.which(command)
        if found:
            return Path(found)
    return None


def _first_existing(candidates) -> Path | None:
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None
