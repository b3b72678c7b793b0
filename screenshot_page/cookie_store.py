"""Per-site cookie persistence.

One JSON file per site identity under COOKIES_DIR. The cookie list is stored
exactly as the browser returned it and handed back unchanged - the store never
interprets individual cookie attributes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import pydantic
from pydantic import TypeAdapter

from screenshot_page.models import CookieClearResult
from screenshot_page.paths import COOKIES_DIR

__all__ = [
    'UNKNOWN_IDENTITY',
    'CookieStore',
    'CookieStoreError',
    'identity_of',
]

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = 'unknown'

_SEPARATORS = str.maketrans({'.': '_', ':': '_'})

_cookies_adapter: TypeAdapter[list[dict[str, Any]]] = TypeAdapter(list[dict[str, Any]])


class CookieStoreError(Exception):
    """Cookie record could not be written or removed."""


def identity_of(url: str) -> str:
    """Derive a filesystem-safe site identity from a URL's host.

    "https://app.example.com/login" -> "app_example_com". Returns UNKNOWN_IDENTITY
    when the URL cannot be parsed or has no host.
    """
    try:
        host = urlparse(url).hostname
    except ValueError:
        return UNKNOWN_IDENTITY
    if not host:
        return UNKNOWN_IDENTITY
    return host.translate(_SEPARATORS)


class CookieStore:
    """Cookie records keyed by site identity. Writes replace the whole record."""

    def __init__(self, directory: Path = COOKIES_DIR) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, url: str) -> Path:
        return self._directory / f'{identity_of(url)}.json'

    def save(self, url: str, cookies: Sequence[dict[str, Any]]) -> Path:
        """Write the full cookie list for the URL's site, replacing any prior record.

        Raises:
            CookieStoreError: If the directory or file cannot be written.
        """
        path = self.path_for(url)
        temp_path = path.with_suffix('.tmp')
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(list(cookies), indent=2) + '\n')
            temp_path.replace(path)
        except OSError as e:
            raise CookieStoreError(f'Failed to save cookies to {path}: {e}') from e

        logger.info(f'Saved {len(cookies)} cookies for {identity_of(url)}')
        return path

    def load(self, url: str) -> list[dict[str, Any]]:
        """Return the stored cookie list, or [] when missing, unreadable, or malformed."""
        path = self.path_for(url)
        try:
            raw = path.read_text()
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning(f'Could not read {path}: {e}')
            return []

        try:
            return _cookies_adapter.validate_json(raw)
        except pydantic.ValidationError:
            logger.warning(f'Ignoring malformed cookie record {path}')
            return []

    def clear(self, url: str) -> CookieClearResult:
        """Delete one site's record. A missing record is reported, not raised."""
        path = self.path_for(url)
        try:
            path.unlink()
        except FileNotFoundError:
            return CookieClearResult(identity=identity_of(url), path=str(path), deleted=False)
        except OSError as e:
            raise CookieStoreError(f'Failed to delete {path}: {e}') from e

        logger.info(f'Cleared cookies for {identity_of(url)}')
        return CookieClearResult(identity=identity_of(url), path=str(path), deleted=True)

    def clear_all(self) -> int:
        """Delete every record. Returns the number of records deleted."""
        if not self._directory.exists():
            return 0

        deleted = 0
        for path in sorted(self._directory.glob('*.json')):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise CookieStoreError(f'Failed to delete {path}: {e}') from e
            deleted += 1

        logger.info(f'Cleared {deleted} cookie records from {self._directory}')
        return deleted
