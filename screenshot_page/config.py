"""Server configuration.

Timeouts, delays, the debug port range, and the desktop user agent. Defaults
work out of the box; an optional JSON file at CONFIG_PATH overrides any subset.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Self

import pydantic

from screenshot_page.models import StrictModel
from screenshot_page.paths import CONFIG_PATH

__all__ = [
    'DEFAULT_USER_AGENT',
    'ServerConfig',
    'load_config',
    'save_config',
]

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


class ServerConfig(StrictModel):
    """Tunables for navigation, system browser launch, and the login wait."""

    # Every navigation is bounded by this, independent of the login deadline
    navigation_timeout_ms: int = 30_000
    element_wait_timeout_ms: int = 10_000

    # Remote debugging port is picked at random from [min, max]
    debug_port_min: int = 9222
    debug_port_max: int = 9321
    system_browser_settle_seconds: float = 1.0

    # Login wait
    navigation_settle_seconds: float = 2.0
    signal_poll_seconds: float = 1.0
    url_poll_seconds: float = 0.5

    user_agent: str = DEFAULT_USER_AGENT

    @pydantic.model_validator(mode='after')
    def _check_port_range(self) -> Self:
        if not 0 < self.debug_port_min <= self.debug_port_max < 65536:
            raise ValueError(f'Invalid debug port range: {self.debug_port_min}-{self.debug_port_max}')
        return self


def load_config(path: Path = CONFIG_PATH) -> ServerConfig:
    """Load config from file, falling back to defaults when the file does not exist.

    Raises:
        ValueError: If the file exists but is not valid JSON or has invalid fields.
    """
    if not path.exists():
        return ServerConfig()

    try:
        config = ServerConfig.model_validate_json(path.read_text())
    except pydantic.ValidationError as e:
        raise ValueError(f'Invalid config file at {path}: {e}') from e

    logger.info(f'Loaded config from {path}')
    return config


def save_config(config: ServerConfig, path: Path = CONFIG_PATH) -> None:
    """Save config to file, creating parent directories if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.model_dump(mode='json'), indent=2) + '\n')
    logger.info(f'Saved config to {path}')
