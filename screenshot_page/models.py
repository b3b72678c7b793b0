"""Pydantic models and type aliases for the screenshot server."""

from __future__ import annotations

import typing

import pydantic

__all__ = [
    'BrowserEngine',
    'CapturedImage',
    'CompletionSignal',
    'CookieClearResult',
    'ElementScreenshot',
    'ImageFormat',
    'LoginOutcome',
    'LoginResult',
    'LoginState',
    'PageScreenshot',
    'StrictModel',
    'WaitCondition',
]

type ImageFormat = typing.Literal['png', 'jpeg', 'webp']
type WaitCondition = typing.Literal['load', 'domcontentloaded', 'networkidle0', 'networkidle2']
type BrowserEngine = typing.Literal['bundled', 'system']
type LoginState = typing.Literal['navigating', 'waiting', 'resolved', 'timed-out']
type LoginOutcome = typing.Literal['resolved', 'timed-out']
type CompletionSignal = typing.Literal[
    'indicator-matched',
    'navigation-away-detected',
    'external-signal-file',
    'timeout',
]


class StrictModel(pydantic.BaseModel):
    """Base model with strict validation - no extra fields, all fields required unless Optional."""

    model_config = pydantic.ConfigDict(
        extra='forbid',
        strict=True,
        frozen=True,
    )


class CookieClearResult(StrictModel):
    """Outcome of clearing one site's cookie record. Not-found is not an error."""

    identity: str
    path: str
    deleted: bool


class CapturedImage(StrictModel):
    """Base64 encoded screenshot."""

    data: str
    format: ImageFormat

    @property
    def mime_type(self) -> str:
        return f'image/{self.format}'


class PageScreenshot(StrictModel):
    """Result of screenshot-page."""

    image: CapturedImage
    title: str
    final_url: str
    browser_type: str
    visible: bool
    width: int
    height: int
    full_page: bool
    used_saved_auth: bool
    reused_auth_page: bool
    cookies_saved: int  # 0 when nothing was persisted


class ElementScreenshot(StrictModel):
    """Result of screenshot-element."""

    image: CapturedImage
    url: str
    selector: str
    browser_type: str
    visible: bool


class LoginResult(StrictModel):
    """Result of login-and-wait."""

    browser_type: str
    initial_url: str
    final_url: str
    cookie_count: int
    completed_via: CompletionSignal
    outcome: LoginOutcome
    elapsed_seconds: float
