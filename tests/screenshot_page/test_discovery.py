"""Tests for system browser discovery."""

from __future__ import annotations

from pathlib import Path

import pytest

from screenshot_page import discovery


@pytest.fixture
def on_path(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Commands resolvable via shutil.which; tests fill it in."""
    found: dict[str, str] = {}
    monkeypatch.setattr(discovery.shutil, 'which', lambda command: found.get(command))
    return found


def use_platform(monkeypatch: pytest.MonkeyPatch, name: str) -> None:
    monkeypatch.setattr(discovery.platform, 'system', lambda: name)


class TestLinux:
    def test_prefers_google_chrome(self, monkeypatch: pytest.MonkeyPatch, on_path: dict[str, str]) -> None:
        use_platform(monkeypatch, 'Linux')
        on_path['google-chrome'] = '/usr/bin/google-chrome'
        on_path['chromium'] = '/usr/bin/chromium'
        assert discovery.find_system_browser() == Path('/usr/bin/google-chrome')

    def test_falls_back_to_chromium(self, monkeypatch: pytest.MonkeyPatch, on_path: dict[str, str]) -> None:
        use_platform(monkeypatch, 'Linux')
        on_path['chromium-browser'] = '/snap/bin/chromium-browser'
        assert discovery.find_system_browser() == Path('/snap/bin/chromium-browser')

    def test_none_installed(self, monkeypatch: pytest.MonkeyPatch, on_path: dict[str, str]) -> None:
        use_platform(monkeypatch, 'Linux')
        assert discovery.find_system_browser() is None


class TestMacOS:
    def test_first_existing_bundle(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        use_platform(monkeypatch, 'Darwin')
        chrome = tmp_path / 'Google Chrome'
        edge = tmp_path / 'Microsoft Edge'
        edge.touch()
        monkeypatch.setattr(discovery, 'MACOS_CANDIDATES', (chrome, edge))

        assert discovery.find_system_browser() == edge

        chrome.touch()
        assert discovery.find_system_browser() == chrome

    def test_missing_bundles_not_assumed(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        use_platform(monkeypatch, 'Darwin')
        monkeypatch.setattr(discovery, 'MACOS_CANDIDATES', (tmp_path / 'Google Chrome',))
        assert discovery.find_system_browser() is None


class TestWindows:
    def test_command_on_path(self, monkeypatch: pytest.MonkeyPatch, on_path: dict[str, str]) -> None:
        use_platform(monkeypatch, 'Windows')
        on_path['msedge'] = r'C:\Edge\msedge.exe'
        assert discovery.find_system_browser() == Path(r'C:\Edge\msedge.exe')

    def test_program_files_install(
        self,
        monkeypatch: pytest.MonkeyPatch,
        on_path: dict[str, str],
        tmp_path: Path,
    ) -> None:
        use_platform(monkeypatch, 'Windows')
        monkeypatch.setenv('PROGRAMFILES', str(tmp_path))
        chrome = tmp_path / 'Google' / 'Chrome' / 'Application' / 'chrome.exe'
        chrome.parent.mkdir(parents=True)
        chrome.touch()
        assert discovery.find_system_browser() == chrome


def test_unsupported_platform(monkeypatch: pytest.MonkeyPatch, on_path: dict[str, str]) -> None:
    use_platform(monkeypatch, 'SunOS')
    on_path['google-chrome'] = '/usr/bin/google-chrome'
    assert discovery.find_system_browser() is None
