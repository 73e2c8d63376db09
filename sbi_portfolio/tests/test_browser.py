"""Tests for the Playwright adapter."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sbi_portfolio.browser import BrowserError, BrowserTimeout, PlaywrightBrowser


@pytest.fixture
def page():
    page = AsyncMock()
    locator = MagicMock()
    locator.count = AsyncMock(return_value=2)
    page.locator = MagicMock(return_value=locator)
    return page


class TestPlaywrightBrowser:
    @pytest.mark.asyncio
    async def test_timeouts_in_milliseconds(self, page):
        browser = PlaywrightBrowser(page, AsyncMock())
        await browser.goto("https://sbi.test/login", timeout=30)
        page.goto.assert_awaited_once_with("https://sbi.test/login", timeout=30000)

    @pytest.mark.asyncio
    async def test_no_timeout(self, page):
        browser = PlaywrightBrowser(page, AsyncMock())
        await browser.wait_for_load()
        page.wait_for_load_state.assert_awaited_once_with("domcontentloaded", timeout=None)

    @pytest.mark.asyncio
    async def test_count(self, page):
        browser = PlaywrightBrowser(page, AsyncMock())
        assert await browser.count('input[name="user_id"]') == 2
        page.locator.assert_called_once_with('input[name="user_id"]')

    @pytest.mark.asyncio
    async def test_timeout_translated(self, page):
        page.wait_for_url.side_effect = PlaywrightTimeoutError("Timeout 300000ms exceeded")
        browser = PlaywrightBrowser(page, AsyncMock())
        with pytest.raises(BrowserTimeout):
            await browser.wait_for_url("**/site1.sbisec.co.jp/**", timeout=300)

    @pytest.mark.asyncio
    async def test_error_translated(self, page):
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        browser = PlaywrightBrowser(page, AsyncMock())
        with pytest.raises(BrowserError) as exc_info:
            await browser.goto("https://sbi.test/login")
        assert not isinstance(exc_info.value, BrowserTimeout)

    @pytest.mark.asyncio
    async def test_storage_state_from_context(self, page):
        context = AsyncMock()
        context.storage_state.return_value = {"cookies": [], "origins": []}
        browser = PlaywrightBrowser(page, context)
        assert await browser.storage_state() == {"cookies": [], "origins": []}

    @pytest.mark.asyncio
    async def test_screenshot_path(self, page, tmp_path):
        browser = PlaywrightBrowser(page, AsyncMock())
        await browser.screenshot(tmp_path / "login.png")
        page.screenshot.assert_awaited_once_with(path=str(Path(tmp_path / "login.png")), full_page=True)
