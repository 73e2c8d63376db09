"""Browsing capability used by the session manager and the scraper.

The scraper only talks to the ``Browser`` protocol. ``PlaywrightBrowser`` is the
production implementation; tests substitute an ``AsyncMock``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Protocol

from sbi_portfolio.config import Settings

logger = logging.getLogger(__name__)

# Playwright imported lazily to allow testing without browser
_pw = None


def _get_playwright():
    global _pw
    if _pw is None:
        from playwright.async_api import async_playwright
        _pw = async_playwright
    return _pw


class BrowserError(Exception):
    """Navigation or page interaction failed."""


class BrowserTimeout(BrowserError):
    """A bounded wait expired."""


class Browser(Protocol):
    async def goto(self, url: str, timeout: float | None = None) -> None: ...

    async def wait_for_load(self, timeout: float | None = None) -> None: ...

    async def wait_for_url(self, pattern: str, timeout: float | None = None) -> None: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def count(self, selector: str) -> int: ...

    async def content(self) -> str: ...

    async def screenshot(self, path: Path) -> None: ...

    async def storage_state(self) -> dict[str, Any]: ...


def _ms(seconds: float | None) -> float | None:
    return None if seconds is None else seconds * 1000


@contextmanager
def _translated(action: str):
    """Re-raise Playwright errors as BrowserError / BrowserTimeout."""
    from playwright.async_api import Error as PlaywrightError
    from playwright.async_api import TimeoutError as PlaywrightTimeoutError

    try:
        yield
    except PlaywrightTimeoutError as e:
        raise BrowserTimeout(f"{action}: {e}") from e
    except PlaywrightError as e:
        raise BrowserError(f"{action}: {e}") from e


class PlaywrightBrowser:
    """Single page inside an isolated Playwright browser context."""

    def __init__(self, page, context) -> None:
        self._page = page
        self._context = context

    async def goto(self, url: str, timeout: float | None = None) -> None:
        with _translated(f"goto {url}"):
            await self._page.goto(url, timeout=_ms(timeout))

    async def wait_for_load(self, timeout: float | None = None) -> None:
        with _translated("wait_for_load_state"):
            await self._page.wait_for_load_state("domcontentloaded", timeout=_ms(timeout))

    async def wait_for_url(self, pattern: str, timeout: float | None = None) -> None:
        with _translated(f"wait_for_url {pattern}"):
            await self._page.wait_for_url(pattern, timeout=_ms(timeout))

    async def fill(self, selector: str, value: str) -> None:
        with _translated(f"fill {selector}"):
            await self._page.fill(selector, value)

    async def click(self, selector: str) -> None:
        with _translated(f"click {selector}"):
            await self._page.click(selector)

    async def count(self, selector: str) -> int:
        with _translated(f"count {selector}"):
            return await self._page.locator(selector).count()

    async def content(self) -> str:
        with _translated("content"):
            return await self._page.content()

    async def screenshot(self, path: Path) -> None:
        with _translated("screenshot"):
            await self._page.screenshot(path=str(path), full_page=True)

    async def storage_state(self) -> dict[str, Any]:
        with _translated("storage_state"):
            return await self._context.storage_state()


@asynccontextmanager
async def open_browser(
    settings: Settings,
    storage_state: dict[str, Any] | None = None,
) -> AsyncIterator[PlaywrightBrowser]:
    """Launch Chromium with an isolated context; always torn down on exit."""
    pw = _get_playwright()
    async with pw() as p:
        browser = await p.chromium.launch(
            headless=settings.headless,
            slow_mo=settings.slow_mo_ms,
        )
        try:
            ctx_kwargs: dict[str, Any] = {"user_agent": settings.user_agent}
            if storage_state:
                ctx_kwargs["storage_state"] = storage_state
            context = await browser.new_context(**ctx_kwargs)
            try:
                page = await context.new_page()
                yield PlaywrightBrowser(page, context)
            finally:
                await context.close()
        finally:
            await browser.close()
            logger.debug("Browser closed")
