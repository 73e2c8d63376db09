"""SBI Securities (SBI証券) scraper using Playwright.

Logs in (or reuses saved cookies), reads the domestic and foreign account pages
and builds a Portfolio snapshot from every stock / fund section.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, AsyncContextManager, Callable

from sbi_portfolio.base import BaseScraper
from sbi_portfolio.browser import Browser, BrowserError, open_browser
from sbi_portfolio.config import Settings, get_settings
from sbi_portfolio.errors import SiteUnreachable
from sbi_portfolio.models import Credentials, Portfolio, ScrapeResult
from sbi_portfolio.sbi.extract import extract_domestic_holdings, extract_foreign_holdings
from sbi_portfolio.sbi.session import SessionManager
from sbi_portfolio.session_store import SessionStore

BrowserFactory = Callable[..., AsyncContextManager[Browser]]


class SBIScraper(BaseScraper):
    institution_name = "sbi"
    display_name = "SBI証券"
    scraper_type = "playwright"

    def __init__(
        self,
        settings: Settings | None = None,
        store: SessionStore | None = None,
        browser_factory: BrowserFactory | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or get_settings()
        self.store = store or SessionStore(self.settings.session_state_path)
        self.browser_factory = browser_factory or open_browser
        self.session: SessionManager | None = None

    async def scrape(self, credentials: Credentials | None) -> ScrapeResult:
        storage_state = self.store.load()
        self.session = SessionManager(self.store, self.settings)
        self.session.begin(credentials)

        async with self.browser_factory(self.settings, storage_state=storage_state) as browser:
            await self.session.authenticate(browser, credentials)
            await self._dump_debug(browser, "after-login")

            self.logger.info("Fetching domestic stocks and funds...")
            html = await self._fetch_page(browser, self.settings.domestic_portfolio_url, "domestic-portfolio")
            domestic, warnings = extract_domestic_holdings(
                html,
                strict_account_labels=self.settings.strict_account_labels,
                stable_fund_tickers=self.settings.stable_fund_tickers,
            )

            self.logger.info("Fetching foreign stocks...")
            html = await self._fetch_page(browser, self.settings.foreign_portfolio_url, "foreign-portfolio")
            foreign, foreign_warnings = extract_foreign_holdings(html)

        portfolio = Portfolio(holdings=[*domestic, *foreign], snapshot_at=datetime.now(timezone.utc))
        self.logger.info(
            "Scrape complete: %d holdings (%d domestic, %d foreign), %d warnings",
            len(portfolio.holdings),
            len(domestic),
            len(foreign),
            len(warnings) + len(foreign_warnings),
        )
        return ScrapeResult(portfolio=portfolio, warnings=[*warnings, *foreign_warnings])

    async def _fetch_page(self, browser: Browser, url: str, name: str) -> str:
        try:
            await browser.goto(url, timeout=self.settings.navigation_timeout)
            await browser.wait_for_load(timeout=self.settings.load_timeout)
            html = await browser.content()
        except BrowserError as e:
            raise SiteUnreachable(url, str(e)) from e
        await self._dump_debug(browser, name, html)
        return html

    async def _dump_debug(self, browser: Browser, name: str, html: str | None = None) -> None:
        """Screenshot (and HTML) for selector debugging when SBI_DEBUG_DUMP=true."""
        if not self.settings.debug_dump:
            return
        debug_dir = self.settings.debug_dir
        try:
            debug_dir.mkdir(parents=True, exist_ok=True)
            await browser.screenshot(debug_dir / f"{name}.png")
            if html is not None:
                (debug_dir / f"{name}.html").write_text(html, encoding="utf-8")
            self.logger.info("Debug dump saved: %s/%s.*", debug_dir, name)
        except (OSError, BrowserError) as e:
            self.logger.warning("Failed to save debug dump %s: %s", name, e)


def summarize(portfolio: Portfolio) -> dict[str, Any]:
    return {
        "snapshot_at": portfolio.snapshot_at.isoformat(),
        "holdings": len(portfolio.holdings),
        "total_value": portfolio.total_value(),
        "total_profit_loss": portfolio.total_profit_loss(),
        "total_profit_loss_rate": portfolio.total_profit_loss_rate(),
        "risk_level": portfolio.risk_level().value,
    }
