"""Shared fixtures for all tests."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from pydantic import SecretStr

from sbi_portfolio.browser import BrowserError, BrowserTimeout
from sbi_portfolio.config import Settings
from sbi_portfolio.models import AccountType, Credentials, ForeignStock, MutualFund, Stock
from sbi_portfolio.sbi.session import LOGIN_ERROR, USER_FIELD
from sbi_portfolio.session_store import SessionStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"

DOMESTIC_URL = "https://sbi.test/domestic"
FOREIGN_URL = "https://sbi.test/foreign"
LOGIN_URL = "https://sbi.test/login"
AUTHENTICATED_PATTERN = "**/site1.sbi.test/**"
POST_LOGIN_PATTERN = "**/Default*"


@pytest.fixture
def domestic_html() -> str:
    return (FIXTURES_DIR / "domestic_portfolio.html").read_text(encoding="utf-8")


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment's .env file."""
    return Settings(
        _env_file=None,
        login_url=LOGIN_URL,
        domestic_portfolio_url=DOMESTIC_URL,
        foreign_portfolio_url=FOREIGN_URL,
        authenticated_url_pattern=AUTHENTICATED_PATTERN,
        post_login_url_pattern=POST_LOGIN_PATTERN,
        session_state_path=tmp_path / "session" / "sbi-session.json",
        debug_dir=tmp_path / "debug",
        database_path=tmp_path / "portfolio.duckdb",
    )


@pytest.fixture
def store(settings) -> SessionStore:
    return SessionStore(settings.session_state_path)


@pytest.fixture
def saved_session(store) -> dict:
    """A session blob left over from a previous run."""
    blob = {"cookies": [{"name": "old-sid", "value": "abc", "domain": ".sbisec.co.jp"}], "origins": []}
    store.path.parent.mkdir(parents=True, exist_ok=True)
    store.path.write_text(json.dumps(blob), encoding="utf-8")
    return blob


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(username="user1234", password=SecretStr("hunter2"))


def make_browser(
    *,
    pages: dict[str, str] | None = None,
    login_form: bool = True,
    login_error: bool = False,
    device_approved: bool = True,
    unreachable: tuple[str, ...] = (),
) -> AsyncMock:
    """Scripted Browser double.

    ``login_form=False`` means the page shows no user-id field, i.e. the saved
    cookies were accepted (on restore) or the form is missing (on login).
    ``device_approved=False`` means the authenticated host is never reached.
    """
    pages = pages or {}
    browser = AsyncMock()
    current = {"url": None}

    async def goto(url, timeout=None):
        if url in unreachable:
            raise BrowserError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        current["url"] = url

    async def count(selector):
        if selector == USER_FIELD:
            return 1 if login_form else 0
        if selector == LOGIN_ERROR:
            return 1 if login_error else 0
        return 0

    async def wait_for_url(pattern, timeout=None):
        if pattern == AUTHENTICATED_PATTERN and not device_approved:
            raise BrowserTimeout(f"Timeout {timeout}s exceeded waiting for {pattern}")

    async def content():
        return pages.get(current["url"], "<html><body></body></html>")

    browser.goto.side_effect = goto
    browser.count.side_effect = count
    browser.wait_for_url.side_effect = wait_for_url
    browser.content.side_effect = content
    browser.storage_state.return_value = {"cookies": [{"name": "sid", "value": "fresh"}], "origins": []}
    return browser


class FakeBrowserFactory:
    """Stands in for open_browser; records how the context was opened and closed."""

    def __init__(self, browser: AsyncMock) -> None:
        self.browser = browser
        self.opened = 0
        self.closed = 0
        self.storage_states: list[dict | None] = []

    @asynccontextmanager
    async def __call__(self, settings, storage_state=None):
        self.opened += 1
        self.storage_states.append(storage_state)
        try:
            yield self.browser
        finally:
            self.closed += 1


@pytest.fixture
def sample_stock() -> Stock:
    return Stock(
        ticker_code="1605",
        name="ＩＮＰＥＸ",
        quantity=Decimal("100"),
        acquisition_price=Decimal("1730"),
        current_price=Decimal("2675"),
    )


@pytest.fixture
def sample_fund() -> MutualFund:
    return MutualFund(
        ticker_code="MF-a1b2c3d4",
        name="ｅＭＡＸＩＳ Ｓｌｉｍ 全世界株式（オール・カントリー）",
        quantity=Decimal("30000"),
        acquisition_price=Decimal("12000"),
        current_price=Decimal("15000"),
        account_type=AccountType.NISA_TSUMITATE,
        is_nisa=True,
    )


@pytest.fixture
def sample_foreign() -> ForeignStock:
    return ForeignStock(
        ticker_code="AAPL",
        name="Apple Inc.",
        quantity=Decimal("5"),
        acquisition_price=Decimal("22000"),
        current_price=Decimal("30000"),
        country="US",
        currency="USD",
        exchange_rate=Decimal("150"),
        local_price=Decimal("200"),
    )


@pytest.fixture
def build_browser():
    return make_browser


@pytest.fixture
def factory_for():
    return FakeBrowserFactory
