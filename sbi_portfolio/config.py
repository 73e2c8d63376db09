"""Configuration loaded from environment / .env file."""

from __future__ import annotations

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    username: str = ""
    password: SecretStr = SecretStr("")

    login_url: str = "https://www.sbisec.co.jp/ETGate"
    domestic_portfolio_url: str = (
        "https://site2.sbisec.co.jp/ETGate/?_ControlID=WPLETacR002Control"
        "&_PageID=DefaultPID&_DataStoreID=DSWPLETacR002Control&getFlg=on"
        "&_ActionID=DefaultAID&OutSide=on"
    )
    foreign_portfolio_url: str = "https://site.sbisec.co.jp/account/foreign/assets"
    # Glob matched against page.url once the second factor has been approved
    authenticated_url_pattern: str = "**/site1.sbisec.co.jp/**"
    post_login_url_pattern: str = "**/*/Default*"

    session_state_path: Path = Path("./tmp/sbi-session.json")
    restore_fallback_to_login: bool = True

    headless: bool = True
    slow_mo_ms: int = 0
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    # seconds
    navigation_timeout: float = 30
    login_timeout: float = 30
    load_timeout: float = 10
    device_auth_timeout: float = 300

    strict_account_labels: bool = True
    stable_fund_tickers: bool = False

    debug_dump: bool = False
    debug_dir: Path = Path("./tmp/sbi-scraper-debug")

    database_path: Path = Path("./data/portfolio.duckdb")
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "SBI_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


def get_settings() -> Settings:
    return Settings()
