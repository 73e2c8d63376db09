"""Live scraping runner: logs into SBI and prints the portfolio snapshot.

Usage:
    SBI_USERNAME=... SBI_PASSWORD=... python -m sbi_portfolio.run_scrape
    SBI_HEADLESS=false python -m sbi_portfolio.run_scrape --save
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import date, datetime
from decimal import Decimal

from dotenv import load_dotenv

from sbi_portfolio.config import get_settings
from sbi_portfolio.models import Credentials, SyncStatus, market_value
from sbi_portfolio.repository import DuckDBPortfolioRepository
from sbi_portfolio.sbi.scraper import SBIScraper, summarize


class DecimalEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        return super().default(o)


async def main(argv: list[str]) -> int:
    load_dotenv()
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not settings.username or not settings.password.get_secret_value():
        print("Set SBI_USERNAME and SBI_PASSWORD (environment or .env)")
        return 1

    scraper = SBIScraper(settings)
    result = await scraper.sync(Credentials(username=settings.username, password=settings.password))
    print(json.dumps(result.model_dump(), cls=DecimalEncoder, ensure_ascii=False, indent=2))
    if result.status != SyncStatus.SUCCESS or scraper.last_result is None:
        return 2

    portfolio = scraper.last_result.portfolio
    print(json.dumps(summarize(portfolio), cls=DecimalEncoder, ensure_ascii=False, indent=2))
    for h in portfolio.holdings:
        print(f"  - {h.name} ({h.ticker_code}) [{h.account_type.value}] qty={h.quantity} value=¥{market_value(h):,.0f}")

    if "--save" in argv:
        repo = DuckDBPortfolioRepository.connect(settings.database_path)
        try:
            repo.save(portfolio)
        finally:
            repo.close()
        print(f"Saved to {settings.database_path}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
