"""SBI Securities portfolio scraper: session handling, holding extraction, snapshots."""

from sbi_portfolio.models import (
    AccountType,
    AssetType,
    Credentials,
    ForeignStock,
    Holding,
    MutualFund,
    Portfolio,
    RiskLevel,
    ScrapeResult,
    Stock,
)

__all__ = [
    "AccountType", "AssetType", "Credentials",
    "Holding", "Stock", "MutualFund", "ForeignStock",
    "Portfolio", "RiskLevel", "ScrapeResult",
]
