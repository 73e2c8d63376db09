"""Pydantic models shared by the scraper, the repository and reporting."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, SecretStr


class AccountType(str, Enum):
    SPECIFIC = "specific"  # 特定預り
    GENERAL = "general"  # 一般預り
    NISA_GROWTH = "nisa_growth"  # NISA 成長投資枠
    NISA_TSUMITATE = "nisa_tsumitate"  # NISA つみたて投資枠
    NISA_OLD_TSUMITATE = "nisa_old_tsumitate"  # 旧つみたてNISA


NISA_ACCOUNT_TYPES = frozenset(
    {AccountType.NISA_GROWTH, AccountType.NISA_TSUMITATE, AccountType.NISA_OLD_TSUMITATE}
)


class AssetType(str, Enum):
    STOCK = "stock"
    MUTUAL_FUND = "mutual_fund"
    FOREIGN_STOCK = "foreign_stock"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"
    DEVICE_AUTH_REQUIRED = "device_auth_required"


class Credentials(BaseModel):
    username: str = ""
    password: SecretStr = SecretStr("")


# ── Holdings ──────────────────────────────────────────────────────────


class _HoldingBase(BaseModel):
    ticker_code: str = Field(min_length=1)
    name: str
    quantity: Decimal = Field(gt=0)
    acquisition_price: Decimal = Field(ge=0)
    current_price: Decimal = Field(ge=0)
    account_type: AccountType = AccountType.SPECIFIC

    model_config = {"frozen": True}


class Stock(_HoldingBase):
    """Domestic (TSE-listed) equity."""

    asset_type: Literal[AssetType.STOCK] = AssetType.STOCK
    market: str | None = None
    dividend_yield: Decimal | None = None


class MutualFund(_HoldingBase):
    """Investment trust. Prices are quoted per 10,000 units."""

    asset_type: Literal[AssetType.MUTUAL_FUND] = AssetType.MUTUAL_FUND
    category: str | None = None
    trust_fee: Decimal | None = None
    is_nisa: bool | None = None


class ForeignStock(_HoldingBase):
    """Foreign equity. current_price is already converted to JPY."""

    asset_type: Literal[AssetType.FOREIGN_STOCK] = AssetType.FOREIGN_STOCK
    country: str
    currency: str
    exchange_rate: Decimal
    local_price: Decimal | None = None


Holding = Annotated[Union[Stock, MutualFund, ForeignStock], Field(discriminator="asset_type")]

HOLDING_CLASSES: dict[AssetType, type[_HoldingBase]] = {
    AssetType.STOCK: Stock,
    AssetType.MUTUAL_FUND: MutualFund,
    AssetType.FOREIGN_STOCK: ForeignStock,
}


# ── Valuation (dispatched on asset_type) ──────────────────────────────

FUND_LOT_SIZE = Decimal("10000")
_ZERO = Decimal("0")
_ONE = Decimal("1")


def lot_size(holding: Holding) -> Decimal:
    """Number of units one quoted price refers to."""
    if holding.asset_type == AssetType.MUTUAL_FUND:
        return FUND_LOT_SIZE
    if holding.asset_type in (AssetType.STOCK, AssetType.FOREIGN_STOCK):
        return _ONE
    raise ValueError(f"Unknown asset type: {holding.asset_type}")


def market_value(holding: Holding) -> Decimal:
    return holding.current_price * holding.quantity / lot_size(holding)


def acquisition_value(holding: Holding) -> Decimal:
    return holding.acquisition_price * holding.quantity / lot_size(holding)


def profit_loss(holding: Holding) -> Decimal:
    return (holding.current_price - holding.acquisition_price) * holding.quantity / lot_size(holding)


def profit_loss_rate(holding: Holding) -> Decimal:
    """P&L as a percentage of cost basis; 0 when there is no cost basis."""
    if holding.acquisition_price == 0:
        return _ZERO
    return profit_loss(holding) / acquisition_value(holding) * 100


def local_market_value(holding: Holding) -> Decimal:
    """Value in the listing currency (foreign stocks with a local price only)."""
    if holding.asset_type != AssetType.FOREIGN_STOCK or holding.local_price is None:
        return _ZERO
    return holding.local_price * holding.quantity


# ── Portfolio ─────────────────────────────────────────────────────────


class Portfolio(BaseModel):
    """Point-in-time snapshot of every holding across all accounts."""

    holdings: tuple[Holding, ...] = ()
    snapshot_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}

    def total_value(self) -> Decimal:
        return sum((market_value(h) for h in self.holdings), _ZERO)

    def total_profit_loss(self) -> Decimal:
        return sum((profit_loss(h) for h in self.holdings), _ZERO)

    def total_acquisition_value(self) -> Decimal:
        return sum((acquisition_value(h) for h in self.holdings), _ZERO)

    def total_profit_loss_rate(self) -> Decimal:
        cost = self.total_acquisition_value()
        if cost == 0:
            return _ZERO
        return self.total_profit_loss() / cost * 100

    def asset_allocation(self) -> dict[str, Decimal]:
        """Percent of total value per ticker.

        A ticker held in several accounts (e.g. 特定 and NISA) is summed.
        """
        total = self.total_value()
        allocation: dict[str, Decimal] = defaultdict(lambda: _ZERO)
        for h in self.holdings:
            if total > 0:
                allocation[h.ticker_code] += market_value(h) / total * 100
            else:
                allocation[h.ticker_code] = _ZERO
        return dict(allocation)

    def risk_level(self) -> RiskLevel:
        allocation = self.asset_allocation()
        if not allocation:
            return RiskLevel.LOW
        max_concentration = max(allocation.values())
        if max_concentration > 50:
            return RiskLevel.HIGH
        if max_concentration > 30:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def holdings_by_type(self, asset_type: AssetType | str) -> list[Holding]:
        return [h for h in self.holdings if h.asset_type == asset_type]


# ── Scrape results ────────────────────────────────────────────────────


class ParseWarning(BaseModel):
    """A header/row/field that was skipped during extraction."""

    kind: Literal["section", "row", "field"]
    message: str
    context: dict[str, Any] = Field(default_factory=dict)


class ScrapeResult(BaseModel):
    portfolio: Portfolio
    warnings: list[ParseWarning] = Field(default_factory=list)


class SyncResult(BaseModel):
    institution_name: str
    status: SyncStatus
    holdings_synced: int = 0
    warnings: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    error_kind: str | None = None
    error_message: str | None = None
