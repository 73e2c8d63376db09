"""Portfolio snapshot persistence in DuckDB.

One row per holding per snapshot. Variant-specific fields are stored as JSON in
``additional_info``; valuation columns are denormalized for reporting queries.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import duckdb

from sbi_portfolio.errors import UnknownAssetTypeOnHydration
from sbi_portfolio.models import (
    HOLDING_CLASSES,
    AccountType,
    AssetType,
    Holding,
    Portfolio,
    market_value,
    profit_loss,
    profit_loss_rate,
)

logger = logging.getLogger(__name__)

_QUANTUM = Decimal("0.0001")

# Fields that only exist on one variant, serialized into additional_info
EXTRA_FIELDS: dict[AssetType, set[str]] = {
    AssetType.STOCK: {"market", "dividend_yield"},
    AssetType.MUTUAL_FUND: {"category", "trust_fee", "is_nisa"},
    AssetType.FOREIGN_STOCK: {"country", "currency", "exchange_rate", "local_price"},
}

_COLUMNS = (
    "ticker_code, name, asset_type, account_type, quantity, acquisition_price, "
    "current_price, additional_info, snapshot_at"
)


def init_db(con: duckdb.DuckDBPyConnection) -> None:
    """Create tables."""
    con.execute("""
        CREATE TABLE IF NOT EXISTS portfolio_snapshots (
            snapshot_at TIMESTAMP NOT NULL,
            position INTEGER NOT NULL,
            ticker_code VARCHAR NOT NULL,
            name VARCHAR,
            asset_type VARCHAR NOT NULL,
            account_type VARCHAR NOT NULL,
            quantity DECIMAL(20,6) NOT NULL,
            acquisition_price DECIMAL(20,6) NOT NULL,
            current_price DECIMAL(20,6) NOT NULL,
            market_value DECIMAL(20,4),
            profit_loss DECIMAL(20,4),
            profit_loss_rate DECIMAL(20,4),
            additional_info VARCHAR,
            PRIMARY KEY (snapshot_at, position)
        )
    """)


def _to_db_ts(ts: datetime) -> datetime:
    """Naive UTC for the TIMESTAMP column."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def _from_db_ts(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc)


def holding_from_record(
    ticker_code: str,
    name: str,
    asset_type: str,
    account_type: str,
    quantity: Decimal,
    acquisition_price: Decimal,
    current_price: Decimal,
    additional_info: str | None,
) -> Holding:
    try:
        cls = HOLDING_CLASSES[AssetType(asset_type)]
    except ValueError:
        raise UnknownAssetTypeOnHydration(asset_type) from None
    extra = json.loads(additional_info) if additional_info else {}
    return cls(
        ticker_code=ticker_code,
        name=name or "",
        quantity=quantity,
        acquisition_price=acquisition_price,
        current_price=current_price,
        account_type=AccountType(account_type),
        **extra,
    )


class DuckDBPortfolioRepository:
    def __init__(self, con: duckdb.DuckDBPyConnection) -> None:
        self.con = con
        init_db(con)

    @classmethod
    def connect(cls, path: Path | str) -> DuckDBPortfolioRepository:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        return cls(duckdb.connect(str(path)))

    def close(self) -> None:
        self.con.close()

    def save(self, portfolio: Portfolio) -> None:
        snapshot_at = _to_db_ts(portfolio.snapshot_at)
        rows = []
        for position, h in enumerate(portfolio.holdings):
            extra = h.model_dump(mode="json", include=EXTRA_FIELDS[AssetType(h.asset_type)])
            rows.append([
                snapshot_at,
                position,
                h.ticker_code,
                h.name,
                AssetType(h.asset_type).value,
                h.account_type.value,
                h.quantity,
                h.acquisition_price,
                h.current_price,
                market_value(h).quantize(_QUANTUM),
                profit_loss(h).quantize(_QUANTUM),
                profit_loss_rate(h).quantize(_QUANTUM),
                json.dumps(extra, ensure_ascii=False),
            ])
        if rows:
            self.con.executemany(
                "INSERT INTO portfolio_snapshots VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
        logger.info("Saved snapshot %s (%d holdings)", portfolio.snapshot_at.isoformat(), len(rows))

    def find_latest(self) -> Portfolio | None:
        row = self.con.execute("SELECT max(snapshot_at) FROM portfolio_snapshots").fetchone()
        if row is None or row[0] is None:
            return None
        return self.find_by_date(_from_db_ts(row[0]))

    def find_by_date(self, snapshot_at: datetime) -> Portfolio | None:
        records = self.con.execute(
            f"SELECT {_COLUMNS} FROM portfolio_snapshots WHERE snapshot_at = ? ORDER BY position",
            [_to_db_ts(snapshot_at)],
        ).fetchall()
        if not records:
            return None
        return self._to_portfolio(records)

    def find_by_date_range(self, start: datetime, end: datetime) -> list[Portfolio]:
        records = self.con.execute(
            f"SELECT {_COLUMNS} FROM portfolio_snapshots "
            "WHERE snapshot_at >= ? AND snapshot_at <= ? ORDER BY snapshot_at, position",
            [_to_db_ts(start), _to_db_ts(end)],
        ).fetchall()

        grouped: dict[datetime, list[tuple]] = defaultdict(list)
        for record in records:
            grouped[record[-1]].append(record)
        return [self._to_portfolio(group) for group in grouped.values()]

    @staticmethod
    def _to_portfolio(records: list[tuple]) -> Portfolio:
        holdings = [holding_from_record(*record[:-1]) for record in records]
        return Portfolio(holdings=holdings, snapshot_at=_from_db_ts(records[0][-1]))
