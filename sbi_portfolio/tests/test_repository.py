"""Tests for DuckDB snapshot persistence."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from sbi_portfolio.errors import UnknownAssetTypeOnHydration
from sbi_portfolio.models import AccountType, ForeignStock, MutualFund, Portfolio, Stock
from sbi_portfolio.repository import DuckDBPortfolioRepository, holding_from_record

T0 = datetime(2025, 1, 31, 6, 0, tzinfo=timezone.utc)


@pytest.fixture
def repo():
    repository = DuckDBPortfolioRepository.connect(":memory:")
    yield repository
    repository.close()


@pytest.fixture
def portfolio(sample_stock, sample_fund, sample_foreign) -> Portfolio:
    return Portfolio(holdings=[sample_stock, sample_fund, sample_foreign], snapshot_at=T0)


class TestSaveAndLoad:
    def test_empty_repository(self, repo):
        assert repo.find_latest() is None
        assert repo.find_by_date(T0) is None
        assert repo.find_by_date_range(T0, T0) == []

    def test_round_trip(self, repo, portfolio):
        repo.save(portfolio)
        loaded = repo.find_latest()

        assert loaded.snapshot_at == T0
        assert [type(h) for h in loaded.holdings] == [Stock, MutualFund, ForeignStock]
        assert [h.ticker_code for h in loaded.holdings] == ["1605", "MF-a1b2c3d4", "AAPL"]
        assert loaded.total_value() == portfolio.total_value()

    def test_variant_fields_preserved(self, repo, portfolio):
        repo.save(portfolio)
        fund, foreign = repo.find_latest().holdings[1:]

        assert fund.account_type == AccountType.NISA_TSUMITATE
        assert fund.is_nisa is True
        assert fund.name == "ｅＭＡＸＩＳ Ｓｌｉｍ 全世界株式（オール・カントリー）"
        assert foreign.currency == "USD"
        assert foreign.exchange_rate == Decimal("150")
        assert foreign.local_price == Decimal("200")

    def test_denormalized_valuation(self, repo, portfolio):
        repo.save(portfolio)
        row = repo.con.execute(
            "SELECT market_value, profit_loss FROM portfolio_snapshots WHERE ticker_code = 'MF-a1b2c3d4'"
        ).fetchone()
        assert row == (Decimal("45000.0000"), Decimal("9000.0000"))

    def test_latest_picks_newest(self, repo, portfolio, sample_stock):
        repo.save(portfolio)
        newer = Portfolio(holdings=[sample_stock], snapshot_at=T0 + timedelta(days=1))
        repo.save(newer)

        latest = repo.find_latest()
        assert latest.snapshot_at == newer.snapshot_at
        assert len(latest.holdings) == 1

    def test_find_by_date(self, repo, portfolio):
        repo.save(portfolio)
        assert len(repo.find_by_date(T0).holdings) == 3
        assert repo.find_by_date(T0 + timedelta(seconds=1)) is None

    def test_find_by_date_range(self, repo, portfolio, sample_stock):
        repo.save(portfolio)
        for days in (1, 2, 10):
            repo.save(Portfolio(holdings=[sample_stock], snapshot_at=T0 + timedelta(days=days)))

        found = repo.find_by_date_range(T0, T0 + timedelta(days=2))

        assert [p.snapshot_at for p in found] == [T0 + timedelta(days=d) for d in (0, 1, 2)]
        assert [len(p.holdings) for p in found] == [3, 1, 1]

    def test_empty_portfolio_saves_nothing(self, repo):
        repo.save(Portfolio(snapshot_at=T0))
        assert repo.find_latest() is None

    def test_persists_to_file(self, tmp_path, portfolio):
        path = tmp_path / "db" / "portfolio.duckdb"
        repo = DuckDBPortfolioRepository.connect(path)
        repo.save(portfolio)
        repo.close()

        reopened = DuckDBPortfolioRepository.connect(path)
        try:
            assert len(reopened.find_latest().holdings) == 3
        finally:
            reopened.close()


class TestHydration:
    def test_unknown_asset_type(self):
        with pytest.raises(UnknownAssetTypeOnHydration) as exc_info:
            holding_from_record("X", "bond", "bond", "specific", Decimal("1"), Decimal("1"), Decimal("1"), None)
        assert exc_info.value.asset_type == "bond"

    def test_unknown_asset_type_in_table(self, repo):
        repo.con.execute(
            "INSERT INTO portfolio_snapshots VALUES (?, 0, 'BTC', 'Bitcoin', 'crypto', 'specific', "
            "1, 1, 1, 1, 0, 0, '{}')",
            [T0.replace(tzinfo=None)],
        )
        with pytest.raises(UnknownAssetTypeOnHydration):
            repo.find_latest()
