"""
Portfolio accounting tests.
"""
import pytest

from news_trader.agents.portfolio import apply_decision, summarize
from news_trader.errors import (
    InsufficientCashError,
    InsufficientSharesError,
    InvalidTradeError,
)
from news_trader.schemas import Holding, Portfolio

from .conftest import make_decision


class TestBuys:
    def test_weighted_average_cost(self):
        """10 @ 80 plus 10 bought for $1000 gives 20 @ 90."""
        portfolio = Portfolio(cash_balance=5000, holdings=[Holding(ticker="AAPL", shares=10, avg_price=80)])
        updated = apply_decision(portfolio, make_decision(shares=10, amount_usd=1000.0))

        holding = updated.get_holding("AAPL")
        assert holding.shares == 20
        assert holding.avg_price == 90
        assert updated.cash_balance == 4000

    def test_new_holding_cost_basis(self):
        portfolio = Portfolio(cash_balance=1000)
        updated = apply_decision(portfolio, make_decision(ticker="MSFT", shares=4, amount_usd=500.0))
        holding = updated.get_holding("MSFT")
        assert holding.shares == 4
        assert holding.avg_price == 125

    def test_insufficient_cash_raises_without_mutation(self):
        portfolio = Portfolio(cash_balance=100)
        with pytest.raises(InsufficientCashError):
            apply_decision(portfolio, make_decision(amount_usd=500.0))
        assert portfolio.cash_balance == 100
        assert portfolio.holdings == []

    def test_input_not_modified(self):
        portfolio = Portfolio(cash_balance=1000, holdings=[Holding(ticker="AAPL", shares=1, avg_price=100)])
        apply_decision(portfolio, make_decision(shares=1, amount_usd=100.0))
        assert portfolio.cash_balance == 1000
        assert portfolio.get_holding("AAPL").shares == 1


class TestSells:
    def test_sell_keeps_avg_price(self):
        portfolio = Portfolio(cash_balance=0, holdings=[Holding(ticker="AAPL", shares=10, avg_price=150)])
        updated = apply_decision(portfolio, make_decision(action="sell", shares=4, amount_usd=400.0))
        holding = updated.get_holding("AAPL")
        assert holding.shares == 6
        assert holding.avg_price == 150
        assert updated.cash_balance == 400

    def test_sell_to_zero_removes_holding(self):
        portfolio = Portfolio(cash_balance=0, holdings=[Holding(ticker="AAPL", shares=5, avg_price=150)])
        updated = apply_decision(portfolio, make_decision(action="sell", shares=5, amount_usd=500.0))
        assert updated.get_holding("AAPL") is None

    def test_oversell_raises(self):
        portfolio = Portfolio(cash_balance=0, holdings=[Holding(ticker="AAPL", shares=2, avg_price=150)])
        with pytest.raises(InsufficientSharesError):
            apply_decision(portfolio, make_decision(action="sell", shares=5, amount_usd=500.0))

    def test_sell_unheld_raises(self):
        with pytest.raises(InsufficientSharesError):
            apply_decision(Portfolio(cash_balance=0), make_decision(action="sell"))


class TestCashConservation:
    def test_round_trip(self):
        """Cash moves by exactly amount_usd on each trade."""
        portfolio = Portfolio(cash_balance=1000)
        after_buy = apply_decision(portfolio, make_decision(shares=2, amount_usd=250.0))
        assert after_buy.cash_balance == 750
        after_sell = apply_decision(after_buy, make_decision(action="sell", shares=2, amount_usd=260.0))
        assert after_sell.cash_balance == 1010
        assert after_sell.holdings == []

    def test_zero_shares_rejected(self):
        with pytest.raises(InvalidTradeError):
            apply_decision(Portfolio(cash_balance=1000), make_decision(shares=0, amount_usd=50.0))


def test_summarize():
    portfolio = Portfolio(cash_balance=100, holdings=[Holding(ticker="AAPL", shares=2, avg_price=50)])
    assert summarize(portfolio) == {
        "cash_balance": 100,
        "holdings_value": 100,
        "total_value": 200,
        "positions": 1,
    }
