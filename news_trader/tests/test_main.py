"""
CLI parsing and wiring tests.
"""
import argparse
import os
from unittest.mock import patch

import pytest

from news_trader.config import StoreBackend, TradingConfig
from news_trader.main import build_parser, build_store, main, parse_holding
from news_trader.services.redis_store import RedisPortfolioStore
from news_trader.services.store import MemoryPortfolioStore


class TestParseHolding:
    def test_valid(self):
        holding = parse_holding("aapl:10:150.5")
        assert holding.ticker == "AAPL"
        assert holding.shares == 10
        assert holding.avg_price == 150.5

    @pytest.mark.parametrize("value", ["AAPL:10", "AAPL:ten:150", "AAPL:-1:150"])
    def test_invalid(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_holding(value)


class TestParser:
    def test_run_multiple_tenants(self):
        args = build_parser().parse_args(["run", "--tenant", "alice", "--tenant", "bob"])
        assert args.tenant == ["alice", "bob"]

    def test_configure(self):
        args = build_parser().parse_args(
            ["configure", "--tenant", "alice", "--cash", "5000", "--holding", "MSFT:2:300"]
        )
        assert args.cash == 5000.0
        assert args.risk == "moderate"
        assert args.holding[0].ticker == "MSFT"


class TestWiring:
    def test_store_backend(self):
        assert isinstance(build_store(TradingConfig()), MemoryPortfolioStore)
        assert isinstance(build_store(TradingConfig(store_backend=StoreBackend.REDIS)), RedisPortfolioStore)

    def test_bad_config_exits_nonzero(self):
        with patch.dict(os.environ, {"MAX_POSITION_PCT": "2"}, clear=True):
            assert main(["configure", "--tenant", "alice", "--cash", "100"]) == 1

    def test_negative_cash_rejected(self):
        with patch.dict(os.environ, {}, clear=True):
            assert main(["configure", "--tenant", "alice", "--cash", "-5"]) == 1
