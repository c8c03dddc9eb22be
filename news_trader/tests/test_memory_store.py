"""
In-memory store tests.
"""
import asyncio

import pytest

from news_trader.errors import ConfigurationError, InsufficientCashError
from news_trader.schemas import AgentLog, Holding, SettlementReceipt, Trade
from news_trader.services.store import MAX_LOGS, MemoryPortfolioStore

from .conftest import make_decision


@pytest.fixture
def receipt():
    return SettlementReceipt(tx_id="abc123", audit_link="https://example.test/tx/abc123")


class TestPortfolio:
    @pytest.mark.asyncio
    async def test_init_and_read(self, configured_store):
        assert await configured_store.has_config("alice") is True
        assert await configured_store.has_config("bob") is False
        portfolio = await configured_store.get_portfolio("alice")
        assert portfolio.get_holding("AAPL").shares == 10

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, configured_store):
        portfolio = await configured_store.get_portfolio("alice")
        portfolio.cash_balance = 0
        assert (await configured_store.get_portfolio("alice")).cash_balance == 10000

    @pytest.mark.asyncio
    async def test_holding_updates(self, configured_store):
        await configured_store.update_holding("alice", Holding(ticker="MSFT", shares=3, avg_price=300))
        await configured_store.update_holding("alice", Holding(ticker="AAPL", shares=12, avg_price=150))
        await configured_store.remove_holding("alice", "MSFT")
        await configured_store.update_cash_balance("alice", 50)

        portfolio = await configured_store.get_portfolio("alice")
        assert portfolio.tickers() == ["AAPL"]
        assert portfolio.get_holding("AAPL").shares == 12
        assert portfolio.cash_balance == 50

    @pytest.mark.asyncio
    async def test_negative_cash_rejected(self, configured_store):
        with pytest.raises(ValueError):
            await configured_store.update_cash_balance("alice", -1)

    @pytest.mark.asyncio
    async def test_unconfigured_tenant(self, store):
        assert await store.get_portfolio("nobody") is None
        with pytest.raises(ConfigurationError):
            await store.update_cash_balance("nobody", 10)


class TestApplyExecution:
    @pytest.mark.asyncio
    async def test_applies_and_records(self, configured_store, receipt):
        portfolio, trade = await configured_store.apply_execution("alice", make_decision(), receipt)

        assert portfolio.cash_balance == 9500
        assert trade.settlement_tx == "abc123"
        assert (await configured_store.get_trades("alice")) == [trade]

    @pytest.mark.asyncio
    async def test_idempotent_on_tx_id(self, configured_store, receipt):
        await configured_store.apply_execution("alice", make_decision(), receipt)
        portfolio, _ = await configured_store.apply_execution("alice", make_decision(), receipt)

        assert portfolio.cash_balance == 9500
        assert len(await configured_store.get_trades("alice")) == 1

    @pytest.mark.asyncio
    async def test_validation_failure_leaves_state(self, configured_store, receipt):
        with pytest.raises(InsufficientCashError):
            await configured_store.apply_execution("alice", make_decision(amount_usd=20000.0), receipt)
        assert (await configured_store.get_portfolio("alice")).cash_balance == 10000
        assert await configured_store.get_trades("alice") == []

    @pytest.mark.asyncio
    async def test_concurrent_applications_serialize(self, configured_store):
        receipts = [SettlementReceipt(tx_id=f"tx{i}") for i in range(5)]
        await asyncio.gather(*(
            configured_store.apply_execution("alice", make_decision(shares=1, amount_usd=100.0), r)
            for r in receipts
        ))
        portfolio = await configured_store.get_portfolio("alice")
        assert portfolio.cash_balance == 9500
        assert portfolio.get_holding("AAPL").shares == 15

    @pytest.mark.asyncio
    async def test_applied_index_bounded(self, configured_store, monkeypatch):
        monkeypatch.setattr("news_trader.services.store.MAX_TRADES", 2)
        for i in range(3):
            await configured_store.apply_execution(
                "alice",
                make_decision(shares=1, amount_usd=100.0),
                SettlementReceipt(tx_id=f"tx{i}"),
            )
        assert list(configured_store._applied["alice"]) == ["tx1", "tx2"]


class TestHistory:
    @pytest.mark.asyncio
    async def test_most_recent_first(self, store):
        for i in range(3):
            await store.append_trade("alice", Trade(ticker=f"T{i}", action="buy", shares=1, price=1))
        trades = await store.get_trades("alice", limit=2)
        assert [t.ticker for t in trades] == ["T2", "T1"]

    @pytest.mark.asyncio
    async def test_log_retention(self, store):
        for i in range(MAX_LOGS + 10):
            await store.append_log("alice", AgentLog(state="idle", message=str(i)))
        logs = await store.get_logs("alice", limit=MAX_LOGS + 100)
        assert len(logs) == MAX_LOGS
        assert logs[0].message == str(MAX_LOGS + 9)

    @pytest.mark.asyncio
    async def test_processed_urls(self, store):
        assert await store.has_processed_article("alice", "u") is False
        await store.mark_processed("alice", "u")
        await store.mark_processed("alice", "u")
        assert await store.has_processed_article("alice", "u") is True
        assert await store.has_processed_article("bob", "u") is False

    @pytest.mark.asyncio
    async def test_zero_limit(self, store):
        await store.append_trade("alice", Trade(ticker="A", action="buy", shares=1, price=1))
        assert await store.get_trades("alice", limit=0) == []
