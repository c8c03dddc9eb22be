"""
ExecutionAgent tests: settle-then-apply ordering and reconciliation.
"""
from unittest.mock import AsyncMock

import pytest

from news_trader.agents.execution import ExecutionAgent
from news_trader.errors import InsufficientCashError, ReconciliationError, UpstreamError
from news_trader.schemas import SettlementAccount

from .conftest import make_decision

ACCOUNT = SettlementAccount(account_id="acct-alice")


class TestExecute:
    @pytest.mark.asyncio
    async def test_settles_then_applies(self, configured_store, settlement):
        agent = ExecutionAgent(settlement, configured_store, timeout=1.0)
        portfolio = await configured_store.get_portfolio("alice")

        result = await agent.execute("alice", ACCOUNT, portfolio, make_decision())

        assert settlement.trades == [("acct-alice", "buy", "AAPL", 500.0, 100.0)]
        assert result.receipt.tx_id == "abc123"
        assert result.portfolio.cash_balance == 9500
        assert result.trade.settlement_link == "https://example.test/tx/abc123"

    @pytest.mark.asyncio
    async def test_unapplicable_decision_never_settles(self, configured_store, settlement):
        agent = ExecutionAgent(settlement, configured_store, timeout=1.0)
        portfolio = await configured_store.get_portfolio("alice")

        with pytest.raises(InsufficientCashError):
            await agent.execute("alice", ACCOUNT, portfolio, make_decision(amount_usd=50000.0))
        assert settlement.trades == []

    @pytest.mark.asyncio
    async def test_settlement_failure_applies_nothing(self, configured_store, settlement):
        settlement.trade_error = UpstreamError("alpaca", "rejected")
        agent = ExecutionAgent(settlement, configured_store, timeout=1.0)
        portfolio = await configured_store.get_portfolio("alice")

        with pytest.raises(UpstreamError):
            await agent.execute("alice", ACCOUNT, portfolio, make_decision())
        assert (await configured_store.get_portfolio("alice")).cash_balance == 10000
        assert await configured_store.get_trades("alice") == []

    @pytest.mark.asyncio
    async def test_store_failure_queues_reconciliation(self, configured_store, settlement):
        configured_store.apply_execution = AsyncMock(side_effect=ConnectionError("store down"))
        agent = ExecutionAgent(settlement, configured_store, timeout=1.0)
        portfolio = await configured_store.get_portfolio("alice")

        with pytest.raises(ReconciliationError) as exc_info:
            await agent.execute("alice", ACCOUNT, portfolio, make_decision())

        assert exc_info.value.tx_id == "abc123"
        records = await configured_store.get_reconciliations("alice")
        assert records[0].receipt.tx_id == "abc123"
        assert "store down" in records[0].error

    @pytest.mark.asyncio
    async def test_reconciliation_queue_failure_still_raises(self, configured_store, settlement):
        configured_store.apply_execution = AsyncMock(side_effect=ConnectionError("store down"))
        configured_store.append_reconciliation = AsyncMock(side_effect=ConnectionError("still down"))
        agent = ExecutionAgent(settlement, configured_store, timeout=1.0)
        portfolio = await configured_store.get_portfolio("alice")

        with pytest.raises(ReconciliationError):
            await agent.execute("alice", ACCOUNT, portfolio, make_decision())
