"""
Shared fixtures and fakes for the news trader tests.
"""
import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from news_trader.agents.orchestrator import Orchestrator
from news_trader.config import TradingConfig
from news_trader.events import EventBus
from news_trader.schemas import (
    Analysis,
    Decision,
    Holding,
    NewsArticle,
    RiskTolerance,
    SettlementAccount,
    SettlementReceipt,
)
from news_trader.services.pricing import FixedPriceSource
from news_trader.services.store import MemoryPortfolioStore

AAPL_CONTENT = (
    "AAPL shares jumped after AAPL reported record iPhone sales. Analysts said AAPL "
    "could keep climbing as AAPL services revenue also beat estimates, lifting AAPL "
    "to an all-time high in early trading on strong demand across every region."
)


class FakeSignalSource:
    def __init__(self, articles: Optional[List[NewsArticle]] = None, full_text: Optional[str] = None):
        self.articles = list(articles or [])
        self.full_text = full_text
        self.search_error: Optional[Exception] = None
        self.extract_error: Optional[Exception] = None
        self.searches: List[List[str]] = []
        self.extracted: List[str] = []
        self.closed = False

    async def search(self, tickers):
        self.searches.append(list(tickers))
        if self.search_error:
            raise self.search_error
        return list(self.articles)

    async def extract_full_text(self, url):
        self.extracted.append(url)
        if self.extract_error:
            raise self.extract_error
        if self.full_text is None:
            return None
        return NewsArticle(url=url, content=self.full_text)

    async def close(self):
        self.closed = True


class FakeReasoning:
    def __init__(self, analysis: Analysis, explanation: str = "I bought AAPL on record sales."):
        self.analysis = analysis
        self.explanation = explanation
        self.analyze_error: Optional[Exception] = None
        self.explain_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.analyze_calls: List[tuple] = []
        self.explain_calls: List[tuple] = []
        self.closed = False

    async def analyze_impact(self, text, ticker, holdings):
        self.analyze_calls.append((text, ticker, list(holdings)))
        if self.gate is not None:
            await self.gate.wait()
        if self.analyze_error:
            raise self.analyze_error
        return self.analysis

    async def explain(self, article, analysis, decision):
        self.explain_calls.append((article, analysis, decision))
        if self.explain_error:
            raise self.explain_error
        return self.explanation

    async def close(self):
        self.closed = True


class FakeSettlement:
    def __init__(self, tx_id: str = "abc123"):
        self.tx_id = tx_id
        self.open_error: Optional[Exception] = None
        self.trade_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()
        self.opened: List[str] = []
        self.trades: List[tuple] = []
        self.closed = False

    async def open_account(self, tenant):
        self.opened.append(tenant)
        if self.open_error:
            raise self.open_error
        return SettlementAccount(account_id=f"acct-{tenant}", balances={"cash": 100000.0})

    async def execute_trade(self, account, action, ticker, amount_usd, price):
        self.trades.append((account.account_id, action, ticker, amount_usd, price))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.trade_error:
            raise self.trade_error
        return SettlementReceipt(
            tx_id=self.tx_id,
            audit_link=f"https://example.test/tx/{self.tx_id}",
        )

    async def close(self):
        self.closed = True


class FakePriceSource:
    def __init__(self, price: float = 100.0):
        self.price = price
        self.closed = False

    async def get_price(self, ticker):
        return self.price

    async def close(self):
        self.closed = True


class FailingPriceSource:
    async def get_price(self, ticker):
        raise RuntimeError("quote feed down")

    async def close(self):
        return None


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


def make_article(url: str = "https://news.test/aapl-record", content: str = AAPL_CONTENT, score: float = 0.9) -> NewsArticle:
    return NewsArticle(
        title="Apple posts record quarter",
        url=url,
        content=content,
        score=score,
    )


def make_analysis(**overrides) -> Analysis:
    values = dict(
        impact_score=9,
        sentiment="bullish",
        action="buy",
        confidence=0.9,
        amount_usd=500,
        reasoning="Record sales should lift the stock.",
    )
    values.update(overrides)
    return Analysis(**values)


def make_decision(**overrides) -> Decision:
    values = dict(
        action="buy",
        ticker="AAPL",
        shares=5,
        amount_usd=500.0,
        price=100.0,
        reasoning="Record sales",
    )
    values.update(overrides)
    return Decision(**values)


@pytest.fixture
def config() -> TradingConfig:
    return TradingConfig(
        idle_backoff_seconds=0.01,
        cycle_delay_seconds=0,
        error_backoff_seconds=0.01,
        max_error_backoff_seconds=0.05,
        call_timeout_seconds=1.0,
        settlement_timeout_seconds=1.0,
        event_buffer_size=1000,
    )


@pytest.fixture
def store() -> MemoryPortfolioStore:
    return MemoryPortfolioStore()


@pytest.fixture
def article() -> NewsArticle:
    return make_article()


@pytest.fixture
def signal_source(article) -> FakeSignalSource:
    return FakeSignalSource([article])


@pytest.fixture
def reasoning() -> FakeReasoning:
    return FakeReasoning(make_analysis())


@pytest.fixture
def settlement() -> FakeSettlement:
    return FakeSettlement()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest_asyncio.fixture
async def configured_store(store) -> MemoryPortfolioStore:
    await store.init_portfolio(
        "alice",
        10000.0,
        RiskTolerance.MODERATE,
        [Holding(ticker="AAPL", shares=10, avg_price=150)],
    )
    return store


@pytest_asyncio.fixture
async def orchestrator(config, configured_store, signal_source, reasoning, settlement, bus):
    orch = Orchestrator(
        "alice",
        config,
        configured_store,
        signal_source,
        reasoning,
        settlement,
        FixedPriceSource(100.0),
        bus,
    )
    await orch.initialize()
    yield orch
    if orch.is_running:
        await orch.stop()
