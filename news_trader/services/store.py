"""
In-process portfolio store.

Per-tenant asyncio locks make apply_execution one logical unit; bounded
deques enforce history retention.
"""
import asyncio
import logging
from collections import OrderedDict, defaultdict, deque
from typing import Deque, Dict, List, Optional, Set, Tuple

from ..agents.portfolio import apply_decision
from ..errors import ConfigurationError
from ..schemas import (
    AgentEvent,
    AgentLog,
    AgentSession,
    Decision,
    Holding,
    NewsArticle,
    Portfolio,
    ReconciliationRecord,
    RiskTolerance,
    SettlementReceipt,
    Trade,
)

logger = logging.getLogger("news_trader.services.store")

MAX_TRADES = 1000
MAX_LOGS = 500
MAX_EVENTS = 500
MAX_NEWS = 100
MAX_RECONCILIATIONS = 1000


def _recent(items: Deque, limit: int) -> list:
    """Most-recent-first slice of an append-ordered deque."""
    if limit <= 0:
        return []
    return list(reversed(items))[:limit]


class MemoryPortfolioStore:
    """Dict-backed store for single-process deployments and tests."""

    def __init__(self):
        self._portfolios: Dict[str, Portfolio] = {}
        self._trades: Dict[str, Deque[Trade]] = defaultdict(lambda: deque(maxlen=MAX_TRADES))
        self._logs: Dict[str, Deque[AgentLog]] = defaultdict(lambda: deque(maxlen=MAX_LOGS))
        self._events: Dict[str, Deque[AgentEvent]] = defaultdict(lambda: deque(maxlen=MAX_EVENTS))
        self._news: Dict[str, Deque[NewsArticle]] = defaultdict(lambda: deque(maxlen=MAX_NEWS))
        self._processed: Dict[str, Set[str]] = defaultdict(set)
        self._applied: Dict[str, "OrderedDict[str, Trade]"] = defaultdict(OrderedDict)
        self._sessions: Dict[str, AgentSession] = {}
        self._reconciliations: Dict[str, Deque[ReconciliationRecord]] = defaultdict(
            lambda: deque(maxlen=MAX_RECONCILIATIONS)
        )
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_portfolio(self, tenant: str) -> Optional[Portfolio]:
        portfolio = self._portfolios.get(tenant)
        return portfolio.model_copy(deep=True) if portfolio else None

    async def has_config(self, tenant: str) -> bool:
        return tenant in self._portfolios

    async def init_portfolio(
        self,
        tenant: str,
        cash_balance: float,
        risk_tolerance: RiskTolerance = RiskTolerance.MODERATE,
        holdings: Optional[List[Holding]] = None,
    ) -> Portfolio:
        portfolio = Portfolio(
            cash_balance=cash_balance,
            risk_tolerance=risk_tolerance,
            holdings=list(holdings or []),
        )
        async with self._locks[tenant]:
            self._portfolios[tenant] = portfolio
        logger.info(f"[{tenant}] Portfolio configured: cash=${cash_balance:.2f}, {len(portfolio.holdings)} holdings")
        return portfolio.model_copy(deep=True)

    async def update_holding(self, tenant: str, holding: Holding) -> None:
        async with self._locks[tenant]:
            portfolio = self._require(tenant)
            portfolio.holdings = [h for h in portfolio.holdings if h.ticker != holding.ticker]
            portfolio.holdings.append(holding.model_copy())

    async def remove_holding(self, tenant: str, ticker: str) -> None:
        async with self._locks[tenant]:
            portfolio = self._require(tenant)
            portfolio.holdings = [h for h in portfolio.holdings if h.ticker != ticker]

    async def update_cash_balance(self, tenant: str, cash_balance: float) -> None:
        if cash_balance < 0:
            raise ValueError(f"cash_balance must not be negative, got {cash_balance}")
        async with self._locks[tenant]:
            self._require(tenant).cash_balance = cash_balance

    async def apply_execution(
        self,
        tenant: str,
        decision: Decision,
        receipt: SettlementReceipt,
    ) -> Tuple[Portfolio, Trade]:
        """
        Apply a settled decision: cash, holding and trade record together.

        Re-applying the same receipt returns the current state unchanged.
        """
        async with self._locks[tenant]:
            applied = self._applied[tenant]
            if receipt.tx_id in applied:
                logger.info(f"[{tenant}] Settlement {receipt.tx_id} already applied")
                return self._require(tenant).model_copy(deep=True), applied[receipt.tx_id]

            updated = apply_decision(self._require(tenant), decision)
            trade = Trade(
                ticker=decision.ticker,
                action=decision.action,
                shares=decision.shares,
                price=decision.price,
                settlement_tx=receipt.tx_id,
                settlement_link=receipt.audit_link,
            )
            self._portfolios[tenant] = updated
            self._trades[tenant].append(trade)
            applied[receipt.tx_id] = trade
            while len(applied) > MAX_TRADES:
                applied.popitem(last=False)
            return updated.model_copy(deep=True), trade

    async def append_trade(self, tenant: str, trade: Trade) -> None:
        self._trades[tenant].append(trade)

    async def get_trades(self, tenant: str, limit: int = 50) -> List[Trade]:
        return _recent(self._trades[tenant], limit)

    async def append_log(self, tenant: str, entry: AgentLog) -> None:
        self._logs[tenant].append(entry)

    async def get_logs(self, tenant: str, limit: int = 50) -> List[AgentLog]:
        return _recent(self._logs[tenant], limit)

    async def append_event(self, tenant: str, event: AgentEvent) -> None:
        self._events[tenant].append(event)

    async def get_events(self, tenant: str, limit: int = 50) -> List[AgentEvent]:
        return _recent(self._events[tenant], limit)

    async def append_news(self, tenant: str, article: NewsArticle) -> None:
        self._news[tenant].append(article)

    async def get_news(self, tenant: str, limit: int = 20) -> List[NewsArticle]:
        return _recent(self._news[tenant], limit)

    async def has_processed_article(self, tenant: str, url: str) -> bool:
        return url in self._processed[tenant]

    async def mark_processed(self, tenant: str, url: str) -> None:
        self._processed[tenant].add(url)

    async def save_session(self, session: AgentSession) -> None:
        self._sessions[session.tenant] = session.model_copy(deep=True)

    async def get_session(self, tenant: str) -> Optional[AgentSession]:
        session = self._sessions.get(tenant)
        return session.model_copy(deep=True) if session else None

    async def append_reconciliation(self, record: ReconciliationRecord) -> None:
        self._reconciliations[record.tenant].append(record)

    async def get_reconciliations(self, tenant: str, limit: int = 50) -> List[ReconciliationRecord]:
        return _recent(self._reconciliations[tenant], limit)

    async def close(self) -> None:
        return None

    def _require(self, tenant: str) -> Portfolio:
        portfolio = self._portfolios.get(tenant)
        if portfolio is None:
            raise ConfigurationError(f"No portfolio configured for tenant {tenant}")
        return portfolio
