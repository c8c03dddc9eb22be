"""
Interfaces for everything the orchestrator talks to.

Concrete adapters live beside this module; tests supply in-memory fakes.
"""
from typing import List, Optional, Protocol, Tuple

from ..schemas import (
    AgentEvent,
    AgentLog,
    AgentSession,
    Analysis,
    Decision,
    Holding,
    NewsArticle,
    Portfolio,
    ReconciliationRecord,
    RiskTolerance,
    SettlementAccount,
    SettlementReceipt,
    Trade,
    TradeAction,
)


class SignalSource(Protocol):
    async def search(self, tickers: List[str]) -> List[NewsArticle]:
        ...

    async def extract_full_text(self, url: str) -> Optional[NewsArticle]:
        ...

    async def close(self) -> None:
        ...


class ReasoningService(Protocol):
    async def analyze_impact(self, text: str, ticker: str, holdings: List[Holding]) -> Analysis:
        ...

    async def explain(self, article: NewsArticle, analysis: Analysis, decision: Decision) -> str:
        ...

    async def close(self) -> None:
        ...


class SettlementService(Protocol):
    async def open_account(self, tenant: str) -> SettlementAccount:
        ...

    async def execute_trade(
        self,
        account: SettlementAccount,
        action: TradeAction,
        ticker: str,
        amount_usd: float,
        price: float,
    ) -> SettlementReceipt:
        ...

    async def close(self) -> None:
        ...


class PriceSource(Protocol):
    async def get_price(self, ticker: str) -> float:
        ...

    async def close(self) -> None:
        ...


class PortfolioStore(Protocol):
    """
    Durable per-tenant state.

    History reads take a limit and return most-recent-first.
    """

    async def get_portfolio(self, tenant: str) -> Optional[Portfolio]:
        ...

    async def has_config(self, tenant: str) -> bool:
        ...

    async def init_portfolio(
        self,
        tenant: str,
        cash_balance: float,
        risk_tolerance: RiskTolerance,
        holdings: List[Holding],
    ) -> Portfolio:
        ...

    async def update_holding(self, tenant: str, holding: Holding) -> None:
        ...

    async def remove_holding(self, tenant: str, ticker: str) -> None:
        ...

    async def update_cash_balance(self, tenant: str, cash_balance: float) -> None:
        ...

    async def apply_execution(
        self,
        tenant: str,
        decision: Decision,
        receipt: SettlementReceipt,
    ) -> Tuple[Portfolio, Trade]:
        ...

    async def append_trade(self, tenant: str, trade: Trade) -> None:
        ...

    async def get_trades(self, tenant: str, limit: int = 50) -> List[Trade]:
        ...

    async def append_log(self, tenant: str, entry: AgentLog) -> None:
        ...

    async def get_logs(self, tenant: str, limit: int = 50) -> List[AgentLog]:
        ...

    async def append_event(self, tenant: str, event: AgentEvent) -> None:
        ...

    async def get_events(self, tenant: str, limit: int = 50) -> List[AgentEvent]:
        ...

    async def append_news(self, tenant: str, article: NewsArticle) -> None:
        ...

    async def get_news(self, tenant: str, limit: int = 20) -> List[NewsArticle]:
        ...

    async def has_processed_article(self, tenant: str, url: str) -> bool:
        ...

    async def mark_processed(self, tenant: str, url: str) -> None:
        ...

    async def save_session(self, session: AgentSession) -> None:
        ...

    async def get_session(self, tenant: str) -> Optional[AgentSession]:
        ...

    async def append_reconciliation(self, record: ReconciliationRecord) -> None:
        ...

    async def get_reconciliations(self, tenant: str, limit: int = 50) -> List[ReconciliationRecord]:
        ...

    async def close(self) -> None:
        ...
