"""
Redis-backed portfolio store.

Layout (all keys expire after 30 days without writes):
    agent:{tenant}:portfolio          JSON Portfolio
    agent:{tenant}:trades             list, newest first, capped at 1000
    agent:{tenant}:logs               list, newest first, capped at 500
    agent:{tenant}:events             list, newest first, capped at 500
    agent:{tenant}:news               list, newest first, capped at 100
    agent:{tenant}:reconciliations    list, newest first
    agent:{tenant}:processed          set of article URLs
    agent:{tenant}:applied            hash tx_id -> JSON Trade
    agent:{tenant}:session            JSON AgentSession

apply_execution runs as a WATCH/MULTI transaction over the portfolio and
applied-receipt keys so a concurrent writer forces a retry instead of a
lost update.
"""
import logging
from typing import List, Optional, Tuple, Type, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel
from redis.exceptions import WatchError

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
from .store import MAX_EVENTS, MAX_LOGS, MAX_NEWS, MAX_RECONCILIATIONS, MAX_TRADES

logger = logging.getLogger("news_trader.services.redis_store")

KEY_TTL_SECONDS = 30 * 24 * 60 * 60
MAX_TRANSACTION_RETRIES = 10

M = TypeVar("M", bound=BaseModel)


class RedisPortfolioStore:
    """Store backed by redis.asyncio; safe to share across processes."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        redis_client: Optional[redis.Redis] = None,
        key_prefix: str = "agent",
    ):
        self.redis = redis_client or redis.from_url(redis_url, decode_responses=True)
        self.key_prefix = key_prefix

    def _key(self, tenant: str, name: str) -> str:
        return f"{self.key_prefix}:{tenant}:{name}"

    async def _push(self, tenant: str, name: str, model: BaseModel, cap: int) -> None:
        key = self._key(tenant, name)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lpush(key, model.model_dump_json())
            pipe.ltrim(key, 0, cap - 1)
            pipe.expire(key, KEY_TTL_SECONDS)
            await pipe.execute()

    async def _range(self, tenant: str, name: str, model: Type[M], limit: int) -> List[M]:
        if limit <= 0:
            return []
        raw = await self.redis.lrange(self._key(tenant, name), 0, limit - 1)
        return [model.model_validate_json(item) for item in raw]

    async def _set_json(self, key: str, model: BaseModel) -> None:
        await self.redis.setex(key, KEY_TTL_SECONDS, model.model_dump_json())

    async def get_portfolio(self, tenant: str) -> Optional[Portfolio]:
        raw = await self.redis.get(self._key(tenant, "portfolio"))
        if raw is None:
            return None
        return Portfolio.model_validate_json(raw)

    async def has_config(self, tenant: str) -> bool:
        return bool(await self.redis.exists(self._key(tenant, "portfolio")))

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
        await self._set_json(self._key(tenant, "portfolio"), portfolio)
        logger.info(f"[{tenant}] Portfolio configured: cash=${cash_balance:.2f}, {len(portfolio.holdings)} holdings")
        return portfolio

    async def _require(self, tenant: str) -> Portfolio:
        portfolio = await self.get_portfolio(tenant)
        if portfolio is None:
            raise ConfigurationError(f"No portfolio configured for tenant {tenant}")
        return portfolio

    async def update_holding(self, tenant: str, holding: Holding) -> None:
        portfolio = await self._require(tenant)
        portfolio.holdings = [h for h in portfolio.holdings if h.ticker != holding.ticker]
        portfolio.holdings.append(holding)
        await self._set_json(self._key(tenant, "portfolio"), portfolio)

    async def remove_holding(self, tenant: str, ticker: str) -> None:
        portfolio = await self._require(tenant)
        portfolio.holdings = [h for h in portfolio.holdings if h.ticker != ticker]
        await self._set_json(self._key(tenant, "portfolio"), portfolio)

    async def update_cash_balance(self, tenant: str, cash_balance: float) -> None:
        if cash_balance < 0:
            raise ValueError(f"cash_balance must not be negative, got {cash_balance}")
        portfolio = await self._require(tenant)
        portfolio.cash_balance = cash_balance
        await self._set_json(self._key(tenant, "portfolio"), portfolio)

    async def apply_execution(
        self,
        tenant: str,
        decision: Decision,
        receipt: SettlementReceipt,
    ) -> Tuple[Portfolio, Trade]:
        """
        Apply a settled decision atomically.

        Re-applying the same receipt returns the current state unchanged.

        Raises:
            ConfigurationError: tenant has no portfolio
            ValidationError: the decision cannot be applied
            WatchError: contention did not clear after retries
        """
        portfolio_key = self._key(tenant, "portfolio")
        applied_key = self._key(tenant, "applied")
        trades_key = self._key(tenant, "trades")

        async with self.redis.pipeline(transaction=True) as pipe:
            for attempt in range(MAX_TRANSACTION_RETRIES):
                try:
                    await pipe.watch(portfolio_key, applied_key)

                    raw_portfolio = await pipe.get(portfolio_key)
                    if raw_portfolio is None:
                        await pipe.unwatch()
                        raise ConfigurationError(f"No portfolio configured for tenant {tenant}")
                    current = Portfolio.model_validate_json(raw_portfolio)

                    existing = await pipe.hget(applied_key, receipt.tx_id)
                    if existing is not None:
                        await pipe.unwatch()
                        logger.info(f"[{tenant}] Settlement {receipt.tx_id} already applied")
                        return current, Trade.model_validate_json(existing)

                    updated = apply_decision(current, decision)
                    trade = Trade(
                        ticker=decision.ticker,
                        action=decision.action,
                        shares=decision.shares,
                        price=decision.price,
                        settlement_tx=receipt.tx_id,
                        settlement_link=receipt.audit_link,
                    )
                    trade_json = trade.model_dump_json()

                    pipe.multi()
                    pipe.setex(portfolio_key, KEY_TTL_SECONDS, updated.model_dump_json())
                    pipe.hset(applied_key, receipt.tx_id, trade_json)
                    pipe.expire(applied_key, KEY_TTL_SECONDS)
                    pipe.lpush(trades_key, trade_json)
                    pipe.ltrim(trades_key, 0, MAX_TRADES - 1)
                    pipe.expire(trades_key, KEY_TTL_SECONDS)
                    await pipe.execute()
                    return updated, trade

                except WatchError:
                    logger.warning(f"[{tenant}] Portfolio modified concurrently, retrying ({attempt + 1})")
                    await pipe.reset()
                    continue

        raise WatchError(f"Could not apply settlement {receipt.tx_id} for {tenant} after retries")

    async def append_trade(self, tenant: str, trade: Trade) -> None:
        await self._push(tenant, "trades", trade, MAX_TRADES)

    async def get_trades(self, tenant: str, limit: int = 50) -> List[Trade]:
        return await self._range(tenant, "trades", Trade, limit)

    async def append_log(self, tenant: str, entry: AgentLog) -> None:
        await self._push(tenant, "logs", entry, MAX_LOGS)

    async def get_logs(self, tenant: str, limit: int = 50) -> List[AgentLog]:
        return await self._range(tenant, "logs", AgentLog, limit)

    async def append_event(self, tenant: str, event: AgentEvent) -> None:
        await self._push(tenant, "events", event, MAX_EVENTS)

    async def get_events(self, tenant: str, limit: int = 50) -> List[AgentEvent]:
        return await self._range(tenant, "events", AgentEvent, limit)

    async def append_news(self, tenant: str, article: NewsArticle) -> None:
        await self._push(tenant, "news", article, MAX_NEWS)

    async def get_news(self, tenant: str, limit: int = 20) -> List[NewsArticle]:
        return await self._range(tenant, "news", NewsArticle, limit)

    async def has_processed_article(self, tenant: str, url: str) -> bool:
        return bool(await self.redis.sismember(self._key(tenant, "processed"), url))

    async def mark_processed(self, tenant: str, url: str) -> None:
        key = self._key(tenant, "processed")
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.sadd(key, url)
            pipe.expire(key, KEY_TTL_SECONDS)
            await pipe.execute()

    async def save_session(self, session: AgentSession) -> None:
        await self._set_json(self._key(session.tenant, "session"), session)

    async def get_session(self, tenant: str) -> Optional[AgentSession]:
        raw = await self.redis.get(self._key(tenant, "session"))
        if raw is None:
            return None
        return AgentSession.model_validate_json(raw)

    async def append_reconciliation(self, record: ReconciliationRecord) -> None:
        await self._push(record.tenant, "reconciliations", record, MAX_RECONCILIATIONS)

    async def get_reconciliations(self, tenant: str, limit: int = 50) -> List[ReconciliationRecord]:
        return await self._range(tenant, "reconciliations", ReconciliationRecord, limit)

    async def close(self) -> None:
        await self.redis.aclose()
