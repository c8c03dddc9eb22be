"""
Orchestrator - per-tenant trading state machine.

Purpose: Run the news -> analysis -> decision -> risk -> settlement ->
explanation pipeline for one tenant, one state per cycle.

States (strict order on the happy path):
  IDLE -> MONITORING -> ANALYZING -> DECIDING -> RISK_CHECK -> EXECUTING -> EXPLAINING -> MONITORING

Every transition is logged, emitted as a stateChange event and persisted
with the session before the new state does any work. Any exception in a
cycle is emitted as an error event and sends the machine back to
MONITORING after a jittered backoff.
"""
import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, TypeVar

from ..config import TradingConfig
from ..errors import FatalAgentError, ReconciliationError
from ..events import EventBus, EventCallback, Subscription
from ..logger import AgentLogger
from ..resilience import jittered_backoff, with_timeout
from ..schemas import (
    STATE_DESCRIPTIONS,
    AgentEvent,
    AgentLog,
    AgentSession,
    AgentState,
    AgentStatus,
    EventType,
    Portfolio,
    SettlementAccount,
    Snapshot,
)
from ..services.base import (
    PortfolioStore,
    PriceSource,
    ReasoningService,
    SettlementService,
    SignalSource,
)
from ..services.reasoning import fallback_explanation
from .decision import build_decision, should_act
from .execution import ExecutionAgent
from .portfolio import summarize
from .risk_gate import evaluate
from .signal import SignalAgent, most_affected_ticker

logger = logging.getLogger("news_trader.agents.orchestrator")

T = TypeVar("T")

# Working data a saved session must carry to continue from each state
RESUME_REQUIREMENTS: Dict[AgentState, Tuple[str, ...]] = {
    AgentState.ANALYZING: ("current_news",),
    AgentState.DECIDING: ("current_news", "current_analysis"),
    AgentState.RISK_CHECK: ("current_news", "current_analysis", "current_decision"),
    AgentState.EXPLAINING: ("current_news", "current_analysis", "current_decision"),
}


class Orchestrator:
    """
    Trading loop for one tenant.

    Owns the agent state, the working state (current news, analysis and
    decision) and the event ring buffer. Portfolio and trades are read
    from and written to the store.
    """

    def __init__(
        self,
        tenant: str,
        config: TradingConfig,
        store: PortfolioStore,
        signal_source: SignalSource,
        reasoning: ReasoningService,
        settlement: SettlementService,
        price_source: PriceSource,
        bus: Optional[EventBus] = None,
    ):
        self.tenant = tenant
        self.config = config
        self.store = store
        self.reasoning = reasoning
        self.settlement = settlement
        self.price_source = price_source
        self.bus = bus or EventBus(config.subscriber_queue_size)
        self.limits = config.risk_limits()

        self.signal = SignalAgent(signal_source, store, timeout=config.call_timeout_seconds)
        self.execution = ExecutionAgent(settlement, store, timeout=config.settlement_timeout_seconds)
        self.agent_logger = AgentLogger(tenant, config.log_buffer_size)

        self.state = AgentState.IDLE
        self.is_running = False
        self.account: Optional[SettlementAccount] = None
        self.last_portfolio: Optional[Portfolio] = None
        self.trades_executed = 0
        self.started_at: Optional[datetime] = None
        self.stopped_at: Optional[datetime] = None

        self.current_news = None
        self.current_analysis = None
        self.current_decision = None

        self._events: Deque[AgentEvent] = deque(maxlen=config.event_buffer_size)
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._lifecycle = asyncio.Lock()
        self._consecutive_errors = 0

        self._handlers: Dict[AgentState, Callable[[], Awaitable[float]]] = {
            AgentState.MONITORING: self._monitor,
            AgentState.ANALYZING: self._analyze,
            AgentState.DECIDING: self._decide,
            AgentState.RISK_CHECK: self._risk_check,
            AgentState.EXECUTING: self._execute,
            AgentState.EXPLAINING: self._explain,
        }

    @property
    def wallet_id(self) -> Optional[str]:
        return self.account.account_id if self.account else None

    @property
    def initialized(self) -> bool:
        return self.account is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Acquire the settlement account and load the last known portfolio.

        Raises:
            FatalAgentError: the settlement account cannot be opened
        """
        try:
            self.account = await with_timeout(
                self.settlement.open_account(self.tenant),
                self.config.settlement_timeout_seconds,
                "settlement",
            )
        except FatalAgentError:
            raise
        except Exception as e:
            raise FatalAgentError(f"Cannot initialize settlement account for {self.tenant}: {e}") from e

        try:
            self.last_portfolio = await self._store(self.store.get_portfolio(self.tenant))
            session = await self._store(self.store.get_session(self.tenant))
        except Exception as e:
            logger.warning(f"[{self.tenant}] Could not load persisted state: {e}")
            session = None

        if session:
            self.trades_executed = session.trades_count

        await self._log(
            "Agent initialized",
            {"wallet_id": self.wallet_id, "balances": self.account.balances},
        )

    async def start(self) -> bool:
        """
        Start the loop from MONITORING.

        Returns:
            False if the loop is already running

        Raises:
            FatalAgentError: called before initialize() succeeded
        """
        async with self._lifecycle:
            return await self._launch()

    async def resume(self, session: AgentSession) -> bool:
        """
        Start the loop from a persisted session.

        A session saved in ANALYZING, DECIDING, RISK_CHECK or EXPLAINING
        continues from that state with its working data. A session saved in
        EXECUTING may have settled, so it is reported for reconciliation
        and the loop starts from MONITORING.

        Returns:
            False if the loop is already running
        """
        async with self._lifecycle:
            return await self._launch(session)

    async def _launch(self, session: Optional[AgentSession] = None) -> bool:
        if self.is_running:
            return False
        if not self.initialized:
            raise FatalAgentError(f"Orchestrator for {self.tenant} is not initialized")

        previous = self._task
        if previous is not None and not previous.done() and previous is not asyncio.current_task():
            await previous

        self.is_running = True
        self.started_at = datetime.utcnow()
        self.stopped_at = None
        self._consecutive_errors = 0
        self._wake.clear()
        self._clear_working_state()

        await self._log("Agent started")
        state = AgentState.MONITORING
        if session is not None:
            state = await self._restore(session)
        await self._set_state(state)
        self._task = asyncio.create_task(self._run_loop(), name=f"orchestrator-{self.tenant}")
        return True

    async def _restore(self, session: AgentSession) -> AgentState:
        """Load a session's working data. Returns the state to continue from."""
        saved = AgentState(session.state)

        if saved == AgentState.EXECUTING:
            data: Dict[str, Any] = {
                "message": "Session ended while settling a trade",
                "error_type": "InterruptedSettlement",
                "state": saved.value,
                "reconciliation_required": True,
                "decision": session.current_decision.model_dump(mode="json") if session.current_decision else None,
            }
            await self._log("Interrupted settlement needs reconciliation", data, level=logging.CRITICAL)
            await self._emit(EventType.ERROR, data)
            return AgentState.MONITORING

        needed = RESUME_REQUIREMENTS.get(saved)
        if needed is None:
            return AgentState.MONITORING
        if any(getattr(session, field) is None for field in needed):
            await self._log(f"Saved {saved.value} session is incomplete, starting from monitoring")
            return AgentState.MONITORING
        if saved == AgentState.EXPLAINING and not session.current_decision.settlement_tx:
            await self._log("Saved explanation has no settlement reference, starting from monitoring")
            return AgentState.MONITORING

        self.current_news = session.current_news
        self.current_analysis = session.current_analysis
        self.current_decision = session.current_decision
        await self._log(f"Resuming from {saved.value}", {"url": session.current_news.url})
        return saved

    async def stop(self) -> bool:
        """
        Stop the loop cooperatively and wait for it to reach IDLE.

        An in-flight external call is not aborted. A trade that already
        settled is explained before the loop exits.

        Returns:
            False if the loop was not running
        """
        task = self._task
        if task is not None and task is asyncio.current_task():
            if not self.is_running:
                return False
            self.is_running = False
            self._wake.set()
            return True

        async with self._lifecycle:
            if not self.is_running:
                return False

            self.is_running = False
            self._wake.set()

            task = self._task
            if task is not None:
                await task
            return True

    async def _run_loop(self) -> None:
        logger.info(f"[{self.tenant}] Loop started")
        try:
            while self.is_running or self.state == AgentState.EXPLAINING:
                delay = await self.step()
                if self.is_running:
                    await self._sleep(delay)
        finally:
            await self._finish_stop()

    async def _finish_stop(self) -> None:
        self._clear_working_state()
        self.stopped_at = datetime.utcnow()
        await self._log("Agent stopped", {"trades_executed": self.trades_executed})
        await self._set_state(AgentState.IDLE)
        logger.info(f"[{self.tenant}] Loop stopped")

    async def step(self) -> float:
        """Run the current state's handler. Returns the delay before the next cycle."""
        handler = self._handlers.get(self.state)
        if handler is None:
            return self.config.idle_backoff_seconds

        try:
            delay = await handler()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return await self._handle_error(e)

        self._consecutive_errors = 0
        return delay

    async def _handle_error(self, error: Exception) -> float:
        failed_state = self.state
        reconciliation = isinstance(error, ReconciliationError)

        data: Dict[str, Any] = {
            "message": str(error),
            "error_type": type(error).__name__,
            "state": failed_state.value,
        }
        if reconciliation:
            data["reconciliation_required"] = True
            data["tx_id"] = error.tx_id

        level = logging.CRITICAL if reconciliation else logging.ERROR
        await self._log(f"Error in {failed_state.value}: {error}", data, level=level)
        await self._emit(EventType.ERROR, data)

        self._clear_working_state()
        if self.state != AgentState.MONITORING:
            await self._set_state(AgentState.MONITORING)

        delay = jittered_backoff(
            self._consecutive_errors,
            base_delay=self.config.error_backoff_seconds,
            max_delay=self.config.max_error_backoff_seconds,
        )
        self._consecutive_errors += 1
        return delay

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early when stop() is called."""
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # State handlers. Each returns the delay before the next cycle.
    # ------------------------------------------------------------------

    async def _monitor(self) -> float:
        portfolio = await self._store(self.store.get_portfolio(self.tenant))
        if portfolio is None:
            await self._log("No portfolio configured, waiting")
            return self.config.idle_backoff_seconds

        self.last_portfolio = portfolio
        tickers = portfolio.tickers()
        if not tickers:
            await self._log("No holdings to monitor")
            return self.config.idle_backoff_seconds

        await self._log(f"Searching news for {', '.join(tickers)}")
        article = await self.signal.find_unprocessed(self.tenant, tickers)
        if article is None:
            await self._log("No new relevant news")
            return self.config.idle_backoff_seconds

        await self._store(self.store.mark_processed(self.tenant, article.url))
        try:
            await self._store(self.store.append_news(self.tenant, article))
        except Exception as e:
            logger.warning(f"[{self.tenant}] Could not persist article {article.url}: {e}")

        self.current_news = article
        await self._log(f"Found news: {article.title}", {"url": article.url, "score": article.score})
        await self._set_state(AgentState.ANALYZING)
        return self.config.cycle_delay_seconds

    async def _analyze(self) -> float:
        article = self.current_news
        portfolio = self.last_portfolio
        if article is None or portfolio is None:
            return await self._abort("No article to analyze")

        ticker = most_affected_ticker(article.content, portfolio.tickers())
        if ticker is None:
            return await self._abort(f"No portfolio ticker mentioned in {article.url}")

        self.current_news = article.model_copy(update={"ticker": ticker})
        text = await self.signal.fetch_full_text(article, self.config.short_content_chars)

        await self._log(f"Analyzing impact on {ticker}")
        analysis = await with_timeout(
            self.reasoning.analyze_impact(text, ticker, portfolio.holdings),
            self.config.call_timeout_seconds,
            "reasoning",
        )
        analysis = analysis.model_copy(update={"ticker": ticker})
        self.current_analysis = analysis

        act, reason = should_act(analysis, self.limits)
        analysis_data = analysis.model_dump(mode="json")
        if not act:
            return await self._abort(f"Not acting on {ticker}: {reason}", analysis_data)

        await self._log(f"Actionable {analysis.sentiment} signal for {ticker}", analysis_data)
        await self._set_state(AgentState.DECIDING)
        return self.config.cycle_delay_seconds

    async def _decide(self) -> float:
        analysis = self.current_analysis
        if analysis is None or analysis.ticker is None:
            return await self._abort("No analysis to decide on")

        price = await self._reference_price(analysis.ticker)
        decision = build_decision(analysis, analysis.ticker, price)
        self.current_decision = decision

        await self._log(
            f"Decision: {decision.action} {decision.shares} {decision.ticker} "
            f"for ${decision.amount_usd:.2f} at ${price:.2f}/share",
            decision.model_dump(mode="json"),
        )
        await self._set_state(AgentState.RISK_CHECK)
        return self.config.cycle_delay_seconds

    async def _risk_check(self) -> float:
        decision = self.current_decision
        if decision is None:
            return await self._abort("No decision to check")

        portfolio = await self._store(self.store.get_portfolio(self.tenant))
        if portfolio is None:
            return await self._abort("Portfolio disappeared before risk check")
        self.last_portfolio = portfolio

        trailing = await self._store(
            self.store.get_trades(self.tenant, limit=self.limits.max_trades_per_window)
        )
        result = evaluate(portfolio, decision, trailing, self.limits)

        if not result.passed:
            return await self._abort(f"Risk check failed: {'; '.join(result.notes)}", result.model_dump())

        await self._log("Risk check passed", result.model_dump())
        await self._set_state(AgentState.EXECUTING)
        return self.config.cycle_delay_seconds

    async def _execute(self) -> float:
        decision = self.current_decision
        if decision is None or self.account is None:
            return await self._abort("No decision to execute")

        portfolio = await self._store(self.store.get_portfolio(self.tenant))
        if portfolio is None:
            return await self._abort("Portfolio disappeared before execution")

        await self._log(f"Settling {decision.action} {decision.shares} {decision.ticker}")
        result = await self.execution.execute(self.tenant, self.account, portfolio, decision)

        self.current_decision = decision.model_copy(update={
            "settlement_tx": result.receipt.tx_id,
            "settlement_link": result.receipt.audit_link,
        })
        self.last_portfolio = result.portfolio
        self.trades_executed += 1

        await self._log(
            f"Trade settled: {result.receipt.tx_id}",
            {"audit_link": result.receipt.audit_link, "portfolio": summarize(result.portfolio)},
        )
        await self._set_state(AgentState.EXPLAINING)
        return self.config.cycle_delay_seconds

    async def _explain(self) -> float:
        article = self.current_news
        analysis = self.current_analysis
        decision = self.current_decision
        if article is None or analysis is None or decision is None:
            return await self._abort("Nothing to explain")

        try:
            explanation = await with_timeout(
                self.reasoning.explain(article, analysis, decision),
                self.config.call_timeout_seconds,
                "reasoning",
            )
        except Exception as e:
            logger.warning(f"[{self.tenant}] Explanation failed, using template: {e}")
            explanation = fallback_explanation(analysis, decision)

        await self._emit(EventType.TRADE_COMPLETE, {
            "news": article.model_dump(mode="json"),
            "analysis": analysis.model_dump(mode="json"),
            "decision": decision.model_dump(mode="json"),
            "explanation": explanation,
            "portfolio": self.last_portfolio.model_dump(mode="json") if self.last_portfolio else None,
        })
        await self._log("Trade complete", {"explanation": explanation})

        self._clear_working_state()
        await self._set_state(AgentState.MONITORING)
        return self.config.cycle_delay_seconds

    async def _abort(self, message: str, data: Any = None) -> float:
        """Discard working state and return to MONITORING."""
        await self._log(message, data)
        self._clear_working_state()
        await self._set_state(AgentState.MONITORING)
        return self.config.cycle_delay_seconds

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _reference_price(self, ticker: str) -> float:
        try:
            price = await with_timeout(
                self.price_source.get_price(ticker),
                self.config.call_timeout_seconds,
                "pricing",
            )
            if price > 0:
                return price
            logger.warning(f"[{self.tenant}] Non-positive price {price} for {ticker}")
        except Exception as e:
            logger.warning(f"[{self.tenant}] Price lookup failed for {ticker}: {e}")
        return self.config.reference_price

    async def _store(self, awaitable: Awaitable[T]) -> T:
        return await with_timeout(awaitable, self.config.call_timeout_seconds, "store")

    def _clear_working_state(self) -> None:
        self.current_news = None
        self.current_analysis = None
        self.current_decision = None

    async def _set_state(self, new_state: AgentState) -> None:
        old_state = self.state
        self.state = new_state
        await self._log(
            f"State: {old_state.value} -> {new_state.value}",
            {"from": old_state.value, "to": new_state.value},
        )
        await self._emit(EventType.STATE_CHANGE, {
            "from": old_state.value,
            "to": new_state.value,
            "description": STATE_DESCRIPTIONS[new_state],
        })
        await self._persist_session()

    async def _log(self, message: str, data: Any = None, level: int = logging.INFO) -> AgentLog:
        entry = self.agent_logger.log(self.state, message, data, level=level)
        self._publish(AgentEvent(type=EventType.LOG, data=entry.model_dump(mode="json")))
        try:
            await self._store(self.store.append_log(self.tenant, entry))
        except Exception as e:
            logger.warning(f"[{self.tenant}] Could not persist log entry: {e}")
        return entry

    async def _emit(self, event_type: EventType, data: Any) -> AgentEvent:
        event = AgentEvent(type=event_type, data=data)
        self._publish(event)
        try:
            await self._store(self.store.append_event(self.tenant, event))
        except Exception as e:
            logger.warning(f"[{self.tenant}] Could not persist {event_type} event: {e}")
        return event

    def _publish(self, event: AgentEvent) -> None:
        self._events.append(event)
        self.bus.publish(self.tenant, event)

    async def _persist_session(self) -> None:
        try:
            await self._store(self.store.save_session(self.session()))
        except Exception as e:
            logger.warning(f"[{self.tenant}] Could not persist session: {e}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def session(self) -> AgentSession:
        return AgentSession(
            tenant=self.tenant,
            state=self.state,
            is_running=self.is_running,
            wallet_id=self.wallet_id,
            started_at=self.started_at,
            stopped_at=self.stopped_at,
            trades_count=self.trades_executed,
            current_news=self.current_news,
            current_analysis=self.current_analysis,
            current_decision=self.current_decision,
        )

    def get_status(self, log_limit: int = 50) -> AgentStatus:
        return AgentStatus(
            state=self.state,
            is_running=self.is_running,
            wallet_id=self.wallet_id,
            logs=self.agent_logger.get_logs(log_limit),
            current_news=self.current_news,
            current_analysis=self.current_analysis,
            current_decision=self.current_decision,
        )

    def get_logs(self, limit: Optional[int] = None) -> List[AgentLog]:
        return self.agent_logger.get_logs(limit)

    def get_events(self, limit: Optional[int] = None) -> List[AgentEvent]:
        """Buffered events, most recent first."""
        events = list(reversed(self._events))
        return events if limit is None else events[:max(limit, 0)]

    def snapshot(self) -> Snapshot:
        return Snapshot(
            tenant=self.tenant,
            state=self.state,
            is_running=self.is_running,
            portfolio=self.last_portfolio,
            wallet_id=self.wallet_id,
        )

    def subscribe(self, max_queue: Optional[int] = None) -> Subscription:
        """Stream events, starting with an initial_state snapshot."""
        return self.bus.subscribe(self.tenant, self.snapshot(), max_queue)

    def on_event(self, callback: EventCallback) -> Callable[[], None]:
        return self.bus.on_event(self.tenant, callback)
