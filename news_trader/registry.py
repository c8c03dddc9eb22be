"""
OrchestratorRegistry - one orchestrator per tenant.

Lazily creates and initializes orchestrators, exposes the control and
query surface used by transports, and tears everything down on shutdown.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from .agents.orchestrator import Orchestrator
from .config import TradingConfig
from .errors import FatalAgentError
from .events import EventBus, EventCallback, Subscription
from .resilience import with_timeout
from .schemas import (
    AgentEvent,
    AgentLog,
    AgentState,
    AgentStatus,
    Holding,
    Portfolio,
    RiskTolerance,
    Trade,
)
from .services.base import (
    PortfolioStore,
    PriceSource,
    ReasoningService,
    SettlementService,
    SignalSource,
)

logger = logging.getLogger("news_trader.registry")

T = TypeVar("T")


class OrchestratorRegistry:
    """Owns every live orchestrator in the process."""

    def __init__(
        self,
        config: TradingConfig,
        store: PortfolioStore,
        signal_source: SignalSource,
        reasoning: ReasoningService,
        settlement: SettlementService,
        price_source: PriceSource,
        bus: Optional[EventBus] = None,
    ):
        self.config = config
        self.store = store
        self.signal_source = signal_source
        self.reasoning = reasoning
        self.settlement = settlement
        self.price_source = price_source
        self.bus = bus or EventBus(config.subscriber_queue_size)

        self._instances: Dict[str, Orchestrator] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __contains__(self, tenant: str) -> bool:
        return tenant in self._instances

    def tenants(self) -> List[str]:
        return list(self._instances.keys())

    async def get(self, tenant: str) -> Orchestrator:
        """
        Return the tenant's orchestrator, creating and initializing it once.

        Raises:
            FatalAgentError: initialization failed (nothing is cached)
        """
        existing = self._instances.get(tenant)
        if existing is not None:
            return existing

        async with self._locks[tenant]:
            existing = self._instances.get(tenant)
            if existing is not None:
                return existing

            orchestrator = Orchestrator(
                tenant,
                self.config,
                self.store,
                self.signal_source,
                self.reasoning,
                self.settlement,
                self.price_source,
                self.bus,
            )
            try:
                await orchestrator.initialize()
            except FatalAgentError:
                logger.error(f"[{tenant}] Initialization failed")
                raise
            except Exception as e:
                logger.error(f"[{tenant}] Initialization failed: {e}")
                raise FatalAgentError(f"Cannot initialize tenant {tenant}: {e}") from e

            self._instances[tenant] = orchestrator
            logger.info(f"[{tenant}] Orchestrator ready (wallet {orchestrator.wallet_id})")
            return orchestrator

    async def start(self, tenant: str) -> bool:
        """
        Start the tenant's loop.

        Returns:
            True if started, False if it was already running

        Raises:
            FatalAgentError: the tenant could not be initialized
        """
        orchestrator = await self.get(tenant)
        if not await self._store(self.store.has_config(tenant)):
            logger.warning(f"[{tenant}] Starting without a configured portfolio; waiting for one")
        return await orchestrator.start()

    async def stop(self, tenant: str) -> bool:
        """
        Returns:
            True if a running loop was stopped, False otherwise
        """
        orchestrator = self._instances.get(tenant)
        if orchestrator is None:
            return False
        return await orchestrator.stop()

    async def get_status(self, tenant: str) -> AgentStatus:
        """Status of a live orchestrator, or an idle view built from the store."""
        orchestrator = self._instances.get(tenant)
        if orchestrator is not None:
            return orchestrator.get_status()
        return AgentStatus(
            state=AgentState.IDLE,
            is_running=False,
            logs=await self._store(self.store.get_logs(tenant, 50)),
        )

    async def get_portfolio(self, tenant: str) -> Optional[Portfolio]:
        return await self.store.get_portfolio(tenant)

    async def get_trades(self, tenant: str, limit: int = 50) -> List[Trade]:
        return await self.store.get_trades(tenant, limit)

    async def get_logs(self, tenant: str, limit: int = 50) -> List[AgentLog]:
        orchestrator = self._instances.get(tenant)
        if orchestrator is not None:
            return orchestrator.get_logs(limit)
        return await self.store.get_logs(tenant, limit)

    async def get_events(self, tenant: str, limit: int = 50) -> List[AgentEvent]:
        orchestrator = self._instances.get(tenant)
        if orchestrator is not None:
            return orchestrator.get_events(limit)
        return await self.store.get_events(tenant, limit)

    async def subscribe(self, tenant: str, max_queue: Optional[int] = None) -> Subscription:
        """Stream the tenant's events, starting with an initial_state snapshot."""
        return (await self.get(tenant)).subscribe(max_queue)

    def on_event(self, tenant: str, callback: EventCallback) -> Callable[[], None]:
        return self.bus.on_event(tenant, callback)

    async def configure(
        self,
        tenant: str,
        cash_balance: float,
        risk_tolerance: RiskTolerance = RiskTolerance.MODERATE,
        holdings: Optional[List[Holding]] = None,
    ) -> Portfolio:
        """First-time portfolio configuration for a tenant."""
        portfolio = await self.store.init_portfolio(tenant, cash_balance, risk_tolerance, holdings or [])
        orchestrator = self._instances.get(tenant)
        if orchestrator is not None:
            orchestrator.last_portfolio = portfolio
        return portfolio

    async def resume_sessions(self, tenants: Iterable[str]) -> List[str]:
        """
        Restart tenants whose persisted session was running.

        A session saved mid-cycle continues from its saved state (see
        Orchestrator.resume).

        Returns:
            Tenants that were resumed
        """
        resumed = []
        for tenant in tenants:
            try:
                session = await self._store(self.store.get_session(tenant))
            except Exception as e:
                logger.error(f"[{tenant}] Could not load session: {e}")
                continue
            if session is None or not session.is_running:
                continue
            try:
                orchestrator = await self.get(tenant)
                if await orchestrator.resume(session):
                    resumed.append(tenant)
            except FatalAgentError as e:
                logger.error(f"[{tenant}] Could not resume session: {e}")
        return resumed

    async def shutdown(self) -> None:
        """Stop every loop, then release external connections."""
        running = [o for o in self._instances.values() if o.is_running]
        if running:
            logger.info(f"Stopping {len(running)} running orchestrators")
        results = await asyncio.gather(*(o.stop() for o in running), return_exceptions=True)
        for orchestrator, result in zip(running, results):
            if isinstance(result, Exception):
                logger.error(f"[{orchestrator.tenant}] Error during stop: {result}")

        for name, resource in (
            ("settlement", self.settlement),
            ("signal source", self.signal_source),
            ("reasoning", self.reasoning),
            ("price source", self.price_source),
            ("store", self.store),
        ):
            try:
                await resource.close()
            except Exception as e:
                logger.error(f"Error closing {name}: {e}")

        self.bus.close()
        self._instances.clear()
        logger.info("Registry shut down")

    async def _store(self, awaitable: Awaitable[T]) -> T:
        return await with_timeout(awaitable, self.config.call_timeout_seconds, "store")
