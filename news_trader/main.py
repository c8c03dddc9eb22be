"""
Command-line entry point.

    news-trader run --tenant alice --tenant bob
    news-trader configure --tenant alice --cash 10000 --risk moderate --holding AAPL:10:150
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .config import PriceSourceKind, StoreBackend, TradingConfig, load_config
from .events import EventBus
from .registry import OrchestratorRegistry
from .schemas import AgentEvent, EventType, Holding, RiskTolerance
from .services.news_client import TavilyNewsClient
from .services.pricing import AlpacaPriceSource, FixedPriceSource
from .services.reasoning import OpenAIReasoningService
from .services.redis_store import RedisPortfolioStore
from .services.settlement import AlpacaSettlementService
from .services.store import MemoryPortfolioStore

logger = logging.getLogger("news_trader")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s [TRADING] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_store(cfg: TradingConfig):
    if cfg.store_backend == StoreBackend.REDIS:
        return RedisPortfolioStore(cfg.redis_url)
    return MemoryPortfolioStore()


def build_registry(cfg: TradingConfig) -> OrchestratorRegistry:
    """Wire concrete services from configuration."""
    if cfg.price_source == PriceSourceKind.ALPACA:
        price_source = AlpacaPriceSource(cfg.alpaca_key_id, cfg.alpaca_secret_key)
    else:
        price_source = FixedPriceSource(cfg.reference_price)

    return OrchestratorRegistry(
        config=cfg,
        store=build_store(cfg),
        signal_source=TavilyNewsClient(cfg.tavily_api_key, timeout=cfg.call_timeout_seconds),
        reasoning=OpenAIReasoningService(cfg.openai_api_key, model=cfg.openai_model),
        settlement=AlpacaSettlementService(
            cfg.alpaca_key_id,
            cfg.alpaca_secret_key,
            paper=cfg.alpaca_paper,
            audit_url=cfg.settlement_audit_url,
        ),
        price_source=price_source,
        bus=EventBus(cfg.subscriber_queue_size),
    )


def parse_holding(value: str) -> Holding:
    """TICKER:SHARES:AVG_PRICE"""
    parts = value.split(":")
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"holding must be TICKER:SHARES:AVG_PRICE, got {value!r}")
    ticker, shares, avg_price = parts
    try:
        return Holding(ticker=ticker.upper(), shares=float(shares), avg_price=float(avg_price))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid holding {value!r}: {e}")


def _print_event(tenant: str, event: AgentEvent) -> None:
    if event.type == EventType.TRADE_COMPLETE:
        logger.info(f"[{tenant}] TRADE COMPLETE: {event.data.get('explanation')}")
    elif event.type == EventType.ERROR:
        logger.error(f"[{tenant}] ERROR: {event.data.get('message')}")


async def run_tenants(cfg: TradingConfig, tenants: List[str]) -> int:
    registry = build_registry(cfg)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    logger.info("=" * 60)
    logger.info("NEWS TRADER STARTING")
    logger.info(f"Mode: {cfg.get_mode_description()}")
    logger.info(f"Tenants: {', '.join(tenants)}")
    logger.info("=" * 60)

    exit_code = 0
    try:
        for tenant in tenants:
            registry.on_event(tenant, lambda event, t=tenant: _print_event(t, event))
            await registry.start(tenant)
        await stop_event.wait()
        logger.info("Received shutdown signal")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        exit_code = 1
    finally:
        await registry.shutdown()
    return exit_code


async def configure_tenant(
    cfg: TradingConfig,
    tenant: str,
    cash: float,
    risk: RiskTolerance,
    holdings: List[Holding],
) -> None:
    if cfg.store_backend == StoreBackend.MEMORY:
        logger.warning("STORE_BACKEND=memory: configuration will not outlive this process")
    store = build_store(cfg)
    try:
        portfolio = await store.init_portfolio(tenant, cash, risk, holdings)
        logger.info(
            f"[{tenant}] Configured: cash=${portfolio.cash_balance:,.2f}, "
            f"holdings={', '.join(portfolio.tickers()) or 'none'}"
        )
    finally:
        await store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="news-trader", description="Autonomous news-driven trading agent")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run trading loops until interrupted")
    run.add_argument("--tenant", action="append", required=True, help="Tenant to run (repeatable)")

    configure = sub.add_parser("configure", help="Configure a tenant portfolio")
    configure.add_argument("--tenant", required=True)
    configure.add_argument("--cash", type=float, required=True)
    configure.add_argument(
        "--risk",
        choices=[r.value for r in RiskTolerance],
        default=RiskTolerance.MODERATE.value,
    )
    configure.add_argument("--holding", type=parse_holding, action="append", default=[])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point."""
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config()
    except ValueError as e:
        print(f"CONFIGURATION ERROR: {e}")
        return 1

    setup_logging(cfg.log_level)

    if args.command == "configure":
        if args.cash < 0:
            print("CONFIGURATION ERROR: --cash must not be negative")
            return 1
        asyncio.run(configure_tenant(cfg, args.tenant, args.cash, RiskTolerance(args.risk), args.holding))
        return 0

    if not cfg.alpaca_key_id or not cfg.alpaca_secret_key:
        logger.warning("Alpaca API keys not set. Settlement will fail.")
    if not cfg.tavily_api_key:
        logger.warning("Tavily API key not set. News search will fail.")
    if not cfg.openai_api_key:
        logger.warning("OpenAI API key not set. Analysis will fail.")

    return asyncio.run(run_tenants(cfg, args.tenant))


if __name__ == "__main__":
    sys.exit(main())
