"""
Configuration management for the news trading agent.
"""
import os
from dataclasses import dataclass
from enum import Enum

from .agents.risk_gate import RiskLimits


class StoreBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class PriceSourceKind(str, Enum):
    FIXED = "fixed"
    ALPACA = "alpaca"


@dataclass
class TradingConfig:
    tavily_api_key: str = ""
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    alpaca_key_id: str = ""
    alpaca_secret_key: str = ""
    alpaca_paper: bool = True
    settlement_audit_url: str = "https://app.alpaca.markets/paper/dashboard/order/{tx_id}"

    store_backend: StoreBackend = StoreBackend.MEMORY
    redis_url: str = "redis://localhost:6379/0"

    price_source: PriceSourceKind = PriceSourceKind.FIXED
    reference_price: float = 100.0

    max_position_pct: float = 0.30
    max_trades_per_window: int = 3
    trade_window_hours: float = 24.0
    min_impact_score: float = 7.0
    min_confidence: float = 0.75
    short_content_chars: int = 200

    idle_backoff_seconds: float = 30.0
    cycle_delay_seconds: float = 1.0
    error_backoff_seconds: float = 5.0
    max_error_backoff_seconds: float = 60.0
    call_timeout_seconds: float = 30.0
    settlement_timeout_seconds: float = 60.0

    event_buffer_size: int = 100
    log_buffer_size: int = 1000
    subscriber_queue_size: int = 256
    log_level: str = "INFO"

    def __post_init__(self):
        self._validate()

    def _validate(self):
        """Reject thresholds that would silently disable a risk gate."""
        if not 0 < self.max_position_pct <= 1:
            raise ValueError(f"max_position_pct must be in (0, 1], got {self.max_position_pct}")
        if self.max_trades_per_window < 1:
            raise ValueError(f"max_trades_per_window must be >= 1, got {self.max_trades_per_window}")
        if not 1 <= self.min_impact_score <= 10:
            raise ValueError(f"min_impact_score must be in [1, 10], got {self.min_impact_score}")
        if not 0 <= self.min_confidence <= 1:
            raise ValueError(f"min_confidence must be in [0, 1], got {self.min_confidence}")
        if self.reference_price <= 0:
            raise ValueError(f"reference_price must be positive, got {self.reference_price}")
        for name in (
            "trade_window_hours",
            "call_timeout_seconds",
            "settlement_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        for name in (
            "idle_backoff_seconds",
            "cycle_delay_seconds",
            "error_backoff_seconds",
            "max_error_backoff_seconds",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

    def risk_limits(self) -> RiskLimits:
        return RiskLimits(
            max_position_pct=self.max_position_pct,
            max_trades_per_window=self.max_trades_per_window,
            trade_window_hours=self.trade_window_hours,
            min_impact_score=self.min_impact_score,
            min_confidence=self.min_confidence,
        )

    def get_mode_description(self) -> str:
        """Get human-readable description of the settlement venue."""
        if self.alpaca_paper:
            return "PAPER: Trades settled against the Alpaca paper account"
        return "LIVE: Trades settled against a real-money Alpaca account"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def load_config() -> TradingConfig:
    """Load configuration from environment variables."""
    backend_str = os.getenv("STORE_BACKEND", "memory").lower()
    try:
        store_backend = StoreBackend(backend_str)
    except ValueError:
        store_backend = StoreBackend.MEMORY

    price_str = os.getenv("PRICE_SOURCE", "fixed").lower()
    try:
        price_source = PriceSourceKind(price_str)
    except ValueError:
        price_source = PriceSourceKind.FIXED

    return TradingConfig(
        tavily_api_key=os.getenv("TAVILY_API_KEY", ""),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
        alpaca_key_id=os.getenv("ALPACA_KEY_ID", ""),
        alpaca_secret_key=os.getenv("ALPACA_SECRET_KEY", ""),
        alpaca_paper=_env_bool("ALPACA_PAPER", "true"),
        settlement_audit_url=os.getenv(
            "SETTLEMENT_AUDIT_URL",
            "https://app.alpaca.markets/paper/dashboard/order/{tx_id}",
        ),
        store_backend=store_backend,
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        price_source=price_source,
        reference_price=float(os.getenv("REFERENCE_PRICE", "100")),
        max_position_pct=float(os.getenv("MAX_POSITION_PCT", "0.30")),
        max_trades_per_window=int(os.getenv("MAX_TRADES_PER_WINDOW", "3")),
        trade_window_hours=float(os.getenv("TRADE_WINDOW_HOURS", "24")),
        min_impact_score=float(os.getenv("MIN_IMPACT_SCORE", "7")),
        min_confidence=float(os.getenv("MIN_CONFIDENCE", "0.75")),
        idle_backoff_seconds=float(os.getenv("IDLE_BACKOFF_SECONDS", "30")),
        cycle_delay_seconds=float(os.getenv("CYCLE_DELAY_SECONDS", "1")),
        error_backoff_seconds=float(os.getenv("ERROR_BACKOFF_SECONDS", "5")),
        max_error_backoff_seconds=float(os.getenv("MAX_ERROR_BACKOFF_SECONDS", "60")),
        call_timeout_seconds=float(os.getenv("CALL_TIMEOUT_SECONDS", "30")),
        settlement_timeout_seconds=float(os.getenv("SETTLEMENT_TIMEOUT_SECONDS", "60")),
        event_buffer_size=int(os.getenv("EVENT_BUFFER_SIZE", "100")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
