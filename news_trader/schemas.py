"""
Pydantic schemas for the news trading agent.
"""
from enum import Enum
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field


class AgentState(str, Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    ANALYZING = "analyzing"
    DECIDING = "deciding"
    RISK_CHECK = "risk_check"
    EXECUTING = "executing"
    EXPLAINING = "explaining"


STATE_DESCRIPTIONS: Dict[AgentState, str] = {
    AgentState.IDLE: "Agent is idle, waiting to start",
    AgentState.MONITORING: "Monitoring financial news sources",
    AgentState.ANALYZING: "Analyzing news impact with AI",
    AgentState.DECIDING: "Making trading decision",
    AgentState.RISK_CHECK: "Performing risk assessment",
    AgentState.EXECUTING: "Executing trade settlement",
    AgentState.EXPLAINING: "Generating explanation",
}


class RiskTolerance(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class Sentiment(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class AnalysisAction(str, Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class TradeAction(str, Enum):
    BUY = "buy"
    SELL = "sell"


class EventType(str, Enum):
    LOG = "log"
    STATE_CHANGE = "stateChange"
    TRADE_COMPLETE = "tradeComplete"
    ERROR = "error"


class Holding(BaseModel):
    """A single position, valued at cost basis."""
    ticker: str
    shares: float = Field(ge=0)
    avg_price: float = Field(ge=0)

    @property
    def cost_value(self) -> float:
        return self.shares * self.avg_price


class Portfolio(BaseModel):
    """Per-tenant cash, risk profile and holdings."""
    cash_balance: float = Field(ge=0)
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    holdings: List[Holding] = Field(default_factory=list)

    class Config:
        use_enum_values = True

    def tickers(self) -> List[str]:
        return [h.ticker for h in self.holdings]

    def get_holding(self, ticker: str) -> Optional[Holding]:
        return next((h for h in self.holdings if h.ticker == ticker), None)

    def holdings_value(self) -> float:
        return sum(h.cost_value for h in self.holdings)

    def total_value(self) -> float:
        return self.holdings_value() + self.cash_balance


class Trade(BaseModel):
    """Immutable record of one settled trade."""
    ticker: str
    action: TradeAction
    shares: float = Field(gt=0)
    price: float = Field(gt=0)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    settlement_tx: Optional[str] = None
    settlement_link: Optional[str] = None

    class Config:
        use_enum_values = True
        frozen = True


class NewsArticle(BaseModel):
    """Candidate article from the signal source. The URL is the dedup key."""
    title: str = ""
    url: str
    content: str = ""
    published_date: Optional[str] = None
    score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    ticker: Optional[str] = Field(default=None, description="Most-mentioned tenant ticker, set during analysis")


class Analysis(BaseModel):
    """Structured impact assessment for one (ticker, article) pair."""
    impact_score: float = Field(ge=1, le=10)
    sentiment: Sentiment
    action: AnalysisAction
    confidence: float = Field(ge=0.0, le=1.0)
    amount_usd: float = Field(default=0.0, ge=0)
    reasoning: str = ""
    ticker: Optional[str] = None

    class Config:
        use_enum_values = True


class Decision(BaseModel):
    """Trade derived from an Analysis and a reference price."""
    action: TradeAction
    ticker: str
    shares: int = Field(ge=0)
    amount_usd: float = Field(ge=0)
    price: float = Field(gt=0, description="Reference per-share price at decision time")
    reasoning: str = ""
    settlement_tx: Optional[str] = None
    settlement_link: Optional[str] = None

    class Config:
        use_enum_values = True


class RiskCheckResult(BaseModel):
    """Output of the risk gate. Each sub-check is reported individually."""
    sufficient_balance: bool = True
    position_limit: bool = True
    daily_trade_limit: bool = True
    passed: bool = True
    exposure: Optional[float] = Field(default=None, description="Projected concentration as a fraction")
    trades_in_window: int = 0
    notes: List[str] = Field(default_factory=list)


class AgentLog(BaseModel):
    """One structured agent log entry."""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    state: AgentState
    message: str
    data: Optional[Any] = None

    class Config:
        use_enum_values = True


class AgentEvent(BaseModel):
    """Streamed orchestrator event."""
    type: EventType
    data: Any = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True


class SettlementAccount(BaseModel):
    """Settlement identity used to sign trades for one tenant."""
    account_id: str
    balances: Dict[str, float] = Field(default_factory=dict)


class SettlementReceipt(BaseModel):
    """Proof of an irreversible settlement."""
    tx_id: str
    audit_link: Optional[str] = None


class AgentSession(BaseModel):
    """Externally observable agent state, persisted on every transition."""
    tenant: str
    state: AgentState = AgentState.IDLE
    is_running: bool = False
    wallet_id: Optional[str] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    trades_count: int = 0
    current_news: Optional[NewsArticle] = None
    current_analysis: Optional[Analysis] = None
    current_decision: Optional[Decision] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True


class AgentStatus(BaseModel):
    """Introspection view returned to callers."""
    state: AgentState
    is_running: bool
    wallet_id: Optional[str] = None
    logs: List[AgentLog] = Field(default_factory=list)
    current_news: Optional[NewsArticle] = None
    current_analysis: Optional[Analysis] = None
    current_decision: Optional[Decision] = None

    class Config:
        use_enum_values = True


class Snapshot(BaseModel):
    """First message delivered to a newly connected observer."""
    type: str = "initial_state"
    tenant: str
    state: AgentState
    is_running: bool
    portfolio: Optional[Portfolio] = None
    wallet_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True


class ReconciliationRecord(BaseModel):
    """Settled trade whose portfolio update failed and needs manual repair."""
    tenant: str
    decision: Decision
    receipt: SettlementReceipt
    error: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
