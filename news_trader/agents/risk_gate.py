"""
Risk gate - deterministic gatekeeper.

Purpose: Evaluate a proposed trade against the tenant's portfolio and recent
trade history. This is the "hard wall" between LLM output and settlement.

Rules enforced:
- affordability: buys need cash_balance >= amount_usd
- concentration: buys may not push one ticker above max_position_pct of portfolio value
- frequency: fewer than max_trades_per_window trades in the trailing window

Pure: no I/O, no mutation of its inputs.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from ..schemas import Decision, Portfolio, RiskCheckResult, Trade, TradeAction


MAX_POSITION_PCT = 0.30
MAX_TRADES_PER_WINDOW = 3
TRADE_WINDOW_HOURS = 24.0
MIN_IMPACT_SCORE = 7.0
MIN_CONFIDENCE = 0.75


@dataclass(frozen=True)
class RiskLimits:
    max_position_pct: float = MAX_POSITION_PCT
    max_trades_per_window: int = MAX_TRADES_PER_WINDOW
    trade_window_hours: float = TRADE_WINDOW_HOURS
    min_impact_score: float = MIN_IMPACT_SCORE
    min_confidence: float = MIN_CONFIDENCE

    @property
    def trade_window(self) -> timedelta:
        return timedelta(hours=self.trade_window_hours)


def projected_exposure(portfolio: Portfolio, ticker: str, amount_usd: float) -> float:
    """
    Concentration of `ticker` after buying `amount_usd` more of it.

    Values holdings at cost basis. When the portfolio is currently worth
    nothing the denominator falls back to cash + amount.
    """
    holding = portfolio.get_holding(ticker)
    current_value = holding.cost_value if holding else 0.0
    total_value = portfolio.total_value()

    if total_value > 0:
        return (current_value + amount_usd) / total_value

    denominator = portfolio.cash_balance + amount_usd
    if denominator <= 0:
        return 0.0
    return amount_usd / denominator


def count_trades_in_window(
    trades: Iterable[Trade],
    now: datetime,
    window: timedelta,
) -> int:
    cutoff = now - window
    return sum(1 for t in trades if t.timestamp > cutoff)


def evaluate(
    portfolio: Portfolio,
    decision: Decision,
    trailing_trades: Iterable[Trade],
    limits: RiskLimits = RiskLimits(),
    now: Optional[datetime] = None,
) -> RiskCheckResult:
    """
    Validate a decision against all risk rules.

    Args:
        portfolio: Current tenant portfolio
        decision: Proposed trade
        trailing_trades: Recent trades for the tenant (any order)
        limits: Thresholds to apply
        now: Evaluation time (defaults to utcnow)

    Returns:
        RiskCheckResult with every sub-check reported individually
    """
    now = now or datetime.utcnow()
    result = RiskCheckResult()

    if decision.action == TradeAction.BUY:
        result.sufficient_balance = portfolio.cash_balance >= decision.amount_usd
        if not result.sufficient_balance:
            result.notes.append(
                f"Insufficient cash (${portfolio.cash_balance:.2f} < ${decision.amount_usd:.2f})"
            )

        exposure = projected_exposure(portfolio, decision.ticker, decision.amount_usd)
        result.exposure = exposure
        result.position_limit = exposure <= limits.max_position_pct
        if not result.position_limit:
            result.notes.append(
                f"{decision.ticker} exposure {exposure:.1%} exceeds {limits.max_position_pct:.0%} cap"
            )

    trades_in_window = count_trades_in_window(trailing_trades, now, limits.trade_window)
    result.trades_in_window = trades_in_window
    result.daily_trade_limit = trades_in_window < limits.max_trades_per_window
    if not result.daily_trade_limit:
        result.notes.append(
            f"Max trades per window reached ({trades_in_window}/{limits.max_trades_per_window})"
        )

    result.passed = (
        result.sufficient_balance
        and result.position_limit
        and result.daily_trade_limit
    )

    return result
