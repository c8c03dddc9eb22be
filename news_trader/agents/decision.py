"""
Decision logic - turn an LLM impact analysis into a concrete trade.

Hard constraints:
- Act only if impact_score >= min_impact_score AND confidence >= min_confidence
  AND the suggested action is not hold
- shares = floor(amount_usd / reference price); zero shares is allowed here and
  is rejected later at execution
"""
import math
from typing import Tuple

from ..schemas import Analysis, AnalysisAction, Decision
from .risk_gate import RiskLimits


def should_act(analysis: Analysis, limits: RiskLimits = RiskLimits()) -> Tuple[bool, str]:
    """
    Gate an analysis before any decision is made.

    Returns:
        (act, reason) - reason explains a rejection, empty when acting
    """
    if analysis.action == AnalysisAction.HOLD:
        return False, "Suggested action is hold"
    if analysis.impact_score < limits.min_impact_score:
        return False, f"Impact {analysis.impact_score} below {limits.min_impact_score}"
    if analysis.confidence < limits.min_confidence:
        return False, f"Confidence {analysis.confidence:.2f} below {limits.min_confidence:.2f}"
    return True, ""


def build_decision(analysis: Analysis, ticker: str, price: float) -> Decision:
    """Convert an actionable analysis into a Decision at the given reference price."""
    if analysis.action == AnalysisAction.HOLD:
        raise ValueError("Cannot build a trade decision from a hold analysis")

    shares = math.floor(analysis.amount_usd / price) if price > 0 else 0

    return Decision(
        action=analysis.action,
        ticker=ticker,
        shares=shares,
        amount_usd=analysis.amount_usd,
        price=price,
        reasoning=analysis.reasoning,
    )
