"""
Trading agents: deterministic pieces of the news-to-settlement pipeline.

The orchestrator lives in .orchestrator and is imported directly from there.
"""
from .risk_gate import RiskLimits, evaluate
from .portfolio import apply_decision
from .decision import build_decision, should_act

__all__ = [
    "RiskLimits",
    "evaluate",
    "apply_decision",
    "build_decision",
    "should_act",
]
