"""
Analysis gate and decision sizing tests.
"""
import pytest

from news_trader.agents.decision import build_decision, should_act
from news_trader.agents.risk_gate import RiskLimits

from .conftest import make_analysis


class TestShouldAct:
    def test_actionable(self):
        act, reason = should_act(make_analysis())
        assert act is True
        assert reason == ""

    def test_thresholds_inclusive(self):
        act, _ = should_act(make_analysis(impact_score=7, confidence=0.75))
        assert act is True

    def test_hold_rejected(self):
        act, reason = should_act(make_analysis(action="hold"))
        assert act is False
        assert "hold" in reason

    def test_low_impact_rejected(self):
        act, _ = should_act(make_analysis(impact_score=6.9))
        assert act is False

    def test_low_confidence_rejected(self):
        act, _ = should_act(make_analysis(confidence=0.74))
        assert act is False

    def test_custom_limits(self):
        act, _ = should_act(make_analysis(impact_score=6), RiskLimits(min_impact_score=5))
        assert act is True


class TestBuildDecision:
    def test_floor_shares(self):
        decision = build_decision(make_analysis(amount_usd=550), "AAPL", 100.0)
        assert decision.shares == 5
        assert decision.amount_usd == 550
        assert decision.action == "buy"
        assert decision.ticker == "AAPL"

    def test_zero_shares_allowed(self):
        decision = build_decision(make_analysis(amount_usd=50), "AAPL", 100.0)
        assert decision.shares == 0

    def test_hold_cannot_become_decision(self):
        with pytest.raises(ValueError):
            build_decision(make_analysis(action="hold"), "AAPL", 100.0)
