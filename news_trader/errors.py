"""
Error taxonomy for the news trading agent.

ConfigurationError   - tenant not configured yet; wait and retry
UpstreamError        - signal/reasoning/settlement/pricing call failed or timed out
ValidationError      - trade cannot be applied to the portfolio; abort, no mutation
ReconciliationError  - settlement succeeded but the portfolio update failed
FatalAgentError      - tenant cannot be initialized; the loop never starts
"""
from typing import Optional


class NewsTraderError(Exception):
    """Base class for all agent errors."""


class ConfigurationError(NewsTraderError):
    """Raised when a tenant has no portfolio configured."""


class UpstreamError(NewsTraderError):
    """Raised when an external collaborator fails or times out."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


class ValidationError(NewsTraderError):
    """Raised when a trade would violate a portfolio invariant."""


class InsufficientCashError(ValidationError):
    def __init__(self, needed: float, available: float):
        self.needed = needed
        self.available = available
        super().__init__(f"Insufficient cash: need ${needed:.2f}, have ${available:.2f}")


class InsufficientSharesError(ValidationError):
    def __init__(self, ticker: str, needed: float, available: float):
        self.ticker = ticker
        self.needed = needed
        self.available = available
        super().__init__(f"Insufficient shares of {ticker}: need {needed}, have {available}")


class InvalidTradeError(ValidationError):
    """Raised for trades that can never be applied (e.g. zero shares)."""


class ReconciliationError(NewsTraderError):
    """Settlement is irreversible but the store update failed."""

    def __init__(self, tx_id: str, cause: Optional[Exception] = None):
        self.tx_id = tx_id
        self.cause = cause
        super().__init__(f"RECONCILIATION REQUIRED for settled tx {tx_id}: {cause}")


class FatalAgentError(NewsTraderError):
    """Raised when a tenant's settlement account cannot be initialized."""
