"""
External collaborators: signal source, reasoning, settlement, pricing and storage.
"""
from .base import (
    PortfolioStore,
    PriceSource,
    ReasoningService,
    SettlementService,
    SignalSource,
)
from .store import MemoryPortfolioStore

__all__ = [
    "PortfolioStore",
    "PriceSource",
    "ReasoningService",
    "SettlementService",
    "SignalSource",
    "MemoryPortfolioStore",
]
