"""
News Trader - autonomous news-driven trading agent.

Watches financial news for each tenant's holdings, analyzes impact with an
LLM, gates trades through deterministic risk checks, settles them, and
explains every trade.
"""
__version__ = "0.1.0"
