"""
SignalAgent - picks the next article worth analyzing for a tenant.

Purpose: One batched search across all tenant tickers, keep articles that
mention at least one ticker, rank by relevance score, return the first
article not yet processed for the tenant.
This is deterministic code, not LLM reasoning.
"""
import logging
from typing import List, Optional, Sequence

from ..schemas import NewsArticle
from ..resilience import with_timeout
from ..services.base import PortfolioStore, SignalSource

logger = logging.getLogger("news_trader.agents.signal")


def count_mentions(text: str, ticker: str) -> int:
    """Case-insensitive, non-overlapping substring count."""
    if not ticker:
        return 0
    return text.lower().count(ticker.lower())


def total_mentions(article: NewsArticle, tickers: Sequence[str]) -> int:
    text = f"{article.title} {article.content}"
    return sum(count_mentions(text, t) for t in tickers)


def filter_relevant(articles: List[NewsArticle], tickers: Sequence[str]) -> List[NewsArticle]:
    """Keep articles whose title or content mentions at least one ticker."""
    return [a for a in articles if total_mentions(a, tickers) > 0]


def rank_by_score(articles: List[NewsArticle]) -> List[NewsArticle]:
    """Highest relevance score first; unscored articles sort last."""
    return sorted(articles, key=lambda a: a.score or 0.0, reverse=True)


def most_affected_ticker(content: str, tickers: Sequence[str]) -> Optional[str]:
    """
    Ticker with the most mentions in `content`.

    Ties go to the earlier ticker. Returns None when nothing is mentioned.
    """
    best_ticker = None
    best_count = 0
    for ticker in tickers:
        mentions = count_mentions(content, ticker)
        if mentions > best_count:
            best_count = mentions
            best_ticker = ticker
    return best_ticker


class SignalAgent:
    """Wraps the signal source with relevance filtering and per-tenant dedup."""

    def __init__(self, source: SignalSource, store: PortfolioStore, timeout: float = 30.0):
        self.source = source
        self.store = store
        self.timeout = timeout

    async def find_unprocessed(self, tenant: str, tickers: List[str]) -> Optional[NewsArticle]:
        """
        Find the highest-scored relevant article the tenant has not processed.

        Args:
            tenant: Tenant identifier
            tickers: Tenant tickers (from holdings)

        Returns:
            The chosen article, or None if nothing new is available
        """
        if not tickers:
            return None

        articles = await with_timeout(self.source.search(tickers), self.timeout, "signal_source")
        if not articles:
            logger.info(f"[{tenant}] No news found for {tickers}")
            return None

        relevant = rank_by_score(filter_relevant(articles, tickers))
        logger.info(f"[{tenant}] {len(relevant)}/{len(articles)} articles mention portfolio tickers")

        for article in relevant:
            processed = await with_timeout(
                self.store.has_processed_article(tenant, article.url),
                self.timeout,
                "store",
            )
            if not processed:
                return article

        return None

    async def fetch_full_text(self, article: NewsArticle, min_chars: int = 200) -> str:
        """
        Full article text when the search snippet is short. Best effort.

        Returns:
            Extracted content, or the original content if extraction fails
        """
        if len(article.content) >= min_chars:
            return article.content

        try:
            extracted = await with_timeout(
                self.source.extract_full_text(article.url),
                self.timeout,
                "signal_source",
            )
        except Exception as e:
            logger.warning(f"Full-text extraction failed for {article.url}: {e}")
            return article.content

        if extracted and extracted.content:
            return extracted.content
        return article.content
