"""
News Client for the trading agent.

Searches Tavily for ticker-relevant financial news and extracts full
article text when a search snippet is too short to analyze.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import UpstreamError
from ..schemas import NewsArticle

logger = logging.getLogger("news_trader.services.news_client")

TAVILY_API_BASE = "https://api.tavily.com"

FINANCE_DOMAINS = [
    "reuters.com",
    "bloomberg.com",
    "cnbc.com",
    "marketwatch.com",
    "finance.yahoo.com",
    "wsj.com",
]


def build_query(tickers: List[str]) -> str:
    """One batched query for all tickers."""
    return f"{' OR '.join(tickers)} stock market financial news"


def _to_article(item: Dict[str, Any]) -> Optional[NewsArticle]:
    url = item.get("url")
    if not url:
        return None
    score = item.get("score")
    if score is not None:
        score = max(0.0, min(1.0, float(score)))
    return NewsArticle(
        title=item.get("title") or "",
        url=url,
        content=item.get("content") or "",
        published_date=item.get("published_date"),
        score=score,
    )


class TavilyNewsClient:
    """Signal source backed by the Tavily search API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = TAVILY_API_BASE,
        timeout: float = 30.0,
        max_results: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.max_results = max_results
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def search(self, tickers: List[str]) -> List[NewsArticle]:
        """
        Search recent financial news mentioning any of the tickers.

        Returns:
            Articles as returned by Tavily (unfiltered, unsorted)

        Raises:
            UpstreamError: HTTP failure or timeout
        """
        if not tickers:
            return []

        payload = {
            "api_key": self.api_key,
            "query": build_query(tickers),
            "search_depth": "advanced",
            "max_results": self.max_results,
            "include_domains": FINANCE_DOMAINS,
        }

        try:
            response = await self.client.post("/search", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            raise UpstreamError("tavily", "search timed out")
        except httpx.HTTPStatusError as e:
            raise UpstreamError("tavily", f"search failed: HTTP {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError("tavily", f"search failed: {e}")

        articles = [a for a in (_to_article(item) for item in data.get("results", [])) if a]
        logger.info(f"Tavily returned {len(articles)} articles for {tickers}")
        return articles

    async def extract_full_text(self, url: str) -> Optional[NewsArticle]:
        """
        Fetch the full text of one article. Best effort.

        Returns:
            NewsArticle with raw content, or None if extraction failed
        """
        try:
            response = await self.client.post(
                "/extract",
                json={"api_key": self.api_key, "urls": [url]},
            )
            if response.status_code != 200:
                logger.warning(f"Failed to extract {url}: HTTP {response.status_code}")
                return None
            data = response.json()
        except httpx.TimeoutException:
            logger.warning(f"Extract timed out for {url}")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error extracting {url}: {e}")
            return None

        results = data.get("results") or []
        if not results or not results[0].get("raw_content"):
            return None

        first = results[0]
        return NewsArticle(
            title=first.get("title") or "",
            url=first.get("url") or url,
            content=first["raw_content"],
        )

    async def close(self) -> None:
        await self.client.aclose()
