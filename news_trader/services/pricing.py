"""
Reference prices used to size trades.
"""
import asyncio
import logging
from typing import Any, Optional

from alpaca.data.historical import StockHistoricalDataClient
from alpaca.data.requests import StockLatestQuoteRequest

from ..errors import UpstreamError

logger = logging.getLogger("news_trader.services.pricing")


class FixedPriceSource:
    """Same placeholder price for every ticker."""

    def __init__(self, price: float = 100.0):
        if price <= 0:
            raise ValueError(f"price must be positive, got {price}")
        self.price = price

    async def get_price(self, ticker: str) -> float:
        return self.price

    async def close(self) -> None:
        return None


class AlpacaPriceSource:
    """Latest quote from Alpaca market data (ask, falling back to bid)."""

    def __init__(self, key_id: str, secret_key: str, client: Optional[Any] = None):
        self.key_id = key_id
        self.secret_key = secret_key
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = StockHistoricalDataClient(
                api_key=self.key_id,
                secret_key=self.secret_key,
            )
        return self._client

    def _latest(self, ticker: str) -> float:
        quote_request = StockLatestQuoteRequest(symbol_or_symbols=ticker)
        quote_response = self.client.get_stock_latest_quote(quote_request)
        if ticker not in quote_response:
            return 0.0
        quote = quote_response[ticker]
        return float(quote.ask_price) if quote.ask_price else float(quote.bid_price or 0)

    async def get_price(self, ticker: str) -> float:
        """
        Raises:
            UpstreamError: no usable quote
        """
        try:
            price = await asyncio.to_thread(self._latest, ticker)
        except Exception as e:
            raise UpstreamError("alpaca_data", f"quote for {ticker} failed: {e}")

        if price <= 0:
            raise UpstreamError("alpaca_data", f"no quote for {ticker}")
        return price

    async def close(self) -> None:
        if self._client is None:
            return
        session = getattr(self._client, "_session", None)
        if session is not None:
            session.close()
        self._client = None
