"""
SettlementService - irreversible trade settlement against Alpaca.

Purpose: Acquire the account used to settle a tenant's trades, and submit
one notional market order per decision. The order id is the settlement
reference; the audit link is built from a configurable template.
"""
import asyncio
import logging
from typing import Any, Optional

from alpaca.trading.client import TradingClient
from alpaca.trading.enums import OrderSide, TimeInForce
from alpaca.trading.requests import MarketOrderRequest

from ..errors import FatalAgentError, UpstreamError
from ..schemas import SettlementAccount, SettlementReceipt, TradeAction

logger = logging.getLogger("news_trader.services.settlement")

DEFAULT_AUDIT_URL = "https://app.alpaca.markets/paper/dashboard/order/{tx_id}"


class AlpacaSettlementService:
    """Settles trades as notional market orders through alpaca-py."""

    def __init__(
        self,
        key_id: str,
        secret_key: str,
        paper: bool = True,
        audit_url: str = DEFAULT_AUDIT_URL,
        client: Optional[Any] = None,
    ):
        self.key_id = key_id
        self.secret_key = secret_key
        self.paper = paper
        self.audit_url = audit_url
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = TradingClient(
                api_key=self.key_id,
                secret_key=self.secret_key,
                paper=self.paper,
            )
        return self._client

    async def open_account(self, tenant: str) -> SettlementAccount:
        """
        Verify the settlement account can trade and record its balances.

        Raises:
            FatalAgentError: account unreachable or blocked from trading
        """
        try:
            account = await asyncio.to_thread(self.client.get_account)
        except Exception as e:
            logger.error(f"[{tenant}] Settlement account unavailable: {e}")
            raise FatalAgentError(f"Settlement account unavailable for {tenant}: {e}")

        if getattr(account, "trading_blocked", False) or getattr(account, "account_blocked", False):
            raise FatalAgentError(f"Settlement account {account.id} is blocked from trading")

        balances = {
            "cash": float(account.cash or 0),
            "buying_power": float(account.buying_power or 0),
        }
        logger.info(
            f"[{tenant}] Settlement account {account.id} ready "
            f"({'paper' if self.paper else 'live'}, buying power ${balances['buying_power']:.2f})"
        )
        return SettlementAccount(account_id=str(account.id), balances=balances)

    async def execute_trade(
        self,
        account: SettlementAccount,
        action: TradeAction,
        ticker: str,
        amount_usd: float,
        price: float,
    ) -> SettlementReceipt:
        """
        Submit one notional market order.

        Raises:
            UpstreamError: the order was rejected or the venue is unreachable
        """
        side = OrderSide.BUY if action == TradeAction.BUY else OrderSide.SELL
        order_request = MarketOrderRequest(
            symbol=ticker,
            notional=round(amount_usd, 2),
            side=side,
            time_in_force=TimeInForce.DAY,
        )

        try:
            order = await asyncio.to_thread(self.client.submit_order, order_request)
        except Exception as e:
            logger.error(f"ORDER FAILED: {ticker} {action} ${amount_usd:.2f}: {e}")
            raise UpstreamError("alpaca", f"order failed: {e}")

        tx_id = str(order.id)
        logger.info(f"ORDER PLACED: {ticker} {action} ${amount_usd:.2f} (ref ${price:.2f}/share) -> {tx_id}")
        return SettlementReceipt(tx_id=tx_id, audit_link=self.audit_url.format(tx_id=tx_id))

    async def close(self) -> None:
        return None
