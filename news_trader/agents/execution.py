"""
ExecutionAgent - settlement followed by the portfolio update.

Purpose: Settle a risk-approved decision and apply it to the tenant's
portfolio as one logical unit.
- The decision is validated against the portfolio before settlement, so a
  trade that cannot be applied never reaches the venue
- Settlement is irreversible: if the store update fails afterwards the
  trade is queued for reconciliation and ReconciliationError is raised
"""
import logging
from dataclasses import dataclass

from ..errors import ReconciliationError
from ..resilience import with_timeout
from ..schemas import (
    Decision,
    Portfolio,
    ReconciliationRecord,
    SettlementAccount,
    SettlementReceipt,
    Trade,
)
from ..services.base import PortfolioStore, SettlementService
from .portfolio import apply_decision

logger = logging.getLogger("news_trader.agents.execution")


@dataclass
class ExecutionResult:
    receipt: SettlementReceipt
    portfolio: Portfolio
    trade: Trade


class ExecutionAgent:
    """Settles trades and records them."""

    def __init__(
        self,
        settlement: SettlementService,
        store: PortfolioStore,
        timeout: float = 60.0,
    ):
        self.settlement = settlement
        self.store = store
        self.timeout = timeout

    async def execute(
        self,
        tenant: str,
        account: SettlementAccount,
        portfolio: Portfolio,
        decision: Decision,
    ) -> ExecutionResult:
        """
        Settle and apply one decision.

        Raises:
            ValidationError: the decision cannot be applied (nothing settled)
            UpstreamError: settlement failed or timed out (nothing applied)
            ReconciliationError: settled, but the portfolio update failed
        """
        apply_decision(portfolio, decision)

        receipt = await with_timeout(
            self.settlement.execute_trade(
                account,
                decision.action,
                decision.ticker,
                decision.amount_usd,
                decision.price,
            ),
            self.timeout,
            "settlement",
        )
        logger.info(f"[{tenant}] Settled {decision.action} {decision.shares} {decision.ticker}: {receipt.tx_id}")

        try:
            updated, trade = await with_timeout(
                self.store.apply_execution(tenant, decision, receipt),
                self.timeout,
                "store",
            )
        except Exception as e:
            logger.critical(
                f"[{tenant}] RECONCILIATION REQUIRED: settlement {receipt.tx_id} succeeded "
                f"but portfolio update failed: {e}"
            )
            await self._queue_reconciliation(tenant, decision, receipt, e)
            raise ReconciliationError(receipt.tx_id, e) from e

        return ExecutionResult(receipt=receipt, portfolio=updated, trade=trade)

    async def _queue_reconciliation(
        self,
        tenant: str,
        decision: Decision,
        receipt: SettlementReceipt,
        cause: Exception,
    ) -> None:
        record = ReconciliationRecord(
            tenant=tenant,
            decision=decision,
            receipt=receipt,
            error=str(cause),
        )
        try:
            await self.store.append_reconciliation(record)
        except Exception as e:
            logger.critical(
                f"[{tenant}] Could not queue reconciliation for {receipt.tx_id}: {e}. "
                f"Record: {record.model_dump_json()}"
            )
