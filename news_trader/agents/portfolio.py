"""
Portfolio accounting - apply a settled trade to a portfolio.

Purpose: Compute the post-trade portfolio without touching the store.
Fail closed: a trade that would break an invariant raises before any mutation.

Rules:
- buy: cash -= amount_usd, holding upserted with weighted-average cost basis
- sell: cash += amount_usd, avg_price unchanged, holding removed at zero shares
- cash_balance never goes negative
"""
from ..errors import InsufficientCashError, InsufficientSharesError, InvalidTradeError
from ..schemas import Decision, Holding, Portfolio, TradeAction


def apply_decision(portfolio: Portfolio, decision: Decision) -> Portfolio:
    """
    Return a new portfolio with the decision applied.

    Args:
        portfolio: Portfolio before the trade
        decision: Trade to apply (shares and amount_usd)

    Returns:
        A fresh Portfolio; the input is never modified

    Raises:
        InvalidTradeError: shares <= 0
        InsufficientCashError: buy exceeds cash
        InsufficientSharesError: sell exceeds held shares
    """
    if decision.shares <= 0:
        raise InvalidTradeError(
            f"Cannot {decision.action} {decision.shares} shares of {decision.ticker} "
            f"(${decision.amount_usd:.2f} at ${decision.price:.2f}/share)"
        )

    updated = portfolio.model_copy(deep=True)
    holding = updated.get_holding(decision.ticker)

    if decision.action == TradeAction.BUY:
        if updated.cash_balance < decision.amount_usd:
            raise InsufficientCashError(decision.amount_usd, updated.cash_balance)

        updated.cash_balance = updated.cash_balance - decision.amount_usd

        if holding:
            new_shares = holding.shares + decision.shares
            holding.avg_price = (holding.shares * holding.avg_price + decision.amount_usd) / new_shares
            holding.shares = new_shares
        else:
            updated.holdings.append(Holding(
                ticker=decision.ticker,
                shares=decision.shares,
                avg_price=decision.amount_usd / decision.shares,
            ))

    elif decision.action == TradeAction.SELL:
        held = holding.shares if holding else 0
        if not holding or holding.shares < decision.shares:
            raise InsufficientSharesError(decision.ticker, decision.shares, held)

        updated.cash_balance = updated.cash_balance + decision.amount_usd
        holding.shares = holding.shares - decision.shares

        if holding.shares == 0:
            updated.holdings = [h for h in updated.holdings if h.ticker != decision.ticker]

    else:
        raise InvalidTradeError(f"Unknown trade action: {decision.action}")

    return updated


def summarize(portfolio: Portfolio) -> dict:
    """Compact dict for logs and events."""
    return {
        "cash_balance": round(portfolio.cash_balance, 2),
        "holdings_value": round(portfolio.holdings_value(), 2),
        "total_value": round(portfolio.total_value(), 2),
        "positions": len(portfolio.holdings),
    }
