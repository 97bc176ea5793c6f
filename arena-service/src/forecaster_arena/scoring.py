"""Scoring functions for the Forecaster Arena.

Pure, stateless helpers for valuation and calibration:
- Position value (mark-to-market) and settlement value
- Realized/unrealized/total P&L, percentage P&L and ROI
- Implied confidence of a bet
- Brier score, aggregate Brier score and Brier skill score

None of these touch the ledger or the clock.
"""

from decimal import Decimal

from .models import BinarySide, OutcomeSide, Side, side_from_label, side_label

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

# Brier score of always forecasting 0.5 on a binary question
BRIER_BASELINE = Decimal("0.25")


def _as_side(side: Side | str) -> Side:
    if isinstance(side, (BinarySide, OutcomeSide)):
        return side
    upper = side.upper()
    if upper in (BinarySide.YES.value, BinarySide.NO.value):
        return BinarySide(upper)
    return side_from_label(side)


def position_value(shares: Decimal, side: Side | str, current_price: Decimal) -> Decimal:
    """Mark-to-market value of a position.

    Args:
        shares: Share count
        side: YES, NO or a named outcome
        current_price: YES price for binary sides, the outcome's own price otherwise

    Returns:
        Current value in dollars
    """
    resolved = _as_side(side)
    if resolved == BinarySide.NO:
        return shares * (ONE - current_price)
    return shares * current_price


def settlement_value(shares: Decimal, side: Side | str, winning_outcome: str) -> Decimal:
    """Value of a position once its market resolves: one dollar per winning share."""
    label = side if isinstance(side, str) else side_label(side)
    if label.strip().upper() == winning_outcome.strip().upper():
        return shares
    return ZERO


def implied_confidence(amount: Decimal, cash_balance: Decimal, max_bet_fraction: Decimal) -> Decimal:
    """Bet size as a fraction of the maximum allowed bet, capped at 1."""
    max_bet = cash_balance * max_bet_fraction
    if max_bet <= 0:
        return ZERO
    return min(amount / max_bet, ONE)


def forecast_probability(confidence: Decimal, side: Side | str) -> Decimal:
    """Convert a side-relative confidence into the probability being scored.

    YES and named-outcome bets forecast their own side; a NO bet's confidence
    is expressed as the YES probability ``1 - confidence``.
    """
    if _as_side(side) == BinarySide.NO:
        return ONE - confidence
    return confidence


def actual_outcome(side: Side | str, winning_outcome: str) -> int:
    """Realized binary outcome matching ``forecast_probability``'s event."""
    resolved = _as_side(side)
    winner = winning_outcome.strip().upper()
    if isinstance(resolved, BinarySide):
        return 1 if winner == BinarySide.YES.value else 0
    return 1 if resolved.name.strip().upper() == winner else 0


def brier_score(confidence: Decimal, side: Side | str, winning_outcome: str) -> Decimal:
    """Squared error between the forecast and the realized outcome.

    0 is a certain-and-correct forecast, 1 a certain-and-wrong one.

    Args:
        confidence: Implied confidence of the bet (0 to 1)
        side: Side the bet was placed on
        winning_outcome: The market's resolution

    Returns:
        Brier score in [0, 1]
    """
    forecast = forecast_probability(confidence, side)
    actual = Decimal(actual_outcome(side, winning_outcome))
    return (forecast - actual) ** 2


def aggregate_brier(scores: list[Decimal]) -> Decimal:
    """Mean Brier score; 0 for an empty list."""
    if not scores:
        return ZERO
    return sum(scores, ZERO) / Decimal(len(scores))


def brier_skill_score(score: Decimal, baseline: Decimal = BRIER_BASELINE) -> Decimal:
    """Improvement over the baseline forecaster (1 is perfect, negative is worse)."""
    return ONE - score / baseline


def realized_pnl(settlement: Decimal, cost_basis: Decimal) -> Decimal:
    return settlement - cost_basis


def unrealized_pnl(current_value: Decimal, cost_basis: Decimal) -> Decimal:
    return current_value - cost_basis


def total_value(cash_balance: Decimal, positions_value: Decimal) -> Decimal:
    return cash_balance + positions_value


def total_pnl(total: Decimal, initial_balance: Decimal) -> Decimal:
    return total - initial_balance


def pnl_percent(pnl: Decimal, initial_balance: Decimal) -> Decimal:
    """P&L as a percentage of the initial balance (10.5 means 10.5%)."""
    if initial_balance == 0:
        return ZERO
    return pnl / initial_balance * HUNDRED


def roi(total: Decimal, initial_balance: Decimal) -> Decimal:
    """Return on investment as a fraction (0.105 means 10.5%)."""
    if initial_balance == 0:
        return ZERO
    return (total - initial_balance) / initial_balance
