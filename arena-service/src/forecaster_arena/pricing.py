"""Side resolution and price lookup against a market record.

Binary markets accept YES/NO (case-insensitive). Multi-outcome markets accept
one of their declared outcomes, or any priced outcome when no outcome list is
known. The canonical outcome spelling is what gets stored.
"""

from decimal import Decimal

from .errors import InvalidSide
from .models import BinarySide, Market, OutcomeSide, Side

DEFAULT_PRICE = Decimal("0.5")


def resolve_side(market: Market, raw_side: str) -> Side:
    """Validate a raw side string against the market's outcome set.

    Args:
        market: The market being traded
        raw_side: Side text from the model or from a stored position

    Returns:
        BinarySide for binary markets, OutcomeSide with canonical spelling otherwise

    Raises:
        InvalidSide: If the side does not name a tradable outcome
    """
    wanted = raw_side.strip()
    if not wanted:
        raise InvalidSide("Side cannot be empty")

    if market.is_binary:
        try:
            return BinarySide(wanted.upper())
        except ValueError:
            raise InvalidSide(
                f"Invalid side '{raw_side}' for binary market {market.id}; use YES or NO"
            ) from None

    candidates = market.outcomes or list((market.current_prices or {}).keys())
    for outcome in candidates:
        if outcome.strip().upper() == wanted.upper():
            return OutcomeSide(outcome)

    raise InvalidSide(
        f"Invalid outcome '{raw_side}' for market {market.id}; valid outcomes: {candidates}"
    )


def yes_price(market: Market) -> Decimal:
    """Current YES price of a binary market (0.5 when unknown)."""
    if market.current_price is None:
        return DEFAULT_PRICE
    return market.current_price


def outcome_price(market: Market, name: str) -> Decimal:
    """Current price of a named outcome (0.5 when unknown)."""
    prices = market.current_prices or {}
    if name in prices:
        return prices[name]
    for key, value in prices.items():
        if key.strip().upper() == name.strip().upper():
            return value
    return DEFAULT_PRICE


def side_price(market: Market, side: Side) -> Decimal:
    """Execution price of one share of ``side``."""
    if isinstance(side, OutcomeSide):
        return outcome_price(market, side.name)
    price = yes_price(market)
    if side == BinarySide.NO:
        return Decimal("1") - price
    return price


def valuation_price(market: Market, side: Side) -> Decimal:
    """Price passed to ``scoring.position_value`` for this side.

    Binary sides are valued from the YES price; named outcomes from their own price.
    """
    if isinstance(side, OutcomeSide):
        return outcome_price(market, side.name)
    return yes_price(market)
