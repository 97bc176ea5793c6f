"""Data models for Polymarket Gamma market data."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any


@dataclass
class MarketSnapshot:
    """A normalised point-in-time view of one Gamma market."""

    external_id: str
    question: str
    market_type: str  # 'binary' or 'multi_outcome'
    status: str  # 'active', 'closed' or 'resolved'
    description: str | None = None
    category: str | None = None
    slug: str | None = None
    # Binary markets: YES price. Multi-outcome markets: price per outcome.
    current_price: Decimal | None = None
    current_prices: dict[str, Decimal] | None = None
    outcomes: list[str] | None = None
    volume: Decimal | None = None
    close_date: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class MarketResolution:
    """Resolution state derived from a Gamma market payload.

    ``winner`` is upper-cased ('YES', 'NO' or an outcome name).
    ``cancelled`` marks a void resolution with no winner.
    """

    resolved: bool
    winner: str | None = None
    cancelled: bool = False
