"""Data models for the Forecaster Arena benchmark.

This module defines the ledger entities shared by every engine:
- Cohort: One weekly competition run
- Agent: One model's participation in one cohort
- Market: A mirrored prediction market
- Position: An agent's holding in one (market, side) pair
- Trade: An immutable BUY or SELL record
- Decision: The full log of one agent turn
- BrierScoreRecord: One scored forecast
- PortfolioSnapshot: A point-in-time valuation of an agent
- BetInstruction / SellInstruction: Validated trading instructions

All money, share, price and confidence quantities are ``Decimal``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class CohortStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class AgentStatus(str, Enum):
    ACTIVE = "active"
    BANKRUPT = "bankrupt"


class MarketType(str, Enum):
    BINARY = "binary"
    MULTI_OUTCOME = "multi_outcome"


class MarketStatus(str, Enum):
    """Market lifecycle. Transitions only move forward."""
    ACTIVE = "active"
    CLOSED = "closed"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


# Rank used to reject backward status transitions
MARKET_STATUS_RANK = {
    MarketStatus.ACTIVE: 0,
    MarketStatus.CLOSED: 1,
    MarketStatus.RESOLVED: 2,
    MarketStatus.CANCELLED: 2,
}


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"  # agent exited before resolution
    SETTLED = "settled"  # market resolved or cancelled while open


class TradeType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class DecisionAction(str, Enum):
    BET = "BET"
    SELL = "SELL"
    HOLD = "HOLD"
    ERROR = "ERROR"


class DecisionStatus(str, Enum):
    """How an agent turn ended."""
    PARSED = "parsed"
    RETRIED = "retried"
    DEFAULTED = "defaulted"
    SKIPPED = "skipped"
    ALREADY_DECIDED = "already_decided"
    FAILED = "failed"


class BinarySide(str, Enum):
    """Side of a binary market."""
    YES = "YES"
    NO = "NO"


@dataclass(frozen=True)
class OutcomeSide:
    """A named outcome of a multi-outcome market."""
    name: str

    def __str__(self) -> str:
        return self.name


Side = BinarySide | OutcomeSide


def side_label(side: Side) -> str:
    """Storage label for a side."""
    if isinstance(side, BinarySide):
        return side.value
    return side.name


def side_from_label(label: str) -> Side:
    """Inverse of ``side_label``. Binary labels are stored upper-case."""
    if label in (BinarySide.YES.value, BinarySide.NO.value):
        return BinarySide(label)
    return OutcomeSide(label)


@dataclass
class ModelEntry:
    """A competing model as registered in the ledger."""
    id: str
    gateway_id: str
    display_name: str
    provider: str
    input_cost_per_million: Decimal = Decimal("2")
    output_cost_per_million: Decimal = Decimal("8")
    is_active: bool = True


@dataclass
class Cohort:
    """One weekly competition run.

    Attributes:
        id: Cohort identifier
        cohort_number: Sequential number starting at 1
        started_at: UTC start timestamp
        status: Lifecycle status
        methodology_version: Rules version the cohort ran under
        initial_balance: Starting cash per agent
        completed_at: When the cohort was marked complete
    """
    id: str
    cohort_number: int
    started_at: datetime
    status: CohortStatus
    methodology_version: str
    initial_balance: Decimal
    completed_at: datetime | None = None


@dataclass
class Agent:
    """One model's participation instance within one cohort.

    Attributes:
        id: Agent identifier
        cohort_id: Owning cohort
        model_id: Internal model identifier
        cash_balance: Uninvested cash
        total_invested: Cost basis of open positions
        status: Active, or bankrupt once cash and invested capital are both zero
    """
    id: str
    cohort_id: str
    model_id: str
    cash_balance: Decimal
    total_invested: Decimal
    status: AgentStatus
    created_at: datetime | None = None


@dataclass
class Market:
    """A real-world prediction market mirrored from the data source.

    Binary markets carry a single YES price in ``current_price``.
    Multi-outcome markets carry ``current_prices`` keyed by outcome name.
    """
    id: str
    external_id: str
    question: str
    market_type: MarketType
    status: MarketStatus
    current_price: Decimal | None = None
    current_prices: dict[str, Decimal] | None = None
    outcomes: list[str] | None = None
    category: str | None = None
    description: str | None = None
    volume: Decimal | None = None
    close_date: datetime | None = None
    resolution_outcome: str | None = None
    resolved_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_binary(self) -> bool:
        return self.market_type == MarketType.BINARY


@dataclass
class Position:
    """An agent's accumulated holding in one market/side."""
    id: str
    agent_id: str
    market_id: str
    side: str
    shares: Decimal
    avg_entry_price: Decimal
    total_cost: Decimal
    status: PositionStatus
    current_value: Decimal | None = None
    unrealized_pnl: Decimal | None = None
    opened_at: datetime | None = None
    closed_at: datetime | None = None


@dataclass
class Trade:
    """An append-only record of one execution.

    ``implied_confidence`` is set on BUY trades only; ``cost_basis`` and
    ``realized_pnl`` on SELL trades only. ``decision_id`` is None for
    system-driven trades.
    """
    id: str
    agent_id: str
    market_id: str
    position_id: str | None
    trade_type: TradeType
    side: str
    shares: Decimal
    price: Decimal
    total_amount: Decimal
    decision_id: str | None = None
    implied_confidence: Decimal | None = None
    cost_basis: Decimal | None = None
    realized_pnl: Decimal | None = None
    executed_at: datetime | None = None


@dataclass
class Decision:
    """Full log of one agent's response to one periodic prompt."""
    id: str
    agent_id: str
    cohort_id: str
    decision_week: int
    decision_timestamp: datetime
    prompt_system: str
    prompt_user: str
    action: DecisionAction
    status: DecisionStatus
    raw_response: str | None = None
    parsed_response: dict[str, Any] | None = None
    reasoning: str | None = None
    retry_count: int = 0
    tokens_input: int = 0
    tokens_output: int = 0
    api_cost_usd: Decimal = Decimal("0")
    response_time_ms: int = 0
    error_message: str | None = None


@dataclass
class BrierScoreRecord:
    """One scored forecast.

    ``forecast_probability`` is the YES-equivalent probability for binary
    markets and the named-outcome probability for multi-outcome markets.
    """
    id: str
    agent_id: str
    trade_id: str
    market_id: str
    forecast_probability: Decimal
    actual_outcome: int
    brier_score: Decimal
    created_at: datetime | None = None


@dataclass
class PortfolioSnapshot:
    """Point-in-time valuation of an agent."""
    id: str
    agent_id: str
    snapshot_timestamp: datetime
    cash_balance: Decimal
    positions_value: Decimal
    total_value: Decimal
    total_pnl: Decimal
    total_pnl_percent: Decimal
    brier_score: Decimal | None = None
    num_resolved_bets: int = 0


@dataclass
class BetInstruction:
    """One validated bet from a parsed decision. ``side`` is the raw side text."""
    market_id: str
    side: str
    amount: Decimal


@dataclass
class SellInstruction:
    """One validated sell from a parsed decision."""
    position_id: str
    percentage: Decimal


@dataclass
class JobSummary:
    """Summary returned by every periodic job."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": list(self.errors),
            **self.details,
        }
