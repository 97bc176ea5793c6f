"""Resolution Engine for the Forecaster Arena.

This module reconciles the ledger with real-world outcomes:
- Polls closed markets for resolution
- Settles open positions at one dollar per winning share
- Records a Brier score for every BUY trade with a valid implied confidence
- Refunds positions at cost basis when a market is cancelled
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from polymarket_gamma import MarketDataError

from . import scoring
from .errors import StoreError
from .models import (
    BrierScoreRecord,
    JobSummary,
    Market,
    MarketStatus,
    Position,
    PositionStatus,
    TradeType,
)
from .storage import LedgerStore, utcnow

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")


@dataclass
class SettlementResult:
    """What resolving or cancelling one market changed."""
    market_id: str
    outcome: str | None
    positions_settled: int = 0
    brier_scores_recorded: int = 0
    brier_scores_skipped: int = 0


class ResolutionEngine:
    """Settles markets once their real-world outcome is known."""

    def __init__(
        self,
        store: LedgerStore,
        source: Any,  # GammaClient or compatible
        poll_delay: float = 0.2,
    ):
        """Initialize the resolution engine.

        Args:
            store: Ledger store
            source: Market data source exposing ``fetch_resolution(external_id)``
            poll_delay: Pause between market polls in seconds
        """
        self.store = store
        self.source = source
        self.poll_delay = poll_delay

    def check_resolutions(self, now: datetime | None = None) -> JobSummary:
        """Poll every closed market and settle the ones that resolved.

        A failed poll skips that market for this run.

        Returns:
            JobSummary with resolution counts
        """
        now = now or utcnow()
        summary = JobSummary()
        resolved = cancelled = settled = 0

        markets = self.store.list_markets(MarketStatus.CLOSED)
        logger.info(f"Checking {len(markets)} closed market(s) for resolution")

        for index, market in enumerate(markets):
            if index > 0 and self.poll_delay > 0:
                time.sleep(self.poll_delay)

            summary.processed += 1
            try:
                resolution = self.source.fetch_resolution(market.external_id)
            except MarketDataError as e:
                logger.warning(
                    f"Resolution poll failed for market {market.id}: {e}",
                    extra={"market_id": market.id},
                )
                summary.failed += 1
                summary.errors.append(f"{market.external_id}: {e}")
                continue

            try:
                if resolution is None or not resolution.resolved:
                    summary.succeeded += 1
                    continue

                if resolution.cancelled:
                    result = self.cancel_market(market.id, now)
                    cancelled += 1
                else:
                    result = self.resolve_market(market.id, resolution.winner, now)
                    resolved += 1
                settled += result.positions_settled
                summary.succeeded += 1
            except Exception as e:
                logger.error(
                    f"Settlement failed for market {market.id}: {e}",
                    extra={"market_id": market.id},
                    exc_info=True,
                )
                summary.failed += 1
                summary.errors.append(f"{market.external_id}: {e}")

        summary.details = {
            "markets_checked": len(markets),
            "markets_resolved": resolved,
            "markets_cancelled": cancelled,
            "positions_settled": settled,
        }
        return summary

    def resolve_market(
        self,
        market_id: str,
        winning_outcome: str,
        now: datetime | None = None,
    ) -> SettlementResult:
        """Mark a market resolved, settle its open positions and score its bets.

        Resolving an already resolved or cancelled market is a no-op.

        Args:
            market_id: Ledger market id
            winning_outcome: 'YES', 'NO' or the winning outcome name
            now: Resolution timestamp

        Returns:
            SettlementResult
        """
        now = now or utcnow()
        result = SettlementResult(market_id=market_id, outcome=winning_outcome)

        with self.store.transaction():
            market = self._load_market(market_id)
            if market.status in (MarketStatus.RESOLVED, MarketStatus.CANCELLED):
                return result

            self.store.resolve_market(market_id, winning_outcome, now)

            for position in self.store.list_positions(
                market_id=market_id, status=PositionStatus.OPEN
            ):
                value = scoring.settlement_value(position.shares, position.side, winning_outcome)
                self._settle_position(position, value, now)
                result.positions_settled += 1
                logger.info(
                    f"Settled position {position.id}: {position.side} -> "
                    f"{winning_outcome} wins, P/L ${scoring.realized_pnl(value, position.total_cost):.2f}",
                    extra={
                        "event": "position_settled",
                        "agent_id": position.agent_id,
                        "market_id": market_id,
                        "settlement_value": str(value),
                        "cost_basis": str(position.total_cost),
                    },
                )

            self._record_brier_scores(market, winning_outcome, result)

        logger.info(
            f"Market resolved: {market.question[:50]} -> {winning_outcome}",
            extra={
                "event": "market_resolved",
                "market_id": market_id,
                "positions_settled": result.positions_settled,
                "brier_scores_recorded": result.brier_scores_recorded,
            },
        )
        return result

    def cancel_market(self, market_id: str, now: datetime | None = None) -> SettlementResult:
        """Void a market: refund every open position at cost basis, no scoring.

        Returns:
            SettlementResult
        """
        now = now or utcnow()
        result = SettlementResult(market_id=market_id, outcome=None)

        with self.store.transaction():
            market = self._load_market(market_id)
            if market.status in (MarketStatus.RESOLVED, MarketStatus.CANCELLED):
                return result

            for position in self.store.list_positions(
                market_id=market_id, status=PositionStatus.OPEN
            ):
                self._settle_position(position, position.total_cost, now)
                result.positions_settled += 1

            self.store.set_market_status(market_id, MarketStatus.CANCELLED)

        logger.info(
            f"Market cancelled: {market.question[:50]}",
            extra={
                "event": "market_cancelled",
                "market_id": market_id,
                "positions_refunded": result.positions_settled,
            },
        )
        return result

    def _load_market(self, market_id: str) -> Market:
        market = self.store.get_market(market_id)
        if market is None:
            raise StoreError(f"Market {market_id} not found")
        return market

    def _settle_position(self, position: Position, payout: Decimal, now: datetime) -> None:
        """Close out a position for ``payout`` and apply it to the owning agent."""
        agent = self.store.get_agent(position.agent_id)
        if agent is None:
            raise StoreError(f"Agent not found for position {position.id}")

        self.store.update_agent_balance(
            agent.id,
            agent.cash_balance + payout,
            max(ZERO, agent.total_invested - position.total_cost),
        )

        position.status = PositionStatus.SETTLED
        position.current_value = ZERO
        position.unrealized_pnl = ZERO
        position.closed_at = now
        self.store.save_position(position)

    def _record_brier_scores(
        self,
        market: Market,
        winning_outcome: str,
        result: SettlementResult,
    ) -> None:
        for trade in self.store.list_trades(market_id=market.id, trade_type=TradeType.BUY):
            confidence = trade.implied_confidence
            if confidence is None or not ZERO <= confidence <= ONE:
                result.brier_scores_skipped += 1
                logger.warning(
                    f"Skipping Brier score for trade {trade.id}: "
                    f"implied confidence {confidence} is missing or out of range",
                    extra={"event": "brier_score_skipped", "market_id": market.id},
                )
                continue
            if self.store.has_brier_score(trade.id):
                continue

            self.store.insert_brier_score(
                BrierScoreRecord(
                    id="",
                    agent_id=trade.agent_id,
                    trade_id=trade.id,
                    market_id=market.id,
                    forecast_probability=scoring.forecast_probability(confidence, trade.side),
                    actual_outcome=scoring.actual_outcome(trade.side, winning_outcome),
                    brier_score=scoring.brier_score(confidence, trade.side, winning_outcome),
                )
            )
            result.brier_scores_recorded += 1
