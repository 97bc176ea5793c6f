"""Mark-to-market valuation and portfolio snapshots.

For every agent of every active cohort, revalue open positions at current
market prices and record one portfolio snapshot per 10-minute bucket.
"""

import logging
from datetime import datetime
from decimal import Decimal

from . import scoring
from .models import (
    BinarySide,
    CohortStatus,
    JobSummary,
    Market,
    OutcomeSide,
    PortfolioSnapshot,
    Position,
    PositionStatus,
    side_from_label,
)
from .pricing import outcome_price
from .storage import LedgerStore, utcnow

logger = logging.getLogger(__name__)

SNAPSHOT_BUCKET_MINUTES = 10


def snapshot_bucket(moment: datetime) -> datetime:
    """Round down to the start of the 10-minute bucket."""
    floored = moment.minute - moment.minute % SNAPSHOT_BUCKET_MINUTES
    return moment.replace(minute=floored, second=0, microsecond=0)


def _mark_price(market: Market, position: Position) -> Decimal | None:
    """Valuation price for a position, or None when the market has no usable price."""
    side = side_from_label(position.side)
    if isinstance(side, OutcomeSide):
        prices = market.current_prices or {}
        if not any(k.strip().upper() == side.name.strip().upper() for k in prices):
            return None
        return outcome_price(market, side.name)
    if side in (BinarySide.YES, BinarySide.NO):
        return market.current_price
    return None


class SnapshotService:
    """Revalues open positions and writes portfolio snapshots."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def mark_position(self, position: Position, market: Market) -> Decimal:
        """Update a position's current value and unrealized P&L; return the value.

        Without a usable price the previous value is kept, or the cost basis if
        the position was never valued.
        """
        price = _mark_price(market, position)
        if price is None:
            value = position.current_value if position.current_value is not None else position.total_cost
            logger.warning(
                f"No price for {position.side} in market {market.id}; keeping prior value",
                extra={"position_id": position.id},
            )
        else:
            value = scoring.position_value(position.shares, side_from_label(position.side), price)

        position.current_value = value
        position.unrealized_pnl = scoring.unrealized_pnl(value, position.total_cost)
        self.store.save_position(position)
        return value

    def take_snapshots(self, now: datetime | None = None) -> JobSummary:
        """Revalue and snapshot every agent of every active cohort.

        Returns:
            JobSummary with snapshot and position counts
        """
        now = now or utcnow()
        bucket = snapshot_bucket(now)
        summary = JobSummary()
        positions_updated = 0

        for cohort in self.store.list_cohorts(CohortStatus.ACTIVE):
            for agent in self.store.list_agents(cohort.id):
                summary.processed += 1
                try:
                    with self.store.transaction():
                        positions_value = Decimal("0")
                        for position in self.store.list_positions(
                            agent_id=agent.id, status=PositionStatus.OPEN
                        ):
                            market = self.store.get_market(position.market_id)
                            if market is None:
                                continue
                            positions_value += self.mark_position(position, market)
                            positions_updated += 1

                        total = scoring.total_value(agent.cash_balance, positions_value)
                        pnl = scoring.total_pnl(total, cohort.initial_balance)
                        scores = [r.brier_score for r in self.store.list_brier_scores(agent_id=agent.id)]

                        self.store.upsert_snapshot(
                            PortfolioSnapshot(
                                id="",
                                agent_id=agent.id,
                                snapshot_timestamp=bucket,
                                cash_balance=agent.cash_balance,
                                positions_value=positions_value,
                                total_value=total,
                                total_pnl=pnl,
                                total_pnl_percent=scoring.pnl_percent(pnl, cohort.initial_balance),
                                brier_score=scoring.aggregate_brier(scores) if scores else None,
                                num_resolved_bets=len(scores),
                            )
                        )
                    summary.succeeded += 1
                except Exception as e:
                    logger.error(f"Snapshot failed for agent {agent.id}: {e}", exc_info=True)
                    summary.failed += 1
                    summary.errors.append(f"{agent.id}: {e}")

        summary.details = {
            "snapshot_timestamp": bucket.isoformat(),
            "snapshots_taken": summary.succeeded,
            "positions_updated": positions_updated,
        }
        logger.info(
            f"Took {summary.succeeded} snapshots, updated {positions_updated} positions",
            extra={"event": "snapshots_taken", "errors": summary.failed},
        )
        return summary