"""Market sync and status maintenance.

This module keeps the ledger's market mirror current:
- Upsert the top markets by volume from the data source
- Re-fetch markets that hold open positions or are past their close date
- Move active markets past their close date to closed
"""

import logging
import time
from datetime import datetime
from typing import Any

from polymarket_gamma import MarketDataError, MarketSnapshot

from .models import JobSummary, Market, MarketStatus, MarketType
from .storage import LedgerStore, utcnow

logger = logging.getLogger(__name__)


def snapshot_to_market(snapshot: MarketSnapshot) -> Market:
    """Convert a data-source snapshot into a ledger market.

    A source-side ``resolved`` status is mirrored as ``closed``: only the
    resolution engine may mark a market resolved, because resolving is what
    settles positions.
    """
    status = MarketStatus.ACTIVE
    if snapshot.status in ("closed", "resolved"):
        status = MarketStatus.CLOSED

    return Market(
        id="",
        external_id=snapshot.external_id,
        question=snapshot.question,
        description=snapshot.description,
        category=snapshot.category,
        market_type=MarketType(snapshot.market_type),
        status=status,
        current_price=snapshot.current_price,
        current_prices=snapshot.current_prices,
        outcomes=snapshot.outcomes,
        volume=snapshot.volume,
        close_date=snapshot.close_date,
    )


class MarketSync:
    """Mirrors market data from the source into the ledger."""

    def __init__(
        self,
        store: LedgerStore,
        source: Any,  # GammaClient or compatible
        top_markets_count: int = 100,
        refresh_delay: float = 0.5,
    ):
        self.store = store
        self.source = source
        self.top_markets_count = top_markets_count
        self.refresh_delay = refresh_delay

    def sync_markets(self, now: datetime | None = None) -> JobSummary:
        """Fetch the top markets and refresh markets the ledger still depends on.

        Returns:
            JobSummary with added/updated/refreshed counts
        """
        now = now or utcnow()
        summary = JobSummary()
        added = updated = refreshed = 0

        try:
            snapshots = self.source.fetch_top_markets(self.top_markets_count)
        except MarketDataError as e:
            logger.error(f"Market sync failed: {e}")
            summary.failed += 1
            summary.errors.append(str(e))
            summary.details = {"added": 0, "updated": 0, "refreshed": 0}
            return summary

        seen: set[str] = set()
        for snapshot in snapshots:
            summary.processed += 1
            if not snapshot.external_id:
                summary.failed += 1
                summary.errors.append(f"Market without id: {snapshot.question[:50]}")
                continue

            seen.add(snapshot.external_id)
            existed = self.store.get_market_by_external_id(snapshot.external_id) is not None
            self.store.upsert_market(snapshot_to_market(snapshot))
            summary.succeeded += 1
            if existed:
                updated += 1
            else:
                added += 1

        for index, market in enumerate(self._markets_to_refresh(now, seen)):
            if index > 0 and self.refresh_delay > 0:
                time.sleep(self.refresh_delay)

            summary.processed += 1
            try:
                snapshot = self.source.fetch_market(market.external_id)
            except MarketDataError as e:
                logger.warning(f"Could not refresh market {market.id}: {e}")
                summary.failed += 1
                summary.errors.append(f"{market.external_id}: {e}")
                continue

            summary.succeeded += 1
            if snapshot is None:
                logger.warning(f"Market {market.external_id} no longer exists at the source")
                continue
            self.store.upsert_market(snapshot_to_market(snapshot))
            refreshed += 1

        summary.details = {"added": added, "updated": updated, "refreshed": refreshed}
        logger.info(
            f"Market sync complete: {added} added, {updated} updated, {refreshed} refreshed",
            extra={"event": "markets_synced", "errors": len(summary.errors)},
        )
        return summary

    def _markets_to_refresh(self, now: datetime, skip: set[str]) -> list[Market]:
        """Markets with open positions, plus active markets past their close date."""
        candidates: dict[str, Market] = {}
        for market in self.store.markets_with_open_positions():
            if market.status in (MarketStatus.ACTIVE, MarketStatus.CLOSED):
                candidates[market.id] = market
        for market in self.store.list_markets(MarketStatus.ACTIVE):
            if market.close_date is not None and market.close_date <= now:
                candidates[market.id] = market
        return [m for m in candidates.values() if m.external_id not in skip]

    def close_expired_markets(self, now: datetime | None = None) -> int:
        """Move active markets whose close date has passed to closed.

        Returns:
            Number of markets closed
        """
        now = now or utcnow()
        closed = 0
        for market in self.store.list_markets(MarketStatus.ACTIVE):
            if market.close_date is None or market.close_date > now:
                continue
            if self.store.set_market_status(market.id, MarketStatus.CLOSED):
                closed += 1
                logger.info(
                    f"Market closed: {market.question[:50]}",
                    extra={"event": "market_closed", "market_id": market.id},
                )
        return closed
