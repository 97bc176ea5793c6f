"""Cohort Lifecycle Manager.

A cohort is one weekly competition: ``active -> completed`` and never back.
Starting a cohort spawns one agent per active model; a cohort completes once
none of its agents hold open positions and at least one decision exists.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from .errors import CohortAlreadyStarted, CohortNotFound
from .models import Agent, AgentStatus, Cohort, CohortStatus, ModelEntry
from .scoring import aggregate_brier, brier_skill_score, roi
from .storage import LedgerStore, utcnow

logger = logging.getLogger(__name__)


def week_window_start(moment: datetime) -> datetime:
    """Start of the UTC week containing ``moment``; weeks begin Sunday 00:00."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    days_since_sunday = (moment.weekday() + 1) % 7
    start = moment - timedelta(days=days_since_sunday)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def decision_week(cohort: Cohort, now: datetime) -> int:
    """1-based week number of ``now`` within the cohort."""
    elapsed = now - cohort.started_at
    return max(0, elapsed.days) // 7 + 1


@dataclass
class StartCohortResult:
    cohort: Cohort
    agents: list[Agent] = field(default_factory=list)


class CohortManager:
    """Creates cohorts and detects their completion."""

    def __init__(
        self,
        store: LedgerStore,
        initial_balance: Decimal = Decimal("10000"),
        methodology_version: str = "v1",
    ):
        self.store = store
        self.initial_balance = initial_balance
        self.methodology_version = methodology_version

    def register_models(self, models: list[ModelEntry]) -> None:
        """Seed or refresh the model roster."""
        with self.store.transaction():
            for model in models:
                self.store.upsert_model(model)
        logger.info(f"Registered {len(models)} models")

    def start_cohort(self, force: bool = False, now: datetime | None = None) -> StartCohortResult:
        """Start a new cohort with one agent per active model.

        Args:
            force: Start even if a cohort already started this week
            now: Start timestamp (defaults to the current UTC time)

        Returns:
            The cohort and its agents

        Raises:
            CohortAlreadyStarted: If a cohort exists in the same week window and not forced
        """
        now = now or utcnow()

        with self.store.transaction():
            latest = self.store.latest_cohort()
            if (
                not force
                and latest is not None
                and week_window_start(latest.started_at) == week_window_start(now)
            ):
                raise CohortAlreadyStarted(
                    f"Cohort #{latest.cohort_number} already started this week"
                )

            cohort = self.store.create_cohort(
                cohort_number=self.store.next_cohort_number(),
                started_at=now,
                methodology_version=self.methodology_version,
                initial_balance=self.initial_balance,
            )
            agents = [
                self.store.create_agent(cohort.id, model.id, self.initial_balance)
                for model in self.store.list_models(active_only=True)
            ]

        logger.info(
            f"Cohort #{cohort.cohort_number} started with {len(agents)} agents",
            extra={
                "event": "cohort_started",
                "cohort_id": cohort.id,
                "cohort_number": cohort.cohort_number,
                "num_agents": len(agents),
                "forced": force,
            },
        )
        return StartCohortResult(cohort=cohort, agents=agents)

    def is_cohort_complete(self, cohort_id: str) -> bool:
        """True iff no agent in the cohort has an open position."""
        if self.store.get_cohort(cohort_id) is None:
            raise CohortNotFound(f"Cohort {cohort_id} not found")
        return self.store.count_open_positions(cohort_id) == 0

    def check_and_complete_cohorts(self, now: datetime | None = None) -> int:
        """Complete every active cohort with no open positions and at least one decision.

        Returns:
            Number of cohorts completed
        """
        now = now or utcnow()
        completed = 0

        for cohort in self.store.list_cohorts(CohortStatus.ACTIVE):
            if self.store.count_decisions(cohort.id) == 0:
                continue
            if not self.is_cohort_complete(cohort.id):
                continue

            self.store.complete_cohort(cohort.id, now)
            completed += 1
            logger.info(
                f"Cohort #{cohort.cohort_number} completed",
                extra={
                    "event": "cohort_completed",
                    "cohort_id": cohort.id,
                    "cohort_number": cohort.cohort_number,
                },
            )

        return completed

    def cohort_stats(self, cohort_id: str) -> dict:
        """Counts plus per-agent return and forecast skill for one cohort."""
        cohort = self.store.get_cohort(cohort_id)
        if cohort is None:
            raise CohortNotFound(f"Cohort {cohort_id} not found")

        agents = self.store.list_agents(cohort_id)
        return {
            "cohort_id": cohort.id,
            "cohort_number": cohort.cohort_number,
            "status": cohort.status.value,
            "num_agents": len(agents),
            "active_agents": sum(1 for a in agents if a.status == AgentStatus.ACTIVE),
            "bankrupt_agents": sum(1 for a in agents if a.status == AgentStatus.BANKRUPT),
            "open_positions": self.store.count_open_positions(cohort_id),
            "total_trades": self.store.count_trades(cohort_id),
            "total_decisions": self.store.count_decisions(cohort_id),
            "agents": [self._agent_performance(cohort, agent) for agent in agents],
        }

    def _agent_performance(self, cohort: Cohort, agent: Agent) -> dict:
        snapshots = self.store.list_snapshots(agent.id)
        if snapshots:
            total_value = snapshots[-1].total_value
        else:
            # no valuation yet; open positions count at cost
            total_value = agent.cash_balance + agent.total_invested

        scores = [record.brier_score for record in self.store.list_brier_scores(agent_id=agent.id)]
        brier = aggregate_brier(scores) if scores else None
        return {
            "agent_id": agent.id,
            "model_id": agent.model_id,
            "total_value": float(total_value),
            "roi": float(roi(total_value, cohort.initial_balance)),
            "num_resolved_bets": len(scores),
            "brier_score": float(brier) if brier is not None else None,
            "brier_skill_score": float(brier_skill_score(brier)) if brier is not None else None,
        }
