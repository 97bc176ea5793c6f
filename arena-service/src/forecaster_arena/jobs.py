"""Periodic jobs for the Forecaster Arena.

Each job wires the engines together and returns a ``JobSummary``. The HTTP
router and the CLI are thin wrappers around these functions.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from arena_service.config import Settings
from arena_service.llm.providers import AVAILABLE_MODELS

from .cohort import CohortManager
from .decision import DecisionOrchestrator, summarize_decisions
from .errors import CohortAlreadyStarted
from .execution import ExecutionEngine
from .markets import MarketSync
from .models import JobSummary, ModelEntry
from .resolution import ResolutionEngine
from .snapshots import SnapshotService
from .storage import LedgerStore, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ArenaServices:
    """Everything a job needs, built once per process."""
    settings: Settings
    store: LedgerStore
    cohorts: CohortManager
    execution: ExecutionEngine
    decisions: DecisionOrchestrator
    markets: MarketSync
    resolutions: ResolutionEngine
    snapshots: SnapshotService


def default_model_roster() -> list[ModelEntry]:
    """The benchmark models as ledger entries."""
    return [
        ModelEntry(
            id=info.id,
            gateway_id=info.gateway_id,
            display_name=info.display_name,
            provider=info.provider,
            input_cost_per_million=Decimal(str(info.input_cost_per_million)),
            output_cost_per_million=Decimal(str(info.output_cost_per_million)),
            is_active=info.is_active,
        )
        for info in AVAILABLE_MODELS
    ]


def build_services(
    settings: Settings,
    store: LedgerStore,
    llm_client: Any,  # LLMClient or compatible
    market_source: Any,  # GammaClient or compatible
    models: list[ModelEntry] | None = None,
) -> ArenaServices:
    """Wire the engines and seed the model roster.

    Args:
        settings: Benchmark rules and pacing
        store: Ledger store
        llm_client: Client exposing ``achat_completion(ChatRequest)``
        market_source: Source exposing ``fetch_top_markets``, ``fetch_market`` and ``fetch_resolution``
        models: Model roster to register (defaults to the benchmark models)

    Returns:
        ArenaServices
    """
    execution = ExecutionEngine(store, max_bet_fraction=settings.max_bet_fraction)
    cohorts = CohortManager(
        store,
        initial_balance=settings.initial_balance,
        methodology_version=settings.methodology_version,
    )
    cohorts.register_models(models if models is not None else default_model_roster())

    return ArenaServices(
        settings=settings,
        store=store,
        cohorts=cohorts,
        execution=execution,
        decisions=DecisionOrchestrator(store, execution, llm_client, settings),
        markets=MarketSync(
            store,
            market_source,
            top_markets_count=settings.top_markets_count,
            refresh_delay=settings.market_sync_delay_seconds,
        ),
        resolutions=ResolutionEngine(
            store, market_source, poll_delay=settings.market_poll_delay_seconds
        ),
        snapshots=SnapshotService(store),
    )


def start_cohort(services: ArenaServices, force: bool = False, now: datetime | None = None) -> JobSummary:
    """Start this week's cohort; a second start in the same week is reported, not raised."""
    summary = JobSummary(processed=1)
    try:
        result = services.cohorts.start_cohort(force=force, now=now)
    except CohortAlreadyStarted as e:
        logger.info(f"No new cohort started: {e.message}")
        summary.failed = 1
        summary.errors.append(e.message)
        return summary

    summary.succeeded = 1
    summary.details = {
        "cohort_id": result.cohort.id,
        "cohort_number": result.cohort.cohort_number,
        "agents_created": len(result.agents),
    }
    return summary


async def run_decisions(services: ArenaServices, now: datetime | None = None) -> JobSummary:
    results = await services.decisions.run_all_decisions(now)
    return summarize_decisions(results)


def sync_markets(services: ArenaServices, now: datetime | None = None) -> JobSummary:
    return services.markets.sync_markets(now)


def update_market_status(services: ArenaServices, now: datetime | None = None) -> JobSummary:
    """Close expired markets, then complete cohorts that have nothing left open."""
    summary = JobSummary()
    closed = services.markets.close_expired_markets(now)
    completed = services.cohorts.check_and_complete_cohorts(now)
    summary.processed = summary.succeeded = closed + completed
    summary.details = {"markets_closed": closed, "cohorts_completed": completed}
    return summary


def check_resolutions(services: ArenaServices, now: datetime | None = None) -> JobSummary:
    """Settle resolved markets, then complete cohorts that have nothing left open."""
    summary = services.resolutions.check_resolutions(now)
    summary.details["cohorts_completed"] = services.cohorts.check_and_complete_cohorts(now)
    return summary


def take_snapshots(services: ArenaServices, now: datetime | None = None) -> JobSummary:
    return services.snapshots.take_snapshots(now)


def tick(services: ArenaServices, now: datetime | None = None) -> JobSummary:
    """Run the maintenance jobs in order; a failing step does not stop the rest.

    Order: market sync, close expired markets, resolution check,
    cohort completion, snapshots.
    """
    now = now or utcnow()
    steps: list[tuple[str, Callable[[], Any]]] = [
        ("sync_markets", lambda: services.markets.sync_markets(now)),
        ("close_expired_markets", lambda: services.markets.close_expired_markets(now)),
        ("check_resolutions", lambda: services.resolutions.check_resolutions(now)),
        ("complete_cohorts", lambda: services.cohorts.check_and_complete_cohorts(now)),
        ("take_snapshots", lambda: services.snapshots.take_snapshots(now)),
    ]

    summary = JobSummary()
    results: dict[str, Any] = {}
    for name, step in steps:
        summary.processed += 1
        try:
            outcome = step()
        except Exception as e:
            logger.error(f"Tick step {name} failed: {e}", exc_info=True)
            summary.failed += 1
            summary.errors.append(f"{name}: {e}")
            results[name] = {"error": str(e)}
            continue

        summary.succeeded += 1
        results[name] = outcome.to_dict() if isinstance(outcome, JobSummary) else outcome

    summary.details = {"steps": results}
    return summary
