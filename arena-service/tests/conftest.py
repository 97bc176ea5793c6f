from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from arena_service.config import Settings
from forecaster_arena.cohort import CohortManager
from forecaster_arena.execution import ExecutionEngine
from forecaster_arena.models import Market, MarketStatus, MarketType, ModelEntry
from forecaster_arena.storage import LedgerStore

# A Wednesday; the cohort week window starts Sunday 2025-01-05
NOW = datetime(2025, 1, 8, 12, 0, tzinfo=timezone.utc)

TEST_MODELS = [
    ModelEntry(id="gpt-5.1", gateway_id="openai/gpt-5.1", display_name="GPT-5.1", provider="OpenAI"),
    ModelEntry(
        id="claude-opus-4.5",
        gateway_id="anthropic/claude-opus-4.5",
        display_name="Claude Opus 4.5",
        provider="Anthropic",
    ),
    ModelEntry(
        id="retired-model",
        gateway_id="example/retired",
        display_name="Retired",
        provider="Example",
        is_active=False,
    ),
]


@pytest.fixture
def settings():
    return Settings(
        openrouter_api_key="test-key",
        database_path=":memory:",
        agent_delay_seconds=0,
        market_poll_delay_seconds=0,
        market_sync_delay_seconds=0,
        retry_base_delay_seconds=0,
        retry_max_delay_seconds=0,
    )


@pytest.fixture
def store():
    ledger = LedgerStore(":memory:")
    yield ledger
    ledger.close()


@pytest.fixture
def cohort_manager(store):
    manager = CohortManager(store, initial_balance=Decimal("10000"), methodology_version="v1")
    manager.register_models(TEST_MODELS)
    return manager


@pytest.fixture
def cohort_result(cohort_manager):
    return cohort_manager.start_cohort(now=NOW)


@pytest.fixture
def agent(cohort_result):
    return cohort_result.agents[0]


@pytest.fixture
def other_agent(cohort_result):
    return cohort_result.agents[1]


@pytest.fixture
def engine(store):
    return ExecutionEngine(store, max_bet_fraction=Decimal("0.25"))


@pytest.fixture
def add_market(store):
    """Insert or refresh a market; binary unless ``prices`` is given."""

    def _add(
        external_id: str = "pm-1",
        price: str | None = "0.40",
        prices: dict[str, str] | None = None,
        status: MarketStatus = MarketStatus.ACTIVE,
        volume: str = "1000",
        close_date: datetime | None = None,
        question: str | None = None,
    ) -> Market:
        if prices is not None:
            market = Market(
                id="",
                external_id=external_id,
                question=question or f"Who wins {external_id}?",
                market_type=MarketType.MULTI_OUTCOME,
                status=status,
                current_prices={k: Decimal(v) for k, v in prices.items()},
                outcomes=list(prices),
                volume=Decimal(volume),
                close_date=close_date or NOW + timedelta(days=30),
            )
        else:
            market = Market(
                id="",
                external_id=external_id,
                question=question or f"Will {external_id} happen?",
                market_type=MarketType.BINARY,
                status=status,
                current_price=Decimal(price) if price is not None else None,
                volume=Decimal(volume),
                close_date=close_date or NOW + timedelta(days=30),
            )
        return store.upsert_market(market)

    return _add
