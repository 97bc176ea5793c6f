import json
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from arena_service.llm.client import LLMClient
from arena_service.llm.providers import list_available_models
from arena_service.llm.schemas import ChatResponse, ResponseMessage, Usage
from arena_service.main import create_app
from forecaster_arena.storage import utcnow
from polymarket_gamma import MarketSnapshot

HOLD = json.dumps({"action": "HOLD", "reasoning": "Waiting for better prices"})


class AlwaysHold:
    async def achat_completion(self, request):
        return ChatResponse(
            id="resp",
            model=request.model,
            message=ResponseMessage(content=HOLD),
            usage=Usage(prompt_tokens=500, completion_tokens=50, total_tokens=550),
        )


class StaticMarkets:
    def __init__(self, fail=False):
        self.fail = fail

    def fetch_top_markets(self, limit=100, offset=0):
        if self.fail:
            raise RuntimeError("source exploded")
        return [
            MarketSnapshot(
                external_id="pm-1",
                question="Will it rain tomorrow?",
                market_type="binary",
                status="active",
                current_price=Decimal("0.40"),
                volume=Decimal("5000"),
                close_date=utcnow() + timedelta(days=30),
            )
        ]

    def fetch_market(self, external_id):
        return None

    def fetch_resolution(self, external_id):
        return None


@pytest.fixture
def make_client(settings, store):
    def _make(markets=None):
        app = create_app(
            settings=settings,
            store=store,
            llm_client=AlwaysHold(),
            market_source=markets or StaticMarkets(),
        )
        return TestClient(app)

    return _make


def test_health(make_client, settings):
    with make_client() as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["service"] == settings.service_name
    assert response.json()["llm_configured"] is None


def test_health_reports_provider_credentials(monkeypatch, settings, store):
    monkeypatch.setenv("OPENROUTER_API_KEY", "placeholder")
    unconfigured = settings.model_copy(update={"openrouter_api_key": ""})
    reports = []
    for app_settings in (settings, unconfigured):
        app = create_app(
            settings=app_settings,
            store=store,
            llm_client=LLMClient(app_settings),
            market_source=StaticMarkets(),
        )
        with TestClient(app) as client:
            reports.append(client.get("/health").json())

    assert [r["llm_configured"] for r in reports] == [True, False]
    assert {r["status"] for r in reports} == {"healthy"}


def test_list_models(make_client):
    with make_client() as client:
        models = client.get("/api/models").json()

    assert [m["id"] for m in models] == [m.id for m in list_available_models()]


def test_start_cohort_once_per_week(make_client):
    with make_client() as client:
        first = client.post("/api/cron/start-cohort").json()
        second = client.post("/api/cron/start-cohort").json()
        forced = client.post("/api/cron/start-cohort", params={"force": True}).json()

    assert first["success"] is True
    assert first["cohort_number"] == 1
    assert first["agents_created"] == len(list_available_models(active_only=True))
    assert second["success"] is False
    assert "already" in second["errors"][0].lower()
    assert forced["success"] is True
    assert forced["cohort_number"] == 2


def test_weekly_flow(make_client, store):
    with make_client() as client:
        client.post("/api/cron/start-cohort")
        synced = client.post("/api/cron/sync-markets").json()
        decided = client.post("/api/cron/run-decisions").json()
        snapped = client.post("/api/cron/take-snapshots").json()

    assert synced["added"] == 1
    assert decided["statuses"] == {"parsed": len(list_available_models(active_only=True))}
    assert snapped["snapshots_taken"] == len(list_available_models(active_only=True))
    assert store.get_market_by_external_id("pm-1") is not None


def test_cohort_stats(make_client):
    with make_client() as client:
        cohort_id = client.post("/api/cron/start-cohort").json()["cohort_id"]
        stats = client.get(f"/api/cron/cohorts/{cohort_id}/stats")
        missing = client.get("/api/cron/cohorts/nope/stats")

    assert stats.status_code == 200
    assert stats.json()["total_trades"] == 0
    assert missing.status_code == 404


def test_update_market_status(make_client):
    with make_client() as client:
        result = client.post("/api/cron/update-market-status").json()

    assert result["success"] is True
    assert result["markets_closed"] == 0
    assert result["cohorts_completed"] == 0


def test_tick_isolates_failing_steps(make_client):
    with make_client(StaticMarkets(fail=True)) as client:
        client.post("/api/cron/start-cohort")
        result = client.post("/api/cron/tick").json()

    assert result["success"] is False
    assert result["processed"] == 5
    assert result["failed"] == 1
    assert "source exploded" in result["steps"]["sync_markets"]["error"]
    assert result["steps"]["take_snapshots"]["succeeded"] > 0
