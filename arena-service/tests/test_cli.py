import json
from contextlib import contextmanager

import pytest
from typer.testing import CliRunner

from arena_service import cli
from forecaster_arena.jobs import build_services

runner = CliRunner()


class NoMarkets:
    def fetch_top_markets(self, limit=100, offset=0):
        return []

    def fetch_market(self, external_id):
        return None

    def fetch_resolution(self, external_id):
        return None


@pytest.fixture(autouse=True)
def in_memory_services(monkeypatch, settings, store):
    @contextmanager
    def _services():
        yield build_services(settings, store, llm_client=None, market_source=NoMarkets())

    monkeypatch.setattr(cli, "arena_services", _services)


def _json(output: str) -> dict:
    return json.loads(output[output.index("{"):])


def test_start_cohort_twice():
    first = runner.invoke(cli.app, ["start-cohort"])
    second = runner.invoke(cli.app, ["start-cohort"])
    forced = runner.invoke(cli.app, ["start-cohort", "--force"])

    assert first.exit_code == 0
    assert _json(first.output)["cohort_number"] == 1
    # every processed item failed
    assert second.exit_code == 1
    assert forced.exit_code == 0
    assert _json(forced.output)["cohort_number"] == 2


def test_stats():
    cohort_id = _json(runner.invoke(cli.app, ["start-cohort"]).output)["cohort_id"]

    found = runner.invoke(cli.app, ["stats", cohort_id])
    missing = runner.invoke(cli.app, ["stats", "nope"])

    assert found.exit_code == 0
    assert _json(found.output)["cohort_id"] == cohort_id
    assert missing.exit_code == 1
    assert "not found" in missing.output


def test_tick_with_nothing_to_do():
    result = runner.invoke(cli.app, ["tick"])

    assert result.exit_code == 0
    assert _json(result.output)["failed"] == 0
