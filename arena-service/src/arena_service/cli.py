"""Command-line entry point: one command per periodic job.

A scheduler invokes ``forecaster-arena <job>``; each run prints the job
summary as JSON and exits non-zero when every processed item failed.
"""

import asyncio
import json
from contextlib import contextmanager
from typing import Iterator

import typer

from arena_service.config import configure_logging, get_logger, get_settings
from arena_service.llm.client import LLMClient
from arena_service.main import build_market_source, open_store
from forecaster_arena import jobs
from forecaster_arena.errors import CohortNotFound
from forecaster_arena.models import JobSummary

logger = get_logger(__name__)

app = typer.Typer(help="Forecaster Arena periodic jobs")


@contextmanager
def arena_services() -> Iterator[jobs.ArenaServices]:
    settings = get_settings()
    configure_logging(settings)
    store = open_store(settings)
    source = build_market_source(settings)
    try:
        yield jobs.build_services(settings, store, LLMClient(settings), source)
    finally:
        source.close()
        store.close()


def _emit(summary: JobSummary) -> None:
    typer.echo(json.dumps(summary.to_dict(), indent=2, default=str))
    if summary.processed and summary.failed == summary.processed:
        raise typer.Exit(1)


@app.command("start-cohort")
def start_cohort(
    force: bool = typer.Option(False, help="Start even if a cohort already started this week"),
):
    """Start this week's cohort with one agent per active model."""
    with arena_services() as services:
        _emit(jobs.start_cohort(services, force=force))


@app.command("run-decisions")
def run_decisions():
    """Run one decision turn for every agent of every active cohort."""
    with arena_services() as services:
        _emit(asyncio.run(jobs.run_decisions(services)))


@app.command("sync-markets")
def sync_markets():
    """Mirror the top markets by volume from Polymarket."""
    with arena_services() as services:
        _emit(jobs.sync_markets(services))


@app.command("update-market-status")
def update_market_status():
    """Close expired markets and complete finished cohorts."""
    with arena_services() as services:
        _emit(jobs.update_market_status(services))


@app.command("check-resolutions")
def check_resolutions():
    """Settle markets that resolved since the last run."""
    with arena_services() as services:
        _emit(jobs.check_resolutions(services))


@app.command("take-snapshots")
def take_snapshots():
    """Mark open positions to market and snapshot every portfolio."""
    with arena_services() as services:
        _emit(jobs.take_snapshots(services))


@app.command("tick")
def tick():
    """Sync, close, resolve, complete and snapshot in one run."""
    with arena_services() as services:
        _emit(jobs.tick(services))


@app.command("stats")
def stats(cohort_id: str = typer.Argument(..., help="Cohort id")):
    """Print counts and per-agent ROI and Brier skill for a cohort."""
    with arena_services() as services:
        try:
            result = services.cohorts.cohort_stats(cohort_id)
        except CohortNotFound as e:
            typer.echo(f"Error: {e.message}")
            raise typer.Exit(1)
        typer.echo(json.dumps(result, indent=2))


if __name__ == "__main__":
    app()
