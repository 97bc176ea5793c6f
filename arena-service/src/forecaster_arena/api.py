"""Forecaster Arena cron endpoints.

This module exposes the periodic jobs over HTTP for an external scheduler:
- POST /api/cron/start-cohort - Start this week's cohort (``?force=true`` to override)
- POST /api/cron/run-decisions - Run one decision turn for every active cohort
- POST /api/cron/sync-markets - Mirror the top markets from the data source
- POST /api/cron/update-market-status - Close expired markets and complete finished cohorts
- POST /api/cron/check-resolutions - Settle resolved markets
- POST /api/cron/take-snapshots - Mark positions to market and snapshot portfolios
- POST /api/cron/tick - Run the maintenance jobs in sequence
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from . import jobs
from .errors import CohortNotFound

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["Cron"])


def get_services(request: Request) -> jobs.ArenaServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Arena services not initialized")
    return services


@router.post("/start-cohort")
async def start_cohort(request: Request, force: bool = False) -> dict[str, Any]:
    """Start a new cohort with one agent per active model."""
    services = get_services(request)
    summary = await run_in_threadpool(jobs.start_cohort, services, force)
    return {"success": summary.failed == 0, **summary.to_dict()}


@router.post("/run-decisions")
async def run_decisions(request: Request) -> dict[str, Any]:
    """Run one decision turn for every agent of every active cohort."""
    services = get_services(request)
    summary = await jobs.run_decisions(services)
    return {"success": True, **summary.to_dict()}


@router.post("/sync-markets")
async def sync_markets(request: Request) -> dict[str, Any]:
    services = get_services(request)
    summary = await run_in_threadpool(jobs.sync_markets, services)
    return {"success": summary.failed == 0, **summary.to_dict()}


@router.post("/update-market-status")
async def update_market_status(request: Request) -> dict[str, Any]:
    services = get_services(request)
    summary = await run_in_threadpool(jobs.update_market_status, services)
    return {"success": True, **summary.to_dict()}


@router.post("/check-resolutions")
async def check_resolutions(request: Request) -> dict[str, Any]:
    services = get_services(request)
    summary = await run_in_threadpool(jobs.check_resolutions, services)
    return {"success": True, **summary.to_dict()}


@router.post("/take-snapshots")
async def take_snapshots(request: Request) -> dict[str, Any]:
    services = get_services(request)
    summary = await run_in_threadpool(jobs.take_snapshots, services)
    return {"success": True, **summary.to_dict()}


@router.post("/tick")
async def tick(request: Request) -> dict[str, Any]:
    """Sync, close expired markets, resolve, complete cohorts and snapshot."""
    services = get_services(request)
    summary = await run_in_threadpool(jobs.tick, services)
    return {"success": summary.failed == 0, **summary.to_dict()}


@router.get("/cohorts/{cohort_id}/stats")
async def cohort_stats(request: Request, cohort_id: str) -> dict[str, Any]:
    """Agent, position and trade counts for one cohort."""
    services = get_services(request)
    try:
        return services.cohorts.cohort_stats(cohort_id)
    except CohortNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
