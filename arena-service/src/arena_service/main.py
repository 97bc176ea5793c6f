"""
FastAPI application for the Forecaster Arena service.

This module provides:
- The cron endpoints that drive cohorts, decisions, resolutions and snapshots
- Health check and model listing endpoints
- Service wiring (ledger store, model client, market data client) in the lifespan
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request

from arena_service import __version__
from arena_service.config import Settings, configure_logging, get_logger, get_settings
from arena_service.llm.client import LLMClient
from arena_service.llm.providers import list_available_models
from arena_service.llm.schemas import HealthResponse, ModelInfo
from forecaster_arena.api import router as cron_router
from forecaster_arena.jobs import build_services
from forecaster_arena.storage import LedgerStore
from polymarket_gamma import GammaClient


def open_store(settings: Settings) -> LedgerStore:
    """Open the ledger at the configured path, creating its directory."""
    if settings.database_path != ":memory:":
        Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
    return LedgerStore(settings.database_path)


def build_market_source(settings: Settings) -> GammaClient:
    return GammaClient(
        base_url=settings.gamma_api_host,
        timeout=settings.http_timeout_seconds,
        retry_base_delay=settings.retry_base_delay_seconds,
        retry_max_delay=settings.retry_max_delay_seconds,
    )


def create_app(
    settings: Settings | None = None,
    store: LedgerStore | None = None,
    llm_client: Any = None,
    market_source: Any = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Any dependency left as None is created from settings at startup.

    Args:
        settings: Application settings
        store: Ledger store
        llm_client: Model completion client
        market_source: Market data source

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan manager.

        Initializes logging and the arena services on startup.
        """
        logger = configure_logging(settings)
        logger.info("Starting Forecaster Arena service", extra={"port": settings.service_port})

        owns_store = store is None
        owns_source = market_source is None
        ledger = store or open_store(settings)
        source = market_source or build_market_source(settings)
        client = llm_client or LLMClient(settings)

        app.state.services = build_services(settings, ledger, client, source)
        logger.info("Arena services initialized", extra={"database_path": settings.database_path})

        yield

        # Cleanup on shutdown
        logger.info("Shutting down Forecaster Arena service")
        if owns_source:
            source.close()
        if owns_store:
            ledger.close()

    app = FastAPI(
        title="Forecaster Arena",
        description="LLM forecasting benchmark on live prediction markets",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(cron_router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request) -> HealthResponse:
        """
        Health check endpoint.

        Returns:
            HealthResponse: Service health status and whether the model provider has credentials
        """
        get_logger().debug("Health check requested")
        llm_configured = None
        services = getattr(request.app.state, "services", None)
        if services is not None:
            client = services.decisions.llm_client
            # injected clients need not report provider credentials
            if hasattr(client, "check_provider_configured"):
                llm_configured = client.check_provider_configured()
        return HealthResponse(
            status="healthy",
            service=settings.service_name,
            version=__version__,
            llm_configured=llm_configured,
        )

    @app.get("/api/models", response_model=list[ModelInfo], tags=["Models"])
    async def list_models() -> list[ModelInfo]:
        """List the benchmark models and their pricing."""
        return list_available_models()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming requests."""
        logger = get_logger()
        logger.debug(
            "Request received",
            extra={"method": request.method, "path": request.url.path},
        )
        response = await call_next(request)
        logger.debug(
            "Response sent",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
            },
        )
        return response

    return app


def main() -> None:
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "arena_service.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.service_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
