"""
Configuration and logging setup for the Forecaster Arena service.

This module provides:
- Environment-based settings via Pydantic Settings
- Benchmark constants (balances, bet sizing, pacing) with their defaults
- Structured logging configuration
"""

import logging
import logging.config
import sys
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Service configuration
    service_name: str = Field(default="forecaster-arena", description="Name of the service")
    service_port: int = Field(default=8000, alias="ARENA_SERVICE_PORT")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )
    database_path: str = Field(default="data/forecaster.db", alias="DATABASE_PATH")

    # API Keys - loaded from environment, never logged
    openrouter_api_key: str = Field(default="", alias="OPENROUTER_API_KEY")

    # Market data
    gamma_api_host: str = Field(
        default="https://gamma-api.polymarket.com", alias="POLYMARKET_GAMMA_API_HOST"
    )
    http_timeout_seconds: float = Field(default=30.0, gt=0)

    # Benchmark rules
    initial_balance: Decimal = Field(default=Decimal("10000"), gt=0)
    min_bet: Decimal = Field(default=Decimal("50"), gt=0)
    max_bet_fraction: Decimal = Field(default=Decimal("0.25"), gt=0, le=1)
    top_markets_count: int = Field(default=100, ge=1)
    methodology_version: str = Field(default="v1")

    # LLM calls
    llm_temperature: float = Field(default=0.0, ge=0, le=2)
    llm_max_tokens: int = Field(default=2000, ge=1)
    llm_timeout_seconds: float = Field(default=120.0, gt=0)
    llm_max_parse_retries: int = Field(default=1, ge=0)
    llm_max_attempts: int = Field(default=3, ge=1)

    # Backoff and pacing
    retry_base_delay_seconds: float = Field(default=2.0, ge=0)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)
    agent_delay_seconds: float = Field(default=1.0, ge=0)
    market_poll_delay_seconds: float = Field(default=0.2, ge=0)
    market_sync_delay_seconds: float = Field(default=0.5, ge=0)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


def configure_logging(settings: Settings) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        settings: Application settings containing log level

    Returns:
        Logger: Configured service logger
    """
    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "module": "%(module)s", "function": "%(funcName)s", "message": "%(message)s"}',
                "datefmt": "%Y-%m-%dT%H:%M:%S%z",
            },
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s.%(funcName)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.log_level,
                "formatter": "standard",  # Use standard for dev, json for prod
                "stream": sys.stdout,
            },
        },
        "root": {
            "level": settings.log_level,
            "handlers": ["console"],
        },
        "loggers": {
            "arena_service": {
                "level": settings.log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "forecaster_arena": {
                "level": settings.log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "polymarket_gamma": {
                "level": settings.log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
            "litellm": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "LiteLLM": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "httpx": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }

    logging.config.dictConfig(log_config)
    logger = logging.getLogger("arena_service")
    logger.info(
        "Logging configured",
        extra={"log_level": settings.log_level, "service": settings.service_name},
    )

    return logger


def get_logger(name: str = "arena_service") -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (default: arena_service)

    Returns:
        Logger: Logger instance
    """
    return logging.getLogger(name)
