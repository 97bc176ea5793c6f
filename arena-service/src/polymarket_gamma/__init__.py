"""Polymarket Gamma market data for the Forecaster Arena."""

from .client import GammaClient, MarketDataError, check_resolution, simplify_market
from .models import MarketResolution, MarketSnapshot

__all__ = [
    "GammaClient",
    "MarketDataError",
    "MarketResolution",
    "MarketSnapshot",
    "check_resolution",
    "simplify_market",
]
