"""
Arena Service - runtime shell for the Forecaster Arena.

This package provides settings, logging, the model gateway client,
the FastAPI application and the command-line entry point.
"""

__version__ = "0.1.0"
