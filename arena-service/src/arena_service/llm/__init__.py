"""
LLM module providing gateway access to the competing models.

This module exports:
- LLMClient: Main client for chat completions
- Schemas: Request/response models
- Providers: The model roster and pricing
"""

from arena_service.llm.client import LLMClient, ModelCallError, classify_error
from arena_service.llm.providers import (
    AVAILABLE_MODELS,
    estimate_cost,
    get_model_info,
    list_available_models,
)
from arena_service.llm.schemas import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ModelInfo,
    Usage,
)

__all__ = [
    "LLMClient",
    "ModelCallError",
    "classify_error",
    "AVAILABLE_MODELS",
    "estimate_cost",
    "get_model_info",
    "list_available_models",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ModelInfo",
    "Usage",
]
