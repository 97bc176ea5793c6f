"""
Competing model definitions.

This module defines:
- The models entered into every new cohort
- Per-model token pricing used for cost estimation
"""

from arena_service.llm.schemas import ModelInfo, Usage


DEFAULT_INPUT_COST_PER_MILLION = 2.0
DEFAULT_OUTPUT_COST_PER_MILLION = 8.0


# Benchmark roster, routed through the OpenRouter gateway
AVAILABLE_MODELS: list[ModelInfo] = [
    ModelInfo(
        id="gpt-5.1",
        gateway_id="openai/gpt-5.1",
        display_name="GPT-5.1",
        provider="OpenAI",
        input_cost_per_million=5.0,
        output_cost_per_million=15.0,
    ),
    ModelInfo(
        id="gemini-3-pro",
        gateway_id="google/gemini-3-pro-preview",
        display_name="Gemini 3 Pro",
        provider="Google",
        input_cost_per_million=2.5,
        output_cost_per_million=10.0,
    ),
    ModelInfo(
        id="grok-4",
        gateway_id="x-ai/grok-4",
        display_name="Grok 4",
        provider="xAI",
        input_cost_per_million=5.0,
        output_cost_per_million=15.0,
    ),
    ModelInfo(
        id="claude-opus-4.5",
        gateway_id="anthropic/claude-opus-4.5",
        display_name="Claude Opus 4.5",
        provider="Anthropic",
        input_cost_per_million=15.0,
        output_cost_per_million=75.0,
    ),
    ModelInfo(
        id="deepseek-v3",
        gateway_id="deepseek/deepseek-v3-0324",
        display_name="DeepSeek V3",
        provider="DeepSeek",
        input_cost_per_million=0.5,
        output_cost_per_million=2.0,
    ),
    ModelInfo(
        id="kimi-k2",
        gateway_id="moonshotai/kimi-k2-thinking",
        display_name="Kimi K2",
        provider="Moonshot AI",
        input_cost_per_million=1.0,
        output_cost_per_million=4.0,
    ),
    ModelInfo(
        id="qwen-3",
        gateway_id="qwen/qwen3-235b-a22b-instruct-2507",
        display_name="Qwen 3",
        provider="Alibaba",
        input_cost_per_million=1.0,
        output_cost_per_million=4.0,
    ),
]


def get_model_info(model_id: str) -> ModelInfo | None:
    """
    Get model information by internal ID or gateway ID.

    Args:
        model_id: The model identifier

    Returns:
        ModelInfo if found, None otherwise
    """
    for model in AVAILABLE_MODELS:
        if model_id in (model.id, model.gateway_id):
            return model
    return None


def estimate_cost(usage: Usage, model_id: str) -> float:
    """
    Estimate the USD cost of a call from its token usage.

    Unknown models fall back to a generic mid-range price.

    Args:
        usage: Token usage of the call
        model_id: Internal or gateway model identifier

    Returns:
        Estimated cost in USD
    """
    model = get_model_info(model_id)
    input_price = model.input_cost_per_million if model else DEFAULT_INPUT_COST_PER_MILLION
    output_price = model.output_cost_per_million if model else DEFAULT_OUTPUT_COST_PER_MILLION

    input_cost = usage.prompt_tokens / 1_000_000 * input_price
    output_cost = usage.completion_tokens / 1_000_000 * output_price
    return input_cost + output_cost


def list_available_models(active_only: bool = False) -> list[ModelInfo]:
    """
    List the benchmark roster.

    Args:
        active_only: Only include models entered into new cohorts

    Returns:
        List of models
    """
    if not active_only:
        return AVAILABLE_MODELS

    return [m for m in AVAILABLE_MODELS if m.is_active]
