import asyncio
from types import SimpleNamespace

import pytest

from arena_service.llm.client import LLMClient, ModelCallError, classify_error
from arena_service.llm.providers import estimate_cost, get_model_info
from arena_service.llm.schemas import ChatMessage, ChatRequest, Usage


class GatewayError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


def _raw_response(content="{}"):
    return SimpleNamespace(
        id="gen-123",
        choices=[
            SimpleNamespace(message=SimpleNamespace(content=content), finish_reason="stop")
        ],
        usage=SimpleNamespace(prompt_tokens=900, completion_tokens=100, total_tokens=1000),
    )


class ScriptedCompletion:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def __call__(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _request(**kwargs):
    return ChatRequest(
        model="openai/gpt-5.1",
        messages=[
            ChatMessage(role="system", content="You are a forecaster."),
            ChatMessage(role="user", content="Decide."),
        ],
        **kwargs,
    )


@pytest.mark.parametrize(
    "exc, status_code, retryable",
    [
        (asyncio.TimeoutError(), 408, True),
        (ConnectionError("reset"), None, True),
        (GatewayError("rate limited", 429), 429, True),
        (GatewayError("bad gateway", 502), 502, True),
        (GatewayError("unauthorized", 401), 401, False),
        (GatewayError("no such model", 404), 404, False),
        (ValueError("weird"), None, False),
    ],
)
def test_classify_error(exc, status_code, retryable):
    error = classify_error(exc)

    assert isinstance(error, ModelCallError)
    assert error.status_code == status_code
    assert error.retryable is retryable


def test_completion_is_parsed(settings):
    completion = ScriptedCompletion(_raw_response('{"action": "HOLD"}'))
    client = LLMClient(settings, completion_fn=completion)

    response = asyncio.run(client.achat_completion(_request()))

    assert response.id == "gen-123"
    assert response.model == "openai/gpt-5.1"
    assert response.message.content == '{"action": "HOLD"}'
    assert response.usage.prompt_tokens == 900
    assert response.usage.completion_tokens == 100
    assert response.finish_reason == "stop"
    assert response.response_time_ms >= 0

    kwargs = completion.calls[0]
    assert kwargs["model"] == "openrouter/openai/gpt-5.1"
    assert kwargs["messages"][0] == {"role": "system", "content": "You are a forecaster."}
    assert kwargs["temperature"] == 0.0
    assert kwargs["max_tokens"] == settings.llm_max_tokens


def test_request_values_override_settings(settings):
    completion = ScriptedCompletion(_raw_response())
    client = LLMClient(settings, completion_fn=completion)

    asyncio.run(client.achat_completion(_request(temperature=0.7, max_tokens=50, timeout=5)))

    kwargs = completion.calls[0]
    assert kwargs["temperature"] == 0.7
    assert kwargs["max_tokens"] == 50
    assert kwargs["timeout"] == 5


def test_transient_failures_are_retried(settings):
    completion = ScriptedCompletion(
        GatewayError("overloaded", 503),
        asyncio.TimeoutError(),
        _raw_response("ok"),
    )
    client = LLMClient(settings, completion_fn=completion)

    response = asyncio.run(client.achat_completion(_request()))

    assert response.message.content == "ok"
    assert len(completion.calls) == 3


def test_retries_are_bounded(settings):
    completion = ScriptedCompletion(*[GatewayError("rate limited", 429)] * settings.llm_max_attempts)
    client = LLMClient(settings, completion_fn=completion)

    with pytest.raises(ModelCallError) as excinfo:
        asyncio.run(client.achat_completion(_request()))

    assert excinfo.value.status_code == 429
    assert len(completion.calls) == settings.llm_max_attempts


def test_permanent_failure_is_not_retried(settings):
    completion = ScriptedCompletion(GatewayError("invalid key", 401), _raw_response())
    client = LLMClient(settings, completion_fn=completion)

    with pytest.raises(ModelCallError) as excinfo:
        asyncio.run(client.achat_completion(_request()))

    assert excinfo.value.retryable is False
    assert len(completion.calls) == 1


def test_provider_configured(settings):
    assert LLMClient(settings, completion_fn=ScriptedCompletion()).check_provider_configured()

    unconfigured = settings.model_copy(update={"openrouter_api_key": ""})
    assert not LLMClient(unconfigured, completion_fn=ScriptedCompletion()).check_provider_configured()


def test_model_lookup_by_either_id():
    assert get_model_info("gpt-5.1").gateway_id == "openai/gpt-5.1"
    assert get_model_info("anthropic/claude-opus-4.5").id == "claude-opus-4.5"
    assert get_model_info("unknown/model") is None


def test_estimate_cost():
    usage = Usage(prompt_tokens=1_000_000, completion_tokens=100_000, total_tokens=1_100_000)

    assert estimate_cost(usage, "gpt-5.1") == pytest.approx(5.0 + 1.5)
    # unknown models use the generic price
    assert estimate_cost(usage, "unknown/model") == pytest.approx(2.0 + 0.8)
