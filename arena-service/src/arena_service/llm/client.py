"""
LLM Client wrapper using LiteLLM, routed through the OpenRouter gateway.

This module provides:
- A single async chat-completion entry point for every competing model
- Classification of gateway failures into retryable and permanent errors
- Exponential-backoff retries for transient failures
- Comprehensive logging
"""

import asyncio
import logging
import os
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

import litellm
from litellm import acompletion
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from arena_service.config import Settings, get_logger
from arena_service.llm.schemas import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ResponseMessage,
    Usage,
)


PERMANENT_STATUS_CODES = {400, 401, 403, 404, 422}


class ModelCallError(Exception):
    """A model call that failed after the gateway was contacted (or could not be)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


def classify_error(exc: BaseException) -> ModelCallError:
    """
    Map an arbitrary client/gateway exception to a ModelCallError.

    Timeouts, connection failures, rate limits (429) and server errors (5xx)
    are retryable. Authentication, missing-model and other 4xx errors are not.

    Args:
        exc: Exception raised while calling the gateway

    Returns:
        ModelCallError carrying the status code and retryability
    """
    if isinstance(exc, ModelCallError):
        return exc

    if isinstance(exc, (litellm.Timeout, asyncio.TimeoutError, TimeoutError)):
        return ModelCallError(f"Request timed out: {exc}", status_code=408, retryable=True)

    if isinstance(exc, (litellm.APIConnectionError, ConnectionError)):
        return ModelCallError(f"Connection failed: {exc}", retryable=True)

    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        retryable = status_code == 429 or status_code >= 500
        if status_code in PERMANENT_STATUS_CODES:
            retryable = False
        return ModelCallError(str(exc), status_code=status_code, retryable=retryable)

    return ModelCallError(str(exc), retryable=False)


CompletionFn = Callable[..., Awaitable[Any]]


class LLMClient:
    """
    Chat-completion client for the competing models.

    All models are reached through OpenRouter, so a single provider prefix
    covers the whole roster.
    """

    def __init__(self, settings: Settings, completion_fn: CompletionFn | None = None) -> None:
        """
        Initialize the LLM client.

        Args:
            settings: Application settings with API key and retry policy
            completion_fn: Async completion callable (defaults to litellm.acompletion)
        """
        self.settings = settings
        self.logger = get_logger("arena_service.llm.client")
        self._completion_fn = completion_fn or acompletion

        self._configure_api_keys()

        litellm.drop_params = True  # Drop unsupported params instead of erroring

        self.logger.info(
            "LLMClient initialized",
            extra={"max_attempts": settings.llm_max_attempts},
        )

    def _configure_api_keys(self) -> None:
        """Set the gateway API key in environment for LiteLLM to use."""
        if self.settings.openrouter_api_key:
            os.environ["OPENROUTER_API_KEY"] = self.settings.openrouter_api_key
            self.logger.debug("OpenRouter API key configured")
        else:
            self.logger.warning("OpenRouter API key missing; model calls will fail")

    def _normalize_model_name(self, model: str) -> str:
        """
        Prefix a gateway model id with the LiteLLM provider route.

        Args:
            model: Gateway model identifier (e.g., openai/gpt-5.1)

        Returns:
            LiteLLM model name (e.g., openrouter/openai/gpt-5.1)
        """
        if model.startswith("openrouter/"):
            return model
        return f"openrouter/{model}"

    def _build_messages(self, messages: list[ChatMessage]) -> list[dict[str, Any]]:
        return [{"role": msg.role, "content": msg.content} for msg in messages]

    def _build_completion_kwargs(self, request: ChatRequest) -> dict[str, Any]:
        """
        Build keyword arguments for the LiteLLM completion call.

        Request values win over settings defaults.

        Args:
            request: Chat request

        Returns:
            Dict of kwargs for acompletion()
        """
        return {
            "model": self._normalize_model_name(request.model),
            "messages": self._build_messages(request.messages),
            "temperature": (
                request.temperature
                if request.temperature is not None
                else self.settings.llm_temperature
            ),
            "max_tokens": request.max_tokens or self.settings.llm_max_tokens,
            "timeout": request.timeout or self.settings.llm_timeout_seconds,
        }

    def _parse_response(self, response: Any, model: str, elapsed_ms: int) -> ChatResponse:
        """
        Parse LiteLLM response into ChatResponse.

        Args:
            response: Raw LiteLLM response
            model: Model used for completion
            elapsed_ms: Wall-clock latency of the call

        Returns:
            Parsed ChatResponse
        """
        choice = response.choices[0]
        message = choice.message

        usage = Usage()
        if getattr(response, "usage", None):
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )

        return ChatResponse(
            id=getattr(response, "id", None) or f"chatcmpl-{uuid.uuid4().hex[:8]}",
            model=model,
            message=ResponseMessage(role="assistant", content=message.content),
            usage=usage,
            finish_reason=getattr(choice, "finish_reason", None),
            response_time_ms=elapsed_ms,
        )

    async def _complete_once(self, request: ChatRequest) -> ChatResponse:
        kwargs = self._build_completion_kwargs(request)
        started = time.monotonic()
        try:
            response = await self._completion_fn(**kwargs)
        except Exception as e:
            raise classify_error(e) from e
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return self._parse_response(response, request.model, elapsed_ms)

    async def achat_completion(self, request: ChatRequest) -> ChatResponse:
        """
        Perform an asynchronous chat completion with retries.

        Retryable failures back off exponentially up to the configured number
        of attempts. Permanent failures are raised immediately.

        Args:
            request: Chat completion request

        Returns:
            ChatResponse with the model's response

        Raises:
            ModelCallError: If the completion fails permanently or retries run out
        """
        self.logger.info(
            "Starting async chat completion via LiteLLM",
            extra={"model": request.model, "message_count": len(request.messages)},
        )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.llm_max_attempts),
            wait=wait_exponential(
                multiplier=self.settings.retry_base_delay_seconds,
                max=self.settings.retry_max_delay_seconds,
            ),
            retry=retry_if_exception(
                lambda e: isinstance(e, ModelCallError) and e.retryable
            ),
            before_sleep=before_sleep_log(self.logger, logging.WARNING),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    parsed = await self._complete_once(request)
        except ModelCallError as e:
            self.logger.error(
                "Async chat completion failed",
                extra={
                    "model": request.model,
                    "status_code": e.status_code,
                    "retryable": e.retryable,
                    "error": str(e),
                },
            )
            raise

        self.logger.info(
            "Async chat completion successful",
            extra={
                "model": request.model,
                "finish_reason": parsed.finish_reason,
                "total_tokens": parsed.usage.total_tokens,
            },
        )
        return parsed

    def check_provider_configured(self) -> bool:
        """Whether an OpenRouter API key is available."""
        return bool(self.settings.openrouter_api_key)
