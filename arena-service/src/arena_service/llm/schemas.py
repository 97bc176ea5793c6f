"""
Pydantic schemas for LLM request/response models.

These schemas define the contract for:
- Chat completion requests
- Chat completion responses
- Model registry entries
"""

from typing import Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """A single message in a chat conversation."""

    role: Literal["system", "user", "assistant"] = Field(
        description="The role of the message sender"
    )
    content: str = Field(description="The content of the message")


class ChatRequest(BaseModel):
    """Request for a single chat completion."""

    model: str = Field(
        description="Gateway model identifier (e.g., openai/gpt-5.1, anthropic/claude-opus-4.5)",
    )
    messages: list[ChatMessage] = Field(
        description="List of messages in the conversation"
    )
    temperature: float | None = Field(
        default=None, ge=0, le=2, description="Sampling temperature"
    )
    max_tokens: int | None = Field(
        default=None, ge=1, description="Maximum tokens to generate"
    )
    timeout: float | None = Field(
        default=None, gt=0, description="Request timeout in seconds"
    )


class ResponseMessage(BaseModel):
    """The assistant's response message."""

    role: Literal["assistant"] = Field(default="assistant")
    content: str | None = Field(default=None, description="Text content of the response")


class Usage(BaseModel):
    """Token usage statistics."""

    prompt_tokens: int = Field(default=0, description="Tokens in the prompt")
    completion_tokens: int = Field(default=0, description="Tokens in the completion")
    total_tokens: int = Field(default=0, description="Total tokens used")


class ChatResponse(BaseModel):
    """Response from a chat completion."""

    id: str = Field(description="Unique response identifier")
    model: str = Field(description="Model used for completion")
    message: ResponseMessage = Field(description="The assistant's response")
    usage: Usage = Field(default_factory=Usage, description="Token usage statistics")
    finish_reason: str | None = Field(
        default=None, description="Reason for completion (stop, length, etc.)"
    )
    response_time_ms: int = Field(default=0, description="Wall-clock latency of the call")


class ModelInfo(BaseModel):
    """A competing model and its pricing."""

    id: str = Field(description="Internal model identifier")
    gateway_id: str = Field(description="OpenRouter model identifier")
    display_name: str = Field(description="Human-readable model name")
    provider: str = Field(description="Company that created the model")
    input_cost_per_million: float = Field(default=2.0, description="USD per million prompt tokens")
    output_cost_per_million: float = Field(default=8.0, description="USD per million completion tokens")
    is_active: bool = Field(default=True, description="Whether new cohorts include this model")


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(description="Service status")
    service: str = Field(description="Service name")
    version: str = Field(default="0.1.0", description="Service version")
    llm_configured: bool | None = Field(
        default=None, description="Whether the model provider has an API key"
    )
