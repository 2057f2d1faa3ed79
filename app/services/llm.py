# =============================================================================
# Multi-Provider LLM Abstraction — Pluggable Completion Capability
# =============================================================================
#
# Provides one interface for the two kinds of call the advisory pipeline
# makes, with concrete implementations for Anthropic (Claude) and any
# OpenAI-compatible API (OpenAI, DeepSeek, Qwen, ...):
#
#   complete_structured() — completion constrained to a JSON schema; the
#                           returned content is the JSON text
#   stream()              — token stream of a free-text completion
#
# Structured output per provider:
#   - OpenAI: `response_format={"type": "json_schema", strict: true}`
#   - Anthropic: a single forced tool whose `input_schema` is the schema;
#     the tool input is serialised back to JSON text
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — Claude via native Anthropic SDK
#   ├── OpenAICompatibleProvider — any OpenAI-compatible API
#   └── create_llm_provider()    — builds the configured provider once at
#                                  process start; callers receive it by
#                                  injection, there is no module singleton
# =============================================================================

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

from app.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # Generated text (JSON text for structured calls)
    model: str             # Model identifier that served the request
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """
    Protocol defining the LLM provider interface.

    Messages are dicts with "role" and "content"; roles are "user" and
    "assistant" only. The system prompt always travels in `system`.
    """

    async def complete_structured(
        self,
        messages: list[dict[str, str]],
        schema: dict[str, Any],
        schema_name: str,
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion constrained to `schema`.

        Returns the raw JSON text in `content`; parsing and validation are
        the caller's job, because a provider may still emit malformed output.
        """
        ...

    def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Stream text deltas of a free-text completion."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system".
    """

    def __init__(
        self,
        settings: Settings,
        api_key: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._default_model = settings.synthesizer_model
        self._temperature = settings.structured_temperature
        self._max_tokens = settings.expert_max_tokens

        logger.info("Initialized AnthropicProvider")

    def _kwargs(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model or self._default_model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }
        if system:
            kwargs["system"] = system
        return kwargs

    async def complete_structured(
        self,
        messages: list[dict[str, str]],
        schema: dict[str, Any],
        schema_name: str,
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Force a single tool call whose input must match `schema`."""
        kwargs = self._kwargs(messages, system, model, temperature, max_tokens)
        kwargs["tools"] = [
            {
                "name": schema_name,
                "description": "Record the analysis in the required format.",
                "input_schema": schema,
            }
        ]
        kwargs["tool_choice"] = {"type": "tool", "name": schema_name}

        response = await self._client.messages.create(**kwargs)

        # Fall back to any text block so the caller sees what went wrong
        content = ""
        for block in response.content:
            if block.type == "tool_use":
                content = json.dumps(block.input)
                break
            if block.type == "text" and not content:
                content = block.text

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Stream text deltas from Claude."""
        kwargs = self._kwargs(messages, system, model, temperature, max_tokens)
        async with self._client.messages.stream(**kwargs) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible (OpenAI, DeepSeek, Qwen, etc.)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI-compatible provider for any API that follows the OpenAI spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_API_KEY=your-key
    """

    def __init__(
        self,
        settings: Settings,
        api_key: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY or OPENAI_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._default_model = settings.synthesizer_model
        self._temperature = settings.structured_temperature
        self._max_tokens = settings.expert_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (base_url=%s)",
            resolved_base_url or "https://api.openai.com/v1",
        )

    def _kwargs(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        # OpenAI: system prompt goes as the first message
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)
        return {
            "model": model or self._default_model,
            "messages": all_messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }

    async def complete_structured(
        self,
        messages: list[dict[str, str]],
        schema: dict[str, Any],
        schema_name: str,
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion under a strict `json_schema` response format."""
        kwargs = self._kwargs(messages, system, model, temperature, max_tokens)
        kwargs["response_format"] = {
            "type": "json_schema",
            "json_schema": {
                "name": schema_name,
                "strict": True,
                "schema": schema,
            },
        }
        response = await self._client.chat.completions.create(**kwargs)
        return self._to_response(response)

    async def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Stream text deltas from an OpenAI-compatible API."""
        kwargs = self._kwargs(messages, system, model, temperature, max_tokens)
        stream = await self._client.chat.completions.create(stream=True, **kwargs)
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                yield delta

    def _to_response(self, response) -> LLMResponse:
        content = response.choices[0].message.content or ""

        # Token counts: OpenAI uses different field names than Anthropic
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return LLMResponse(
            content=content,
            model=response.model or self._default_model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_KNOWN_PROVIDER_TYPES = {"anthropic", "openai_compatible"}


def create_llm_provider(
    settings: Settings,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Build the provider named by `settings.llm_provider`.

    Called once from the application lifespan; the instance is passed by
    reference into the orchestrator. The SDK clients manage their own
    connection pools, so one instance serves every request.

    Raises:
        ValueError: Unknown provider type or missing API key.
    """
    if settings.llm_provider not in _KNOWN_PROVIDER_TYPES:
        raise ValueError(
            f"Unknown provider type '{settings.llm_provider}'. "
            f"Supported types: {sorted(_KNOWN_PROVIDER_TYPES)}"
        )

    if settings.llm_provider == "anthropic":
        return AnthropicProvider(settings)
    return OpenAICompatibleProvider(settings)
