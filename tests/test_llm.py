# =============================================================================
# Unit Tests — LLM Providers
# =============================================================================
#
# The SDK clients are replaced with mocks after construction; no network.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.config import ANTHROPIC_STAGE_MODELS, Settings
from app.services.llm import (
    AnthropicProvider,
    LLMProvider,
    OpenAICompatibleProvider,
    create_llm_provider,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


SCHEMA = {
    "type": "object",
    "properties": {"claims": {"type": "array", "items": {"type": "string"}}},
    "required": ["claims"],
    "additionalProperties": False,
}


# ---------------------------------------------------------------------------
# Test: Factory
# ---------------------------------------------------------------------------


class TestCreateLLMProvider:
    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            create_llm_provider(Settings(llm_provider="carrier_pigeon"))

    def test_missing_anthropic_key(self):
        settings = Settings(llm_provider="anthropic", llm_api_key=None,
                            anthropic_api_key="")
        with pytest.raises(ValueError, match="API key"):
            create_llm_provider(settings)

    def test_missing_openai_key(self):
        settings = Settings(llm_provider="openai_compatible", llm_api_key=None,
                            openai_api_key="")
        with pytest.raises(ValueError, match="API key"):
            create_llm_provider(settings)

    @pytest.mark.parametrize(
        "cls", [LLMProvider, AnthropicProvider, OpenAICompatibleProvider]
    )
    def test_exposes_only_the_pipeline_calls(self, cls):
        assert hasattr(cls, "complete_structured")
        assert hasattr(cls, "stream")
        assert not hasattr(cls, "complete")

    def test_builds_configured_provider(self):
        provider = create_llm_provider(
            Settings(llm_provider="anthropic", anthropic_api_key="sk-test")
        )
        assert isinstance(provider, AnthropicProvider)


# ---------------------------------------------------------------------------
# Test: Stage Model Defaults
# ---------------------------------------------------------------------------


class TestStageModelDefaults:
    def test_openai_compatible_defaults(self):
        settings = Settings(llm_provider="openai_compatible")
        assert settings.classifier_model == "gpt-4.1-mini"
        assert settings.synthesizer_model == "gpt-4.1"

    def test_anthropic_gets_claude_models(self):
        settings = Settings(llm_provider="anthropic")
        assert settings.classifier_model == ANTHROPIC_STAGE_MODELS["classifier_model"]
        assert settings.expert_model == ANTHROPIC_STAGE_MODELS["expert_model"]
        assert settings.synthesizer_model == ANTHROPIC_STAGE_MODELS["synthesizer_model"]
        assert all(m.startswith("claude-") for m in ANTHROPIC_STAGE_MODELS.values())

    def test_explicit_model_is_kept(self):
        settings = Settings(llm_provider="anthropic", synthesizer_model="claude-opus-4-1")
        assert settings.synthesizer_model == "claude-opus-4-1"
        assert settings.classifier_model == ANTHROPIC_STAGE_MODELS["classifier_model"]

    def test_model_from_environment_is_kept(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "anthropic")
        monkeypatch.setenv("EXPERT_MODEL", "claude-custom")
        settings = Settings()
        assert settings.expert_model == "claude-custom"
        assert settings.synthesizer_model == ANTHROPIC_STAGE_MODELS["synthesizer_model"]

    def test_anthropic_provider_uses_claude_default(self):
        provider = AnthropicProvider(Settings(llm_provider="anthropic"), api_key="sk-test")
        assert provider._default_model == ANTHROPIC_STAGE_MODELS["synthesizer_model"]


# ---------------------------------------------------------------------------
# Test: Anthropic
# ---------------------------------------------------------------------------


def _anthropic(response) -> tuple[AnthropicProvider, AsyncMock]:
    provider = AnthropicProvider(Settings(), api_key="sk-test")
    create = AsyncMock(return_value=response)
    provider._client = MagicMock()
    provider._client.messages.create = create
    return provider, create


def _anthropic_response(*blocks):
    return SimpleNamespace(
        content=list(blocks),
        model="claude-test",
        usage=SimpleNamespace(input_tokens=11, output_tokens=7),
    )


class TestAnthropicProvider:
    def test_structured_call_forces_a_tool(self):
        provider, create = _anthropic(_anthropic_response(
            SimpleNamespace(type="tool_use", input={"claims": ["ok"]})
        ))
        response = _run(provider.complete_structured(
            messages=[{"role": "user", "content": "hi"}],
            schema=SCHEMA,
            schema_name="debt_strategist_analysis",
            system="Be precise.",
            model="claude-small",
            max_tokens=300,
        ))

        assert json.loads(response.content) == {"claims": ["ok"]}
        assert response.input_tokens == 11
        kwargs = create.await_args.kwargs
        assert kwargs["tool_choice"] == {
            "type": "tool", "name": "debt_strategist_analysis"
        }
        assert kwargs["tools"][0]["input_schema"] == SCHEMA
        assert kwargs["system"] == "Be precise."
        assert kwargs["model"] == "claude-small"
        assert kwargs["max_tokens"] == 300


# ---------------------------------------------------------------------------
# Test: OpenAI-Compatible
# ---------------------------------------------------------------------------


def _openai(create: AsyncMock) -> OpenAICompatibleProvider:
    provider = OpenAICompatibleProvider(Settings(), api_key="sk-test")
    provider._client = MagicMock()
    provider._client.chat.completions.create = create
    return provider


class TestOpenAICompatibleProvider:
    def test_structured_call_uses_strict_json_schema(self):
        create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"claims": []}'))],
            usage=SimpleNamespace(prompt_tokens=5, completion_tokens=3),
            model="gpt-test",
        ))
        provider = _openai(create)
        response = _run(provider.complete_structured(
            messages=[{"role": "user", "content": "hi"}],
            schema=SCHEMA,
            schema_name="question_classification",
            system="Classify.",
        ))

        assert response.content == '{"claims": []}'
        assert response.output_tokens == 3
        kwargs = create.await_args.kwargs
        assert kwargs["response_format"]["json_schema"]["strict"] is True
        assert kwargs["response_format"]["json_schema"]["schema"] == SCHEMA
        assert kwargs["messages"][0] == {"role": "system", "content": "Classify."}

    def test_stream_yields_text_deltas(self):
        async def chunks():
            for text in ["Hel", None, "lo"]:
                yield SimpleNamespace(
                    choices=[SimpleNamespace(delta=SimpleNamespace(content=text))]
                )
            yield SimpleNamespace(choices=[])

        provider = _openai(AsyncMock(return_value=chunks()))

        async def collect():
            return [
                t async for t in provider.stream([{"role": "user", "content": "hi"}])
            ]

        assert _run(collect()) == ["Hel", "lo"]
