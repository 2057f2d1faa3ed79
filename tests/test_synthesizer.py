# =============================================================================
# Unit Tests — Synthesizer and AnswerStream
# =============================================================================

from __future__ import annotations

import asyncio

import pytest

from app.agents.classifier import Classification, EmotionalState, QuestionType
from app.agents.errors import StreamError
from app.agents.executor import ExpertResult, degraded_result
from app.agents.experts import ExpertKind
from app.agents.synthesizer import (
    STREAM_FAILED_MESSAGE,
    TONE_RULES,
    AnswerStream,
    build_system_prompt,
    build_user_message,
    synthesize,
)
from fakes import FakeLLM, sample_snapshot


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


async def _source(*fragments, error=None):
    for fragment in fragments:
        yield fragment
    if error is not None:
        raise error


async def _collect(stream: AnswerStream) -> list[str]:
    return [fragment async for fragment in stream]


# ---------------------------------------------------------------------------
# Test: Prompts
# ---------------------------------------------------------------------------


class TestSystemPrompt:
    def test_every_emotional_state_has_a_tone(self):
        assert set(TONE_RULES) == set(EmotionalState)

    def test_anxious_gets_reassurance(self):
        prompt = build_system_prompt(EmotionalState.ANXIOUS)
        assert "reassurance" in prompt
        assert "ONE thing" in prompt

    def test_motivated_gets_plan_first(self):
        assert "plan" in build_system_prompt(EmotionalState.MOTIVATED)

    def test_defensive_is_neutral(self):
        assert "many people" in build_system_prompt(EmotionalState.DEFENSIVE)

    def test_confidentiality_rule_present(self):
        prompt = build_system_prompt(EmotionalState.CURIOUS)
        assert "Never mention experts" in prompt


class TestUserMessage:
    def test_contains_data_and_notes(self):
        classification = Classification(
            question_type=QuestionType.RECOMMENDATION,
            emotional_state=EmotionalState.ANXIOUS,
        )
        results = [
            ExpertResult(ExpertKind.FINANCIAL_ANALYST, {"health_score": 62}),
            degraded_result(ExpertKind.DEBT_STRATEGIST, "invalid JSON"),
        ]
        message = build_user_message(
            sample_snapshot(), "Should I pay off my card?", classification, results
        )
        assert "Should I pay off my card?" in message
        assert "health_score" in message
        assert "debt_strategist" in message
        assert "totalLiabilities" in message


# ---------------------------------------------------------------------------
# Test: AnswerStream
# ---------------------------------------------------------------------------


class TestAnswerStream:
    def test_iterates_fragments_and_accumulates(self):
        stream = AnswerStream(_source("Hello", ", ", "world"))
        assert _run(_collect(stream)) == ["Hello", ", ", "world"]
        assert stream.text == "Hello, world"
        assert stream.finished

    def test_next_fragment_returns_none_at_end(self):
        async def pull():
            stream = AnswerStream(_source("a"))
            return [await stream.next_fragment() for _ in range(3)]

        assert _run(pull()) == ["a", None, None]

    def test_empty_stream(self):
        stream = AnswerStream(_source())
        assert _run(_collect(stream)) == []
        assert stream.text == ""

    def test_single_use(self):
        async def twice():
            stream = AnswerStream(_source("a", "b"))
            await _collect(stream)
            await _collect(stream)

        with pytest.raises(RuntimeError):
            _run(twice())

    def test_text_keeps_fragment_whitespace(self):
        stream = AnswerStream(_source("\n", "Pay the card first. ", "\n"))
        fragments = _run(_collect(stream))
        assert stream.text == "".join(fragments)
        assert stream.text == "\nPay the card first. \n"

    def test_provider_failure_is_stream_error(self):
        async def consume():
            stream = AnswerStream(_source(
                "partial ",
                error=ConnectionError("upstream 500 from https://internal-proxy:8443"),
            ))
            seen = []
            with pytest.raises(StreamError) as exc_info:
                async for fragment in stream:
                    seen.append(fragment)
            return seen, stream, exc_info.value

        seen, stream, error = _run(consume())
        assert seen == ["partial "]
        assert stream.finished
        assert str(error) == STREAM_FAILED_MESSAGE
        assert "internal-proxy" not in str(error)

    def test_aclose_ends_stream(self):
        async def scenario():
            stream = AnswerStream(_source("a", "b", "c"))
            first = await stream.next_fragment()
            await stream.aclose()
            return first, await stream.next_fragment()

        assert _run(scenario()) == ("a", None)


class TestSynthesize:
    def test_lazy_until_first_pull(self):
        llm = FakeLLM(fragments=("One ", "step."))
        classification = Classification(
            question_type=QuestionType.LOOKUP,
            emotional_state=EmotionalState.OVERWHELMED,
        )

        async def scenario():
            stream = synthesize(sample_snapshot(), "q", classification, [], llm,
                                model="big-model")
            before = len(llm.stream_calls)
            fragments = await _collect(stream)
            return before, fragments, stream.text

        before, fragments, text = _run(scenario())
        assert before == 0
        assert fragments == ["One ", "step."]
        assert text == "One step."
        assert llm.stream_calls[0]["model"] == "big-model"
        assert "reassurance" in llm.stream_calls[0]["system"]
