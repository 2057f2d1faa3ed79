# =============================================================================
# Synthesizer — Final Answer as a Lazy Token Stream
# =============================================================================
#
# Consumes the snapshot, the question, the classification and every
# ExpertResult, and produces the user-facing answer as an AnswerStream.
#
# TONE BY EMOTIONAL STATE:
#   anxious / overwhelmed → reassurance first, then ONE simple step
#   motivated             → plan first, channel the energy into action
#   defensive / curious   → neutral and comparative, facts over "you"
#
# The prompt forbids any mention of the upstream experts, agents or
# schemas. The reader only ever sees one voice.
#
# ANSWERSTREAM:
# A finite, forward-only, single-use sequence of text fragments. It can be
# consumed by pulling (`next_fragment()`, which returns None as the explicit
# end-of-stream marker) or by `async for`. It cannot be restarted or
# resumed: a second iteration raises RuntimeError.
# =============================================================================

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence

from app.agents.classifier import Classification, EmotionalState
from app.agents.errors import StreamError
from app.agents.executor import ExpertResult
from app.agents.experts import ExpertKind, get_expert_spec
from app.services.llm import LLMProvider
from app.services.snapshot import FinancialSnapshot

logger = logging.getLogger(__name__)

STREAM_FAILED_MESSAGE = "The answer was interrupted before it finished. Please try again."


# ---------------------------------------------------------------------------
# Tone Rules
# ---------------------------------------------------------------------------

_REASSURANCE_FIRST = (
    "Lead with reassurance: acknowledge the feeling and say what is going "
    "well before anything else. Simplify to ONE thing they should do next."
)
_PLAN_FIRST = (
    "Lead with the plan: open with the headline move and channel their "
    "motivation into concrete, ordered steps."
)
_NEUTRAL_COMPARATIVE = (
    "Stay neutral and comparative: use \"you\" less and \"many people\" "
    "more, present options side by side with their numbers, and let the "
    "facts carry the argument."
)

TONE_RULES: dict[EmotionalState, str] = {
    EmotionalState.ANXIOUS: _REASSURANCE_FIRST,
    EmotionalState.OVERWHELMED: _REASSURANCE_FIRST,
    EmotionalState.MOTIVATED: _PLAN_FIRST,
    EmotionalState.DEFENSIVE: _NEUTRAL_COMPARATIVE,
    EmotionalState.CURIOUS: _NEUTRAL_COMPARATIVE,
}

_CONFIDENTIALITY_RULE = (
    "Never mention experts, specialists, agents, analysis notes, JSON, "
    "schemas or any internal process. Write as a single advisor speaking "
    "directly to the user."
)

_FORMAT_RULES = (
    "Format: start with a 1-2 sentence headline summary, then short "
    "sections with headings and bullets. Reference specific numbers from "
    "the data. Ignore any note marked as excluded."
)


def build_system_prompt(emotional_state: EmotionalState) -> str:
    """Persuasion-coach instruction plus tone, format and confidentiality."""
    coach = get_expert_spec(ExpertKind.PERSUASION_COACH)
    return "\n\n".join(
        [
            coach.prompt,
            f"Tone: {TONE_RULES[emotional_state]}",
            _FORMAT_RULES,
            _CONFIDENTIALITY_RULE,
        ]
    )


def build_user_message(
    snapshot: FinancialSnapshot,
    question: str,
    classification: Classification,
    results: Sequence[ExpertResult],
) -> str:
    """Everything the synthesizer needs, as labelled sections."""
    notes = {r.expert_id.value: r.data for r in results}
    return "\n".join(
        [
            f"User question: {question}",
            "",
            f"Classification: {classification.model_dump_json()}",
            "",
            "=== KEY FINANCIAL DATA ===",
            json.dumps(snapshot.to_payload()),
            "",
            "=== ANALYSIS NOTES ===",
            json.dumps(notes),
            "",
            "Now write the final user-facing response.",
        ]
    )


# ---------------------------------------------------------------------------
# AnswerStream
# ---------------------------------------------------------------------------


class AnswerStream:
    """
    Single-use lazy sequence of answer fragments.

    Wraps a provider token iterator. Nothing is requested from the provider
    until the first fragment is pulled. Provider failures surface as
    StreamError; the accumulated text is available as `text`.
    """

    def __init__(self, source: AsyncIterator[str]) -> None:
        self._source = source
        self._parts: list[str] = []
        self._started = False
        self._finished = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def finished(self) -> bool:
        return self._finished

    async def next_fragment(self) -> str | None:
        """
        Pull the next fragment, or None once the stream has ended.

        Raises:
            StreamError: The provider stream failed.
        """
        self._started = True
        if self._finished:
            return None
        try:
            fragment = await anext(self._source)
        except StopAsyncIteration:
            self._finished = True
            return None
        except Exception as e:
            self._finished = True
            await self.aclose()
            logger.error("Answer stream failed: %s", e)
            raise StreamError(STREAM_FAILED_MESSAGE) from e
        self._parts.append(fragment)
        return fragment

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("AnswerStream can only be consumed once")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        while True:
            fragment = await self.next_fragment()
            if fragment is None:
                return
            yield fragment

    async def aclose(self) -> None:
        """Release the underlying provider stream early."""
        self._finished = True
        close = getattr(self._source, "aclose", None)
        if close is not None:
            try:
                await close()
            except RuntimeError:
                # already running/closed generator
                pass


def synthesize(
    snapshot: FinancialSnapshot,
    question: str,
    classification: Classification,
    results: Sequence[ExpertResult],
    llm: LLMProvider,
    model: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> AnswerStream:
    """
    Prepare the final answer stream.

    Returns immediately; the provider request starts on the first pull.
    """
    logger.info(
        "Synthesizer preparing answer: emotion=%s, expert_results=%d",
        classification.emotional_state.value,
        len(results),
    )
    source = llm.stream(
        messages=[
            {
                "role": "user",
                "content": build_user_message(
                    snapshot, question, classification, results
                ),
            }
        ],
        system=build_system_prompt(classification.emotional_state),
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    return AnswerStream(source)
