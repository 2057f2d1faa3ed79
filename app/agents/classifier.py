# =============================================================================
# Classifier — Question Type + Emotional State
# =============================================================================
#
# One structured LLM call tags the question with a QuestionType and an
# EmotionalState. The router uses the tags to pick experts, and the
# synthesizer uses the emotional state to pick its tone.
#
# Only the snapshot TOTALS are sent, never the itemised lists, which keeps
# the request small and fast.
#
# FAILURE POLICY:
# Timeout, provider error, invalid JSON or a value outside either enum all
# raise ClassificationError. Nothing is defaulted, and nothing is retried.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
import json
import logging

from pydantic import BaseModel, ConfigDict, ValidationError

from app.agents.errors import ClassificationError
from app.services.llm import LLMProvider
from app.services.snapshot import SnapshotTotals

logger = logging.getLogger(__name__)

# Shown to the user; provider and parser details only go to the log
CLASSIFICATION_FAILED_MESSAGE = (
    "We couldn't work out what you're asking right now. Please try again."
)


class QuestionType(str, enum.Enum):
    LOOKUP = "lookup"                  # answerable with 1-2 numbers
    CALCULATION = "calculation"        # math, no judgment calls
    DIAGNOSIS = "diagnosis"            # needs expertise to interpret
    RECOMMENDATION = "recommendation"  # asks for advice/strategy
    GOAL_PLANNING = "goal_planning"    # long-horizon planning
    TAX = "tax"                        # tax topics
    COMPLEX = "complex"                # multi-faceted, full analysis


class EmotionalState(str, enum.Enum):
    ANXIOUS = "anxious"
    MOTIVATED = "motivated"
    DEFENSIVE = "defensive"
    CURIOUS = "curious"
    OVERWHELMED = "overwhelmed"


# Emotional states that route to the behavioral therapist
DISTRESSED_STATES = frozenset(
    {EmotionalState.ANXIOUS, EmotionalState.DEFENSIVE, EmotionalState.OVERWHELMED}
)


class Classification(BaseModel):
    """Routing tags assigned once per request. Read-only after creation."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    question_type: QuestionType
    emotional_state: EmotionalState
    follow_up_needed: bool = False


CLASSIFICATION_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "question_type": {
            "type": "string",
            "enum": [t.value for t in QuestionType],
        },
        "emotional_state": {
            "type": "string",
            "enum": [s.value for s in EmotionalState],
        },
        "follow_up_needed": {"type": "boolean"},
    },
    "required": ["question_type", "emotional_state", "follow_up_needed"],
    "additionalProperties": False,
}

CLASSIFIER_PROMPT = (
    "Classify the user's financial question. Reply with JSON only.\n\n"
    "question_type — pick exactly one:\n"
    "- lookup: can be answered with 1-2 numbers from the available data\n"
    "- calculation: requires math but no judgment calls\n"
    "- diagnosis: needs financial expertise to interpret\n"
    "- recommendation: asks for advice or strategy\n"
    "- goal_planning: needs a long-term view of finances to decide next steps\n"
    "- tax: about taxes, deductions, withholding or tax-advantaged accounts\n"
    "- complex: multi-faceted, none of the above fits alone\n\n"
    "emotional_state — pick exactly one: anxious, motivated, defensive, "
    "curious, overwhelmed.\n\n"
    "follow_up_needed — true if the question cannot be answered well without "
    "asking the user for more information."
)


def parse_classification(raw: str) -> Classification:
    """
    Parse classifier output text into a Classification.

    Raises:
        ClassificationError: Not JSON, not an object, or a tag outside
            its enumeration.
    """
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.error("Classifier returned invalid JSON: %s", e)
        raise ClassificationError(CLASSIFICATION_FAILED_MESSAGE) from e

    if not isinstance(payload, dict):
        logger.error("Classifier returned a non-object JSON value")
        raise ClassificationError(CLASSIFICATION_FAILED_MESSAGE)

    try:
        return Classification.model_validate(payload)
    except ValidationError as e:
        logger.error(
            "Classifier returned an invalid classification: %d field error(s)",
            e.error_count(),
        )
        raise ClassificationError(CLASSIFICATION_FAILED_MESSAGE) from e


async def classify_question(
    question: str,
    totals: SnapshotTotals,
    llm: LLMProvider,
    model: str | None = None,
    max_tokens: int | None = None,
    timeout: float | None = None,
) -> Classification:
    """
    Tag the question with a question type and emotional state.

    Args:
        question: The user's question.
        totals: Snapshot totals (the only financial data sent).
        llm: Provider used for the structured call.
        model: Model override for this stage.
        max_tokens: Output token budget.
        timeout: Deadline in seconds for the provider call.

    Raises:
        ClassificationError: On timeout, provider failure or invalid output.
    """
    user_message = (
        f'Question: "{question}"\n\n'
        f"Available data: {json.dumps(totals.to_payload())}"
    )

    try:
        response = await asyncio.wait_for(
            llm.complete_structured(
                messages=[{"role": "user", "content": user_message}],
                schema=CLASSIFICATION_SCHEMA,
                schema_name="question_classification",
                system=CLASSIFIER_PROMPT,
                model=model,
                max_tokens=max_tokens,
            ),
            timeout=timeout,
        )
    except TimeoutError as e:
        logger.error("Classifier timed out after %ss", timeout)
        raise ClassificationError(CLASSIFICATION_FAILED_MESSAGE) from e
    except ClassificationError:
        raise
    except Exception as e:
        logger.error("Classifier call failed: %s", e)
        raise ClassificationError(CLASSIFICATION_FAILED_MESSAGE) from e

    classification = parse_classification(response.content)
    logger.info(
        "Classified question: type=%s, emotion=%s, follow_up=%s",
        classification.question_type.value,
        classification.emotional_state.value,
        classification.follow_up_needed,
    )
    return classification
