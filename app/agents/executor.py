# =============================================================================
# Expert Executor — One Structured Call per Selected Expert
# =============================================================================
#
# For each expert:
#   1. Look up its instruction and property map in the registry
#   2. Wrap the map in a strict schema (all keys required, no extras)
#   3. Issue one structured-output request
#   4. Parse the JSON text and check the top-level keys exactly
#
# DEGRADATION:
# A malformed or failed expert never aborts the run. It yields a degraded
# ExpertResult instead (no claims, a risk note, lowest confidence), and the
# remaining experts and the synthesis carry on.
#
# CONCURRENCY:
# run_experts() starts every expert at once under a semaphore and waits for
# all of them ("wait for all", not "fail on first error"). Experts share no
# mutable state: each receives the same read-only snapshot and
# classification. Results come back in selection order.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from app.agents.classifier import Classification
from app.agents.errors import ExpertOutputError
from app.agents.experts import ExpertKind, build_output_schema, get_expert_spec
from app.services.llm import LLMProvider
from app.services.snapshot import FinancialSnapshot

logger = logging.getLogger(__name__)

ExpertCallback = Callable[[ExpertKind], Awaitable[None]]


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExpertResult:
    """Output of one expert. Never mutated after creation."""

    expert_id: ExpertKind
    data: dict[str, Any] = field(default_factory=dict)
    degraded: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "expertId": self.expert_id.value,
            "degraded": self.degraded,
            "data": self.data,
        }


def degraded_result(expert: ExpertKind, reason: str) -> ExpertResult:
    """Placeholder result for an expert whose output could not be used."""
    return ExpertResult(
        expert_id=expert,
        data={
            "claims": [],
            "risk_notes": [
                f"The {expert.value} analysis returned invalid output "
                f"and was excluded ({reason})."
            ],
            "confidence": "lowest",
        },
        degraded=True,
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_expert_output(
    expert: ExpertKind,
    raw: str,
    properties: dict[str, Any],
) -> dict[str, Any]:
    """
    Parse and check an expert's JSON text against its property map.

    Only the top-level shape is enforced here: an object with exactly the
    declared keys. Nested shapes are the provider's strict mode's job.

    Raises:
        ExpertOutputError: Invalid JSON, not an object, missing or extra keys.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise ExpertOutputError(expert.value, f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ExpertOutputError(expert.value, "output is not a JSON object")

    missing = [key for key in properties if key not in data]
    extra = [key for key in data if key not in properties]
    if missing:
        raise ExpertOutputError(expert.value, f"missing properties {missing}")
    if extra:
        raise ExpertOutputError(expert.value, f"undeclared properties {extra}")
    return data


def build_expert_message(
    question: str,
    classification: Classification,
    snapshot_payload: dict[str, Any],
) -> str:
    """User payload for an expert: question, classification, snapshot."""
    return "\n".join(
        [
            f"Question: {question}",
            "",
            f"Classification: {classification.model_dump_json()}",
            "",
            "Data to review:",
            json.dumps(snapshot_payload),
        ]
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def run_expert(
    expert: ExpertKind,
    question: str,
    classification: Classification,
    snapshot: FinancialSnapshot,
    llm: LLMProvider,
    model: str | None = None,
    max_tokens: int | None = None,
    snapshot_payload: dict[str, Any] | None = None,
) -> ExpertResult:
    """
    Run one expert and return its result, degraded if the output is unusable.

    Args:
        expert: Which expert to run. Must have an output schema.
        question: The user's question.
        classification: Routing tags for this request.
        snapshot: The account snapshot.
        llm: Provider for the structured call.
        model: Model override for the expert stage.
        max_tokens: Output token budget.
        snapshot_payload: Pre-rendered (e.g. compacted) snapshot; defaults to
            the full snapshot.

    Raises:
        ValueError: The expert is a free-text role with no schema.
    """
    spec = get_expert_spec(expert)
    if spec.output_properties is None:
        raise ValueError(
            f"Expert '{expert.value}' is free-text and cannot run as a "
            "structured expert"
        )

    schema = build_output_schema(spec.output_properties)
    payload = snapshot_payload if snapshot_payload is not None else snapshot.to_payload()

    try:
        response = await llm.complete_structured(
            messages=[
                {
                    "role": "user",
                    "content": build_expert_message(question, classification, payload),
                }
            ],
            schema=schema,
            schema_name=f"{expert.value}_analysis",
            system=(
                f"{spec.prompt}\n\n"
                "You must output your analysis in the specific JSON format provided."
            ),
            model=model,
            max_tokens=max_tokens,
        )
        data = parse_expert_output(expert, response.content, spec.output_properties)
    except ExpertOutputError as e:
        logger.warning("Expert output rejected: %s", e)
        return degraded_result(expert, e.reason)
    except Exception as e:
        logger.warning("Expert %s call failed: %s", expert.value, e)
        return degraded_result(expert, "the analysis call failed")

    logger.info("Expert %s complete (%d properties)", expert.value, len(data))
    return ExpertResult(expert_id=expert, data=data)


async def run_experts(
    experts: Sequence[ExpertKind],
    question: str,
    classification: Classification,
    snapshot: FinancialSnapshot,
    llm: LLMProvider,
    concurrency: int,
    model: str | None = None,
    max_tokens: int | None = None,
    snapshot_payload: dict[str, Any] | None = None,
    on_start: ExpertCallback | None = None,
    on_complete: Callable[[ExpertResult], Awaitable[None]] | None = None,
) -> list[ExpertResult]:
    """
    Run all selected experts concurrently and wait for every one of them.

    `on_start` fires just before an expert's call, `on_complete` just after
    it settles, so each expert's start always precedes its own complete.
    Across experts the callbacks may interleave.

    Returns:
        One ExpertResult per expert, in the order given.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _one(expert: ExpertKind) -> ExpertResult:
        async with semaphore:
            if on_start is not None:
                await on_start(expert)
            result = await run_expert(
                expert,
                question=question,
                classification=classification,
                snapshot=snapshot,
                llm=llm,
                model=model,
                max_tokens=max_tokens,
                snapshot_payload=snapshot_payload,
            )
            if on_complete is not None:
                await on_complete(result)
            return result

    results = await asyncio.gather(*(_one(expert) for expert in experts))

    degraded = sum(1 for r in results if r.degraded)
    logger.info(
        "Experts settled: %d total, %d degraded", len(results), degraded
    )
    return list(results)
