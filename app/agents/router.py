# =============================================================================
# Router — Classification + Snapshot → Expert Selection
# =============================================================================
#
# Pure and deterministic: no I/O, no randomness. The same Classification and
# FinancialSnapshot always produce the same selection, in the same order.
#
# RULES (evaluated in order, every match applies):
#   1. financial_analyst always
#   2. question_type == recommendation        → behavioral_economist
#   3. emotional_state anxious/defensive/
#      overwhelmed                            → behavioral_therapist
#   4. total liabilities > 0                  → debt_strategist
#   5. question_type == tax                   → tax_optimizer
#   6. question_type == goal_planning         → goal_architect
#
# The result is deduplicated keeping first-seen order, then truncated to
# `max_experts`, so experts added by later rules are dropped first.
# =============================================================================

from __future__ import annotations

import logging

from app.agents.classifier import DISTRESSED_STATES, Classification, QuestionType
from app.agents.experts import ExpertKind, get_expert_spec
from app.services.snapshot import FinancialSnapshot

logger = logging.getLogger(__name__)


def route_to_experts(
    classification: Classification,
    snapshot: FinancialSnapshot,
    max_experts: int,
) -> tuple[ExpertKind, ...]:
    """
    Select the experts to run for this request.

    Returns:
        Ordered, duplicate-free tuple of 1..max_experts expert kinds.

    Raises:
        ValueError: max_experts is less than 1.
    """
    if max_experts < 1:
        raise ValueError("max_experts must be at least 1")

    candidates: list[ExpertKind] = [ExpertKind.FINANCIAL_ANALYST]

    if classification.question_type == QuestionType.RECOMMENDATION:
        candidates.append(ExpertKind.BEHAVIORAL_ECONOMIST)

    if classification.emotional_state in DISTRESSED_STATES:
        candidates.append(ExpertKind.BEHAVIORAL_THERAPIST)

    if snapshot.totals.total_liabilities > 0:
        candidates.append(ExpertKind.DEBT_STRATEGIST)

    if classification.question_type == QuestionType.TAX:
        candidates.append(ExpertKind.TAX_OPTIMIZER)

    if classification.question_type == QuestionType.GOAL_PLANNING:
        candidates.append(ExpertKind.GOAL_ARCHITECT)

    selection = tuple(dict.fromkeys(candidates))
    dropped = selection[max_experts:]
    selection = selection[:max_experts]

    # Every selected expert must be runnable through the structured path
    for kind in selection:
        if not get_expert_spec(kind).is_structured:
            raise ValueError(f"Expert '{kind.value}' has no output schema")

    if dropped:
        logger.info(
            "Expert cap %d reached, dropped: %s",
            max_experts,
            [k.value for k in dropped],
        )
    logger.info("Routed to experts: %s", [k.value for k in selection])
    return selection
