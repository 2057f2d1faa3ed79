# =============================================================================
# Expert Registry — Instructions and Output Schemas per Expert Kind
# =============================================================================
#
# Every specialist the router can select is a member of the closed
# ExpertKind enum. Each kind maps to exactly one ExpertSpec holding:
#   - the system instruction
#   - the top-level property map of its output (None for free-text roles)
#   - the status messages shown to the user while it runs
#
# Adding or removing an expert means editing ExpertKind AND _REGISTRY; the
# completeness check at the bottom of this module fails the import if the
# two drift apart.
#
# EXPERTS:
#   financial_analyst     — metrics, health score, risks (always runs)
#   behavioral_economist  — spending psychology, persuasion strategy
#   behavioral_therapist  — emotional drivers, habit loops (triage)
#   debt_strategist       — payoff strategies, refinancing
#   tax_optimizer         — tax-saving moves and deadlines
#   goal_architect        — milestone roadmap
#   persuasion_coach      — free text; only used by the synthesizer
# =============================================================================

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class ExpertKind(str, enum.Enum):
    """Closed set of expert identifiers."""

    FINANCIAL_ANALYST = "financial_analyst"
    BEHAVIORAL_ECONOMIST = "behavioral_economist"
    BEHAVIORAL_THERAPIST = "behavioral_therapist"
    DEBT_STRATEGIST = "debt_strategist"
    TAX_OPTIMIZER = "tax_optimizer"
    GOAL_ARCHITECT = "goal_architect"
    PERSUASION_COACH = "persuasion_coach"


@dataclass(frozen=True)
class ExpertSpec:
    """Instruction, output schema and user-facing labels for one expert."""

    kind: ExpertKind
    prompt: str
    output_properties: dict[str, Any] | None
    start_message: str
    complete_message: str

    @property
    def is_structured(self) -> bool:
        return self.output_properties is not None


def build_output_schema(properties: dict[str, Any]) -> dict[str, Any]:
    """
    Wrap a property map into a strict object schema.

    Every declared top-level property is required and nothing else is
    allowed, which is what strict structured-output modes demand.
    """
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


def _obj(**properties: Any) -> dict[str, Any]:
    """Strict nested object schema."""
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": properties,
        "required": list(properties),
    }


def _array(items: dict[str, Any]) -> dict[str, Any]:
    return {"type": "array", "items": items}


_STR = {"type": "string"}
_NUM = {"type": "number"}
_LEVEL = {"type": "string", "enum": ["low", "medium", "high"]}


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

FINANCIAL_ANALYST_PROMPT = """\
You are a CFA who analyzes personal finances with brutal honesty.

Given the user's financial snapshot:
1. Calculate key metrics (savings rate, debt-to-income, net worth trajectory)
2. Identify financial health score (0-100)
3. Flag top 3 risks (e.g., "no emergency fund", "high housing cost")
4. Spot opportunities (e.g., "can max 401k with current cashflow")
5. Note missing data that would improve analysis

Output pure facts and math. No sugarcoating, no motivational language.
Use the provided data as truth; do not invent numbers."""

BEHAVIORAL_ECONOMIST_PROMPT = """\
You are a behavioral economist specializing in personal finance.

Analyze the user's:
- Spending patterns (impulsive? seasonal?)
- Question phrasing (confident? shame-laden?)
- Financial situation vs. actions (are they self-sabotaging?)

Diagnose behavioral issues:
- Present bias ("I'll save next month")
- Lifestyle inflation
- Loss aversion (holding bad investments)
- Social spending pressure
- Financial avoidance

For each diagnosis, estimate severity (1-10), a root cause hypothesis and
the intervention style most likely to work."""

BEHAVIORAL_THERAPIST_PROMPT = """\
You are a behavioral therapist specializing in money-related behavior.

Your job is NOT to give financial advice. Your job is to analyze the
psychological and behavioral patterns driving the user's financial situation.

Focus on:
1. Emotional drivers of spending/saving (anxiety, avoidance, reward-seeking, control)
2. Cognitive distortions around money (scarcity mindset, all-or-nothing thinking)
3. Habit loops (trigger -> behavior -> reward) that explain current outcomes
4. Friction and environment design (defaults, automation, temptation exposure)
5. Sustainable behavior change (small, identity-aligned shifts, not willpower)

Use compassionate, non-judgmental framing. Prefer high-leverage changes that
reduce cognitive load. Avoid shaming, moralizing and vague platitudes."""

DEBT_STRATEGIST_PROMPT = """\
You are a debt specialist. Analyze the user's liabilities:

1. Calculate payoff timelines (avalanche vs. snowball)
2. Identify consolidation opportunities
3. Model extra payment scenarios
4. Flag predatory debt (payday loans, high-interest cards)

Output both mathematically optimal AND psychologically optimal strategies."""

TAX_OPTIMIZER_PROMPT = """\
You are a CPA specializing in tax optimization for individuals.

Given the user's income, investments, and spending:
1. Identify tax-saving opportunities (401k, HSA, tax-loss harvesting)
2. Calculate tax burden and effective rate
3. Project tax savings from recommended moves
4. Flag tax risks (underwithholding, estimated tax penalties)

Always quantify: "Maxing your 401k would save you $X in taxes this year." """

GOAL_ARCHITECT_PROMPT = """\
You are a CFP building a financial plan from the user's question and
financial snapshot.

Build a step-by-step roadmap:
1. Milestone timeline (emergency fund -> debt payoff -> retirement -> home)
2. Monthly action plan
3. Automated systems to implement
4. Progress tracking metrics
5. Contingency plans ("if I lose my job...")

Make it concrete: "Month 1: Set up auto-transfer of $500 to HYSA." """

PERSUASION_COACH_PROMPT = """\
You are a master communicator for financial coaching.

You receive the user's question and emotional state, the financial snapshot,
and detailed analysis notes (facts, risks, opportunities, behavioral notes).

Craft a response that:
1. Answers the question directly (don't bury the lede)
2. Mirrors the user's tone and language
3. Applies the recommended persuasion strategy when one is given
4. Builds self-efficacy ("you CAN do this")
5. Provides ONE clear next action (not 10)

Anchor the response in the user's actual numbers. Always end with a
specific, small win they can achieve TODAY.

Do NOT shame the user, use unexplained jargon, create decision paralysis,
or sound like a corporate blog."""


# ---------------------------------------------------------------------------
# Output Property Maps
# ---------------------------------------------------------------------------

FINANCIAL_ANALYST_PROPERTIES: dict[str, Any] = {
    "health_score": _NUM,
    "key_metrics": _obj(
        savings_rate=_NUM,
        months_of_runway=_NUM,
        debt_to_income=_NUM,
        net_worth_velocity=_NUM,
    ),
    "risks": _array(_obj(severity=_LEVEL, issue=_STR, impact=_STR)),
    "opportunities": _array(_obj(potential_gain=_NUM, action=_STR, effort=_STR)),
    "data_gaps": _array(_STR),
}

BEHAVIORAL_ECONOMIST_PROPERTIES: dict[str, Any] = {
    "patterns": _array(
        _obj(behavior=_STR, severity=_NUM, evidence=_STR, likely_cause=_STR)
    ),
    "persuasion_strategy": {
        "type": "string",
        "enum": ["logic", "emotion", "social_proof", "loss_framing", "identity"],
    },
    "adherence_prediction": _NUM,
    "friction_points": _array(_STR),
}

BEHAVIORAL_THERAPIST_PROPERTIES: dict[str, Any] = {
    "emotional_drivers": _array(
        _obj(driver=_STR, evidence=_STR, impact_level=_LEVEL)
    ),
    "cognitive_patterns": _array(_obj(pattern=_STR, example=_STR, reframe=_STR)),
    "habit_loops": _array(
        _obj(trigger=_STR, behavior=_STR, reward=_STR, interruption_point=_STR)
    ),
    "behavioral_risks": _array(_obj(risk=_STR, likelihood=_LEVEL, mitigation=_STR)),
    "recommended_interventions": _array(
        _obj(
            intervention=_STR,
            mechanism=_STR,
            effort_level=_LEVEL,
            expected_impact=_LEVEL,
        )
    ),
    "therapist_notes": _obj(
        overall_pattern_summary=_STR,
        readiness_for_change=_LEVEL,
    ),
}

DEBT_STRATEGIST_PROPERTIES: dict[str, Any] = {
    "total_interest_paid_current_path": _NUM,
    "strategies": _array(
        _obj(
            name={"type": "string", "enum": ["avalanche", "snowball", "hybrid"]},
            total_interest_saved=_NUM,
            payoff_date=_STR,
            psychological_wins=_NUM,
        )
    ),
    "emergency_refinance_opportunities": _array(
        _obj(creditor=_STR, potential_savings=_NUM)
    ),
}

TAX_OPTIMIZER_PROPERTIES: dict[str, Any] = {
    "current_effective_rate": _NUM,
    "optimization_opportunities": _array(
        _obj(
            action=_STR,
            annual_tax_savings=_NUM,
            effort_level={"type": "string", "enum": ["easy", "medium", "complex"]},
        )
    ),
    "deadline_actions": _array(_obj(action=_STR, deadline=_STR, savings=_NUM)),
}

GOAL_ARCHITECT_PROPERTIES: dict[str, Any] = {
    "timeline": _array(
        _obj(
            milestone=_STR,
            target_date=_STR,
            monthly_savings_required=_NUM,
            completion_criteria=_STR,
        )
    ),
    "month_1_actions": _array(_obj(action=_STR, time_required=_STR)),
    "automation_setup": _array(_obj(system=_STR, benefit=_STR)),
    "tracking_dashboard": _obj(metrics=_array(_STR)),
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_REGISTRY: dict[ExpertKind, ExpertSpec] = {
    ExpertKind.FINANCIAL_ANALYST: ExpertSpec(
        kind=ExpertKind.FINANCIAL_ANALYST,
        prompt=FINANCIAL_ANALYST_PROMPT,
        output_properties=FINANCIAL_ANALYST_PROPERTIES,
        start_message="🔍 Our financial analyst is reviewing your assets, income and spending...",
        complete_message="✅ Financial analysis complete",
    ),
    ExpertKind.BEHAVIORAL_ECONOMIST: ExpertSpec(
        kind=ExpertKind.BEHAVIORAL_ECONOMIST,
        prompt=BEHAVIORAL_ECONOMIST_PROMPT,
        output_properties=BEHAVIORAL_ECONOMIST_PROPERTIES,
        start_message="💡 Our behavioral economist is looking at your spending patterns...",
        complete_message="✅ Behavioral analysis complete",
    ),
    ExpertKind.BEHAVIORAL_THERAPIST: ExpertSpec(
        kind=ExpertKind.BEHAVIORAL_THERAPIST,
        prompt=BEHAVIORAL_THERAPIST_PROMPT,
        output_properties=BEHAVIORAL_THERAPIST_PROPERTIES,
        start_message="🧠 Our behavioral specialist is thinking through what drives your money habits...",
        complete_message="✅ Behavioral coaching complete",
    ),
    ExpertKind.DEBT_STRATEGIST: ExpertSpec(
        kind=ExpertKind.DEBT_STRATEGIST,
        prompt=DEBT_STRATEGIST_PROMPT,
        output_properties=DEBT_STRATEGIST_PROPERTIES,
        start_message="💳 Our debt strategist is modelling your payoff options...",
        complete_message="✅ Debt strategy complete",
    ),
    ExpertKind.TAX_OPTIMIZER: ExpertSpec(
        kind=ExpertKind.TAX_OPTIMIZER,
        prompt=TAX_OPTIMIZER_PROMPT,
        output_properties=TAX_OPTIMIZER_PROPERTIES,
        start_message="🧾 Our tax specialist is checking for savings...",
        complete_message="✅ Tax review complete",
    ),
    ExpertKind.GOAL_ARCHITECT: ExpertSpec(
        kind=ExpertKind.GOAL_ARCHITECT,
        prompt=GOAL_ARCHITECT_PROMPT,
        output_properties=GOAL_ARCHITECT_PROPERTIES,
        start_message="🗺️ Our planner is mapping out your milestones...",
        complete_message="✅ Goal plan complete",
    ),
    ExpertKind.PERSUASION_COACH: ExpertSpec(
        kind=ExpertKind.PERSUASION_COACH,
        prompt=PERSUASION_COACH_PROMPT,
        output_properties=None,
        start_message="✍️ Lastly, we're putting our findings together for you...",
        complete_message="✅ Response ready",
    ),
}


def get_expert_spec(kind: ExpertKind | str) -> ExpertSpec:
    """
    Return the spec for an expert kind.

    Accepts the enum member or its string value.

    Raises:
        ValueError: The identifier is not a known expert.
    """
    try:
        return _REGISTRY[ExpertKind(kind)]
    except ValueError:
        raise ValueError(f"Unknown expert '{kind}'") from None


_missing = set(ExpertKind) - set(_REGISTRY)
if _missing:
    raise RuntimeError(
        f"Expert registry is missing specs for: {sorted(k.value for k in _missing)}"
    )
