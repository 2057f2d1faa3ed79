# =============================================================================
# Budget Check — Rule-of-Thumb Language from a Snapshot
# =============================================================================
#
# A cheap, deterministic read of the monthly budget that needs no LLM:
#   - housing share of income above 30% is flagged
#   - fixed-cost share of income above 65% is flagged
#
# Housing = fixed costs in the Mortgage, HOA Fees or Utilities categories.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass

from app.services.snapshot import FinancialSnapshot

HOUSING_CATEGORIES = frozenset({"Mortgage", "HOA Fees", "Utilities"})
HOUSING_SHARE_LIMIT = 0.30
FIXED_COST_SHARE_LIMIT = 0.65

MORE_INFO = "You can read more about the 50/30/20 rule here"


@dataclass(frozen=True)
class BudgetCheck:
    housing: str
    fixed_costs: str
    more: str
    housing_share: float | None
    fixed_cost_share: float | None


def check_budget(snapshot: FinancialSnapshot) -> BudgetCheck:
    """
    Compare housing and total fixed costs against monthly income.

    With no income on record the shares are undefined; both are reported
    as None and the language says so instead of dividing by zero.
    """
    housing = sum(
        c.amount for c in snapshot.fixed_costs if c.category in HOUSING_CATEGORIES
    )
    fixed = snapshot.totals.total_fixed_costs
    income = snapshot.totals.total_monthly_income

    if income <= 0:
        missing = "Add your income to see how this compares to what you earn."
        return BudgetCheck(
            housing=missing,
            fixed_costs=missing,
            more=MORE_INFO,
            housing_share=None,
            fixed_cost_share=None,
        )

    housing_share = housing / income
    fixed_share = fixed / income

    if housing_share > HOUSING_SHARE_LIMIT:
        housing_text = (
            "You are spending too much on housing, this is a major expense "
            "and you should watch it intensely."
        )
    else:
        housing_text = "You are doing well on housing expense!"

    if fixed_share > FIXED_COST_SHARE_LIMIT:
        fixed_text = (
            "This is too high! You are taking on major risk of spending too "
            "much of your money."
        )
    else:
        fixed_text = (
            "Your fixed costs are in check, but make sure you put the left "
            "over money into savings!"
        )

    return BudgetCheck(
        housing=housing_text,
        fixed_costs=fixed_text,
        more=MORE_INFO,
        housing_share=housing_share,
        fixed_cost_share=fixed_share,
    )
