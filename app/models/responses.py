# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# JSON responses of the non-streaming endpoints. The streaming endpoint's
# frames are defined in app/models/events.py.
# =============================================================================

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class ErrorResponse(BaseModel):
    """Body of a rejected request (HTTP 4xx/5xx before streaming starts)."""

    error: str


class FixedCostOut(BaseModel):
    name: str
    category: str
    amount: float


class IncomeOut(BaseModel):
    source: str
    monthly_amount: float = Field(serialization_alias="monthlyAmount")


class LineItemOut(BaseModel):
    name: str
    category: str
    value: float


class TotalsOut(BaseModel):
    total_fixed_costs: float = Field(serialization_alias="totalFixedCosts")
    total_monthly_income: float = Field(serialization_alias="totalMonthlyIncome")
    total_assets: float = Field(serialization_alias="totalAssets")
    total_liabilities: float = Field(serialization_alias="totalLiabilities")
    total_spending: float = Field(serialization_alias="totalSpending")
    net_worth_approx: float = Field(serialization_alias="netWorthApprox")
    monthly_cashflow_approx: float = Field(
        serialization_alias="monthlyCashflowApprox"
    )


class SnapshotResponse(BaseModel):
    """Response for GET /accounts/{account_id}/snapshot."""

    account_id: str = Field(serialization_alias="accountId")
    fixed_costs: list[FixedCostOut] = Field(serialization_alias="fixedCosts")
    incomes: list[IncomeOut]
    assets: list[LineItemOut]
    liabilities: list[LineItemOut]
    spending: list[LineItemOut]
    totals: TotalsOut


class BudgetResponse(BaseModel):
    """Response for GET /accounts/{account_id}/budget."""

    housing: str
    fixed_costs: str = Field(serialization_alias="fixedCosts")
    more: str
    housing_share: float | None = Field(serialization_alias="housingShare")
    fixed_cost_share: float | None = Field(serialization_alias="fixedCostShare")
