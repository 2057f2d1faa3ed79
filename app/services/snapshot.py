# =============================================================================
# Financial Snapshot — Normalised Per-Account Aggregate
# =============================================================================
#
# Turns the raw financial records of one account into an immutable
# FinancialSnapshot: itemised lists plus derived totals.
#
# INVARIANTS:
# - Totals are ALWAYS computed by build_snapshot() from the itemised lists.
#   There is no way to construct SnapshotTotals from outside values and
#   attach them to different line items.
# - Negative, missing, None or non-numeric amounts coerce to 0.0.
# - Incomes are normalised to a monthly amount from their pay frequency.
#
# ARCHITECTURE:
#   SnapshotProvider (Protocol)
#   ├── SqlSnapshotProvider   — reads the five record tables via SQLAlchemy
#   └── build_snapshot()      — pure aggregation, shared by every provider
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.agents.errors import DataAccessError
from app.db import models

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Income Normalisation
# ---------------------------------------------------------------------------
# Pay frequency labels as they appear in the incomes table. Each maps a
# per-period amount to a monthly amount.
# ---------------------------------------------------------------------------

FREQUENCY_TO_MONTHLY: dict[str, float] = {
    "Every 2 Weeks": 26 / 12,
    "15th And 30th": 2.0,
    "Weekly": 52 / 12,
    "Monthly": 1.0,
}


def to_amount(value: Any) -> float:
    """Coerce a nullable DB/JSON value to a non-negative float."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0.0
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0.0
    return float(value) if value > 0 else 0.0


def normalize_monthly_income(amount: Any, frequency: str | None) -> float:
    """
    Convert a per-period income amount to a monthly amount.

    Unknown or missing frequencies yield 0.0 rather than a guess.
    """
    numeric = to_amount(amount)
    if not numeric or not frequency:
        return 0.0
    multiplier = FREQUENCY_TO_MONTHLY.get(frequency)
    if multiplier is None:
        return 0.0
    return numeric * multiplier


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FixedCost:
    name: str
    category: str
    amount: float


@dataclass(frozen=True)
class IncomeStream:
    source: str
    monthly_amount: float


@dataclass(frozen=True)
class LineItem:
    """An asset, liability or spending aggregate."""

    name: str
    category: str
    value: float


@dataclass(frozen=True)
class SnapshotTotals:
    total_fixed_costs: float
    total_monthly_income: float
    total_assets: float
    total_liabilities: float
    total_spending: float
    net_worth_approx: float
    monthly_cashflow_approx: float

    def to_payload(self) -> dict[str, float]:
        """camelCase rendering used in prompts and API responses."""
        return {
            "totalFixedCosts": self.total_fixed_costs,
            "totalMonthlyIncome": self.total_monthly_income,
            "totalAssets": self.total_assets,
            "totalLiabilities": self.total_liabilities,
            "totalSpending": self.total_spending,
            "netWorthApprox": self.net_worth_approx,
            "monthlyCashflowApprox": self.monthly_cashflow_approx,
        }


@dataclass(frozen=True)
class FinancialSnapshot:
    """
    Immutable per-request view of one account's finances.

    Build it with build_snapshot(); the totals are derived there and
    nowhere else.
    """

    fixed_costs: tuple[FixedCost, ...]
    incomes: tuple[IncomeStream, ...]
    assets: tuple[LineItem, ...]
    liabilities: tuple[LineItem, ...]
    spending: tuple[LineItem, ...]
    totals: SnapshotTotals

    def to_payload(self) -> dict[str, Any]:
        """Full camelCase rendering of the snapshot."""
        return {
            "fixedCosts": [
                {"name": c.name, "category": c.category, "amount": c.amount}
                for c in self.fixed_costs
            ],
            "incomes": [
                {"source": i.source, "monthlyAmount": i.monthly_amount}
                for i in self.incomes
            ],
            "assets": [_item_payload(a) for a in self.assets],
            "liabilities": [_item_payload(item) for item in self.liabilities],
            "spending": [_item_payload(s) for s in self.spending],
            "totals": self.totals.to_payload(),
        }

    def compact(
        self,
        fixed_costs_top_n: int = 15,
        incomes_top_n: int = 10,
        assets_top_n: int = 10,
        liabilities_top_n: int = 10,
        spending_top_n: int = 15,
    ) -> dict[str, Any]:
        """
        Totals plus the first N items of each list.

        Lists arrive sorted largest-first from the provider, so the head of
        each list is the part that matters to the experts.
        """
        full = self.to_payload()
        return {
            "totals": full["totals"],
            "fixedCostsTop": full["fixedCosts"][:fixed_costs_top_n],
            "incomesTop": full["incomes"][:incomes_top_n],
            "assetsTop": full["assets"][:assets_top_n],
            "liabilitiesTop": full["liabilities"][:liabilities_top_n],
            "spendingTop": full["spending"][:spending_top_n],
        }


def _item_payload(item: LineItem) -> dict[str, Any]:
    return {"name": item.name, "category": item.category, "value": item.value}


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def build_snapshot(
    fixed_costs: Iterable[Mapping[str, Any]] = (),
    incomes: Iterable[Mapping[str, Any]] = (),
    assets: Iterable[Mapping[str, Any]] = (),
    liabilities: Iterable[Mapping[str, Any]] = (),
    spending: Iterable[Mapping[str, Any]] = (),
) -> FinancialSnapshot:
    """
    Build a FinancialSnapshot from raw row mappings.

    Row shapes:
        fixed_costs: {name, category, amount}
        incomes:     {source, amount, frequency} or {source, monthlyAmount}
        assets / liabilities / spending: {name, category, value}
    """
    cost_items = tuple(
        FixedCost(
            name=str(row.get("name") or ""),
            category=str(row.get("category") or ""),
            amount=to_amount(row.get("amount")),
        )
        for row in fixed_costs
    )
    income_items = tuple(
        IncomeStream(
            source=str(row.get("source") or ""),
            monthly_amount=(
                to_amount(row["monthlyAmount"])
                if "monthlyAmount" in row
                else normalize_monthly_income(row.get("amount"), row.get("frequency"))
            ),
        )
        for row in incomes
    )
    asset_items = _line_items(assets)
    liability_items = _line_items(liabilities)
    spending_items = _line_items(spending)

    total_fixed_costs = sum(c.amount for c in cost_items)
    total_monthly_income = sum(i.monthly_amount for i in income_items)
    total_assets = sum(a.value for a in asset_items)
    total_liabilities = sum(item.value for item in liability_items)
    total_spending = sum(s.value for s in spending_items)

    return FinancialSnapshot(
        fixed_costs=cost_items,
        incomes=income_items,
        assets=asset_items,
        liabilities=liability_items,
        spending=spending_items,
        totals=SnapshotTotals(
            total_fixed_costs=total_fixed_costs,
            total_monthly_income=total_monthly_income,
            total_assets=total_assets,
            total_liabilities=total_liabilities,
            total_spending=total_spending,
            net_worth_approx=total_assets - total_liabilities,
            monthly_cashflow_approx=(
                total_monthly_income - total_fixed_costs - total_spending
            ),
        ),
    )


def _line_items(rows: Iterable[Mapping[str, Any]]) -> tuple[LineItem, ...]:
    return tuple(
        LineItem(
            name=str(row.get("name") or ""),
            category=str(row.get("category") or ""),
            value=to_amount(row.get("value")),
        )
        for row in rows
    )


# ---------------------------------------------------------------------------
# Provider Protocol
# ---------------------------------------------------------------------------


class SnapshotProvider(Protocol):
    """Anything that can load a FinancialSnapshot for an account."""

    async def get_snapshot(self, account_id: str) -> FinancialSnapshot:
        """
        Load and aggregate the account's records.

        Raises:
            DataAccessError: The records could not be read.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation: SQLAlchemy
# ---------------------------------------------------------------------------


class SqlSnapshotProvider:
    """
    Snapshot provider backed by the Postgres record tables.

    The five reads are independent, so they run concurrently, each on its
    own session (an AsyncSession does not allow concurrent statements).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_snapshot(self, account_id: str) -> FinancialSnapshot:
        try:
            fixed_costs, incomes, assets, liabilities, spending = await asyncio.gather(
                self._rows(
                    select(
                        models.FixedCost.name,
                        models.FixedCost.category,
                        models.FixedCost.amount,
                    )
                    .where(models.FixedCost.account_id == account_id)
                    .order_by(models.FixedCost.amount.desc())
                ),
                self._rows(
                    select(
                        models.Income.source,
                        models.Income.amount,
                        models.Income.frequency,
                    )
                    .where(models.Income.account_id == account_id)
                    .order_by(models.Income.amount.desc())
                ),
                self._rows(
                    select(models.Asset.name, models.Asset.category, models.Asset.value)
                    .where(models.Asset.account_id == account_id)
                    .order_by(models.Asset.value.desc())
                ),
                self._rows(
                    select(
                        models.Liability.name,
                        models.Liability.category,
                        models.Liability.value,
                    )
                    .where(models.Liability.account_id == account_id)
                    .order_by(models.Liability.value.desc())
                ),
                self._rows(_spending_query(account_id)),
            )
        except SQLAlchemyError as e:
            logger.error("Snapshot query failed for account %s: %s", account_id, e)
            raise DataAccessError(
                f"Could not load financial data for account {account_id}"
            ) from e

        snapshot = build_snapshot(
            fixed_costs=fixed_costs,
            incomes=incomes,
            assets=assets,
            liabilities=liabilities,
            spending=spending,
        )
        logger.info(
            "Snapshot loaded: account=%s, fixed_costs=%d, incomes=%d, "
            "assets=%d, liabilities=%d, spending=%d",
            account_id,
            len(snapshot.fixed_costs),
            len(snapshot.incomes),
            len(snapshot.assets),
            len(snapshot.liabilities),
            len(snapshot.spending),
        )
        return snapshot

    async def _rows(self, statement) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [dict(row) for row in result.mappings().all()]


def _spending_query(account_id: str):
    """Card spending summed per (month name, category)."""
    card = models.CreditCardTransaction
    month = func.trim(func.to_char(card.transaction_date, "Month"))
    return (
        select(
            month.label("name"),
            card.category,
            func.sum(card.amount).label("value"),
        )
        .where(card.account_id == account_id)
        .group_by(month, card.category)
    )
