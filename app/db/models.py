# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# The financial records a snapshot is aggregated from. Every table is keyed
# by a free-form `account_id` string; there is no accounts table.
#
# SCHEMA OVERVIEW:
#
# ┌──────────────┐ ┌──────────────┐ ┌──────────────┐ ┌──────────────┐
# │ fixed_costs  │ │ incomes      │ │ assets       │ │ liabilities  │
# ├──────────────┤ ├──────────────┤ ├──────────────┤ ├──────────────┤
# │ id (PK)      │ │ id (PK)      │ │ id (PK)      │ │ id (PK)      │
# │ account_id   │ │ account_id   │ │ account_id   │ │ account_id   │
# │ name         │ │ source       │ │ name         │ │ name         │
# │ category     │ │ amount       │ │ category     │ │ category     │
# │ amount       │ │ frequency    │ │ value        │ │ value        │
# └──────────────┘ └──────────────┘ └──────────────┘ └──────────────┘
#
# ┌──────────────────────────────┐
# │ credit_cards                 │  Card transactions. The snapshot sums
# ├──────────────────────────────┤  them per (month name, category) to
# │ id (PK), account_id          │  produce the spending line items.
# │ transaction_date, post_date  │
# │ description, category, type  │
# │ amount, memo                 │
# └──────────────────────────────┘
#
# Amounts are NUMERIC and may be NULL; the snapshot layer coerces them.
# =============================================================================

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Index, Integer, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for all ORM models."""

    pass


class FixedCost(Base):
    """A recurring monthly cost (mortgage, insurance, subscriptions...)."""

    __tablename__ = "fixed_costs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)

    __table_args__ = (Index("ix_fixed_costs_account_id", "account_id"),)


class Income(Base):
    """
    An income stream. `amount` is per pay period; `frequency` is one of
    "Weekly", "Every 2 Weeks", "15th And 30th" or "Monthly".
    """

    __tablename__ = "incomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)
    frequency: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (Index("ix_incomes_account_id", "account_id"),)


class Asset(Base):
    """Something the account holder owns (cash, brokerage, property...)."""

    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    value: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)

    __table_args__ = (Index("ix_assets_account_id", "account_id"),)


class Liability(Base):
    """Something the account holder owes (card balance, loan, mortgage...)."""

    __tablename__ = "liabilities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    value: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)

    __table_args__ = (Index("ix_liabilities_account_id", "account_id"),)


class CreditCardTransaction(Base):
    """A single credit card transaction as exported by the card issuer."""

    __tablename__ = "credit_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    post_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str | None] = mapped_column(String(400), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)
    memo: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (Index("ix_credit_cards_account_id", "account_id"),)
