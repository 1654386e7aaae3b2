"""Domain models for the expense store.

Monetary values are carried as integer minor units (pence) everywhere inside
the service.  Conversion to decimal major units happens at exactly two
boundaries:

- :func:`to_minor_units` when a caller supplies an amount (create/update).
- :func:`format_money` when an amount is rendered for a human or the LLM.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

CURRENCY = "GBP"
CURRENCY_SYMBOL = "£"

_PENCE = Decimal("100")


class ExpenseStatusId(IntEnum):
    """Lifecycle states, using the ids seeded in ``ExpenseStatus``."""

    DRAFT = 1
    SUBMITTED = 2
    APPROVED = 3
    REJECTED = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()


# ── Money helpers ─────────────────────────────────────────────────────────────


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """Convert a major-unit amount (pounds) to integer minor units (pence).

    Floats go through their shortest ``repr`` so ``25.4`` becomes ``2540``
    rather than ``2539``.  Half-pennies round away from zero.
    """
    if isinstance(amount, float):
        amount = repr(amount)
    value = Decimal(amount) * _PENCE
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    """Convert integer minor units back to a two-place :class:`Decimal`."""
    return (Decimal(amount_minor) / _PENCE).quantize(Decimal("0.01"))


def format_money(amount_minor: int) -> str:
    """Render minor units as ``£1,234.56``."""
    major = from_minor_units(amount_minor)
    sign = "-" if major < 0 else ""
    return f"{sign}{CURRENCY_SYMBOL}{abs(major):,.2f}"


# ── Reference data ────────────────────────────────────────────────────────────


class ExpenseCategory(BaseModel):
    """An expense category (Travel, Meals, ...)."""

    category_id: int
    category_name: str
    is_active: bool = True


class ExpenseStatus(BaseModel):
    """A lifecycle status row."""

    status_id: int
    status_name: str


class User(BaseModel):
    """An employee or manager."""

    user_id: int
    user_name: str
    email: str
    role_id: int
    role_name: str | None = None
    manager_id: int | None = None
    is_active: bool = True


# ── Expenses ──────────────────────────────────────────────────────────────────


class Expense(BaseModel):
    """A monetary claim record as returned by the store."""

    expense_id: int
    user_id: int
    category_id: int
    status_id: int
    amount_minor: int = Field(..., description="Amount in pence.")
    currency: str = CURRENCY
    expense_date: date
    description: str | None = None
    receipt_file: str | None = None
    submitted_at: datetime | None = None
    reviewed_by: int | None = None
    reviewed_at: datetime | None = None
    created_at: datetime

    user_name: str | None = None
    category_name: str | None = None
    status_name: str | None = None
    reviewer_name: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def amount(self) -> Decimal:
        """Amount in major units (pounds)."""
        return from_minor_units(self.amount_minor)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def formatted_amount(self) -> str:
        return format_money(self.amount_minor)


class ExpenseCreate(BaseModel):
    """Input for creating a new Draft expense.

    Accepts both snake_case and the camelCase names used by the JSON API and
    the LLM tool schema (``categoryId``, ``expenseDate``).
    """

    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal = Field(..., gt=0, description="Amount in GBP (major units).")
    category_id: int = Field(..., alias="categoryId")
    expense_date: date = Field(..., alias="expenseDate")
    description: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def float_via_repr(cls, v: Any) -> Any:
        # JSON numbers arrive as floats; keep their decimal spelling.
        if isinstance(v, float):
            return repr(v)
        return v

    @field_validator("amount")
    @classmethod
    def at_least_one_penny(cls, v: Decimal) -> Decimal:
        if to_minor_units(v) <= 0:
            raise ValueError("amount must be at least £0.01")
        return v

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.amount)


class ExpenseUpdate(ExpenseCreate):
    """Input for editing a Draft expense (same fields as creation)."""


class DashboardStats(BaseModel):
    """Summary counters shown on the dashboard."""

    total_expenses: int = 0
    pending_approvals: int = 0
    approved_amount_minor: int = 0
    approved_count: int = 0

    @property
    def approved_amount(self) -> Decimal:
        return from_minor_units(self.approved_amount_minor)
