"""Expense store interface.

Every store operation returns a :class:`StoreResult` instead of raising, so
callers (the REST handlers and the LLM tool handlers) branch on ``ok`` rather
than on exception types.  Mutations that depend on the lifecycle state
(submit, approve, reject, update, delete) report ``value=False`` when the
expense does not exist or is not in the required state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar, runtime_checkable

from expensemgmt.store.models import (
    DashboardStats,
    Expense,
    ExpenseCategory,
    ExpenseCreate,
    ExpenseStatus,
    ExpenseUpdate,
    User,
)

T = TypeVar("T")


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of a single store operation."""

    ok: bool
    value: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: T) -> StoreResult[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> StoreResult[T]:
        return cls(ok=False, error=error)


@runtime_checkable
class ExpenseStore(Protocol):
    """Capability exposing expense persistence and the approval workflow."""

    async def list_expenses(self, filter_text: str | None = None) -> StoreResult[list[Expense]]:
        """All expenses, newest ``expense_date`` first, optionally filtered by
        user name, category name or description (case-insensitive)."""
        ...

    async def list_pending_expenses(self) -> StoreResult[list[Expense]]:
        """Submitted expenses awaiting review, oldest submission first."""
        ...

    async def get_expense(self, expense_id: int) -> StoreResult[Expense | None]:
        ...

    async def list_categories(self) -> StoreResult[list[ExpenseCategory]]:
        ...

    async def list_statuses(self) -> StoreResult[list[ExpenseStatus]]:
        ...

    async def list_users(self) -> StoreResult[list[User]]:
        ...

    async def get_dashboard_stats(self) -> StoreResult[DashboardStats]:
        ...

    async def create_expense(self, data: ExpenseCreate, user_id: int) -> StoreResult[Expense]:
        """Create a Draft expense owned by *user_id*."""
        ...

    async def update_expense(self, expense_id: int, data: ExpenseUpdate) -> StoreResult[bool]:
        ...

    async def submit_expense(self, expense_id: int) -> StoreResult[bool]:
        ...

    async def approve_expense(self, expense_id: int, reviewer_id: int) -> StoreResult[bool]:
        ...

    async def reject_expense(self, expense_id: int, reviewer_id: int) -> StoreResult[bool]:
        ...

    async def delete_expense(self, expense_id: int) -> StoreResult[bool]:
        ...
