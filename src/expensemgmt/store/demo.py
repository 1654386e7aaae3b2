"""In-memory expense store used when no database is configured.

Seeded with a handful of demo records so the API and the chat assistant are
usable out of the box.  Implements the same lifecycle rules as the stored
procedures:

    Draft ──submit──▶ Submitted ──approve──▶ Approved
                                 └─reject──▶ Rejected

Updates and deletes are only allowed while an expense is a Draft.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime

from expensemgmt.store.base import StoreResult
from expensemgmt.store.models import (
    CURRENCY,
    DashboardStats,
    Expense,
    ExpenseCategory,
    ExpenseCreate,
    ExpenseStatus,
    ExpenseStatusId,
    ExpenseUpdate,
    User,
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _seed_categories() -> list[ExpenseCategory]:
    return [
        ExpenseCategory(category_id=1, category_name="Travel"),
        ExpenseCategory(category_id=2, category_name="Meals"),
        ExpenseCategory(category_id=3, category_name="Supplies"),
        ExpenseCategory(category_id=4, category_name="Accommodation"),
        ExpenseCategory(category_id=5, category_name="Other"),
    ]


def _seed_users() -> list[User]:
    return [
        User(
            user_id=1,
            user_name="Alice Example",
            email="alice@example.co.uk",
            role_id=1,
            role_name="Employee",
            manager_id=2,
        ),
        User(
            user_id=2,
            user_name="Bob Manager",
            email="bob.manager@example.co.uk",
            role_id=2,
            role_name="Manager",
        ),
    ]


def _seed_expenses() -> list[Expense]:
    created = datetime(2025, 11, 12, 9, 0, tzinfo=UTC)

    def row(
        expense_id: int,
        user_id: int,
        category_id: int,
        status: ExpenseStatusId,
        amount_minor: int,
        expense_date: date,
        description: str,
    ) -> Expense:
        submitted = None
        reviewed = None
        reviewer = None
        if status != ExpenseStatusId.DRAFT:
            submitted = datetime.combine(expense_date, datetime.min.time(), tzinfo=UTC)
        if status in (ExpenseStatusId.APPROVED, ExpenseStatusId.REJECTED):
            reviewed = submitted
            reviewer = 2
        return Expense(
            expense_id=expense_id,
            user_id=user_id,
            category_id=category_id,
            status_id=status,
            amount_minor=amount_minor,
            expense_date=expense_date,
            description=description,
            submitted_at=submitted,
            reviewed_by=reviewer,
            reviewed_at=reviewed,
            created_at=created,
        )

    return [
        row(1, 1, 1, ExpenseStatusId.SUBMITTED, 2540, date(2025, 10, 20), "Taxi from airport to client site"),
        row(2, 1, 2, ExpenseStatusId.APPROVED, 1425, date(2025, 9, 15), "Client lunch meeting"),
        row(3, 1, 3, ExpenseStatusId.DRAFT, 799, date(2025, 11, 1), "Office stationery"),
        row(4, 1, 4, ExpenseStatusId.APPROVED, 12300, date(2025, 8, 10), "Hotel during client visit"),
        row(5, 2, 1, ExpenseStatusId.DRAFT, 23400, date(2025, 11, 11), "Meeting"),
    ]


class DemoExpenseStore:
    """Dict-backed :class:`~expensemgmt.store.base.ExpenseStore`.

    All mutations run under one :class:`asyncio.Lock` so each operation is
    atomic with respect to concurrent requests on the same event loop.

    Args:
        expenses: Initial records (defaults to the demo seed).
        categories: Category reference data.
        users: User reference data.
    """

    def __init__(
        self,
        expenses: list[Expense] | None = None,
        categories: list[ExpenseCategory] | None = None,
        users: list[User] | None = None,
    ) -> None:
        seed = _seed_expenses() if expenses is None else expenses
        self._expenses: dict[int, Expense] = {e.expense_id: e for e in seed}
        self._categories = categories if categories is not None else _seed_categories()
        self._users = users if users is not None else _seed_users()
        self._lock = asyncio.Lock()

    # ── Reads ─────────────────────────────────────────────────────────────

    async def list_expenses(self, filter_text: str | None = None) -> StoreResult[list[Expense]]:
        rows = [self._decorate(e) for e in self._expenses.values()]
        if filter_text:
            needle = filter_text.lower()
            rows = [
                e for e in rows
                if needle in (e.user_name or "").lower()
                or needle in (e.category_name or "").lower()
                or needle in (e.description or "").lower()
            ]
        rows.sort(key=lambda e: (e.expense_date, e.expense_id), reverse=True)
        return StoreResult.success(rows)

    async def list_pending_expenses(self) -> StoreResult[list[Expense]]:
        rows = [
            self._decorate(e)
            for e in self._expenses.values()
            if e.status_id == ExpenseStatusId.SUBMITTED
        ]
        rows.sort(key=lambda e: (e.submitted_at or e.created_at, e.expense_id))
        return StoreResult.success(rows)

    async def get_expense(self, expense_id: int) -> StoreResult[Expense | None]:
        expense = self._expenses.get(expense_id)
        return StoreResult.success(self._decorate(expense) if expense else None)

    async def list_categories(self) -> StoreResult[list[ExpenseCategory]]:
        active = [c for c in self._categories if c.is_active]
        return StoreResult.success(sorted(active, key=lambda c: c.category_name))

    async def list_statuses(self) -> StoreResult[list[ExpenseStatus]]:
        return StoreResult.success([
            ExpenseStatus(status_id=s.value, status_name=s.label) for s in ExpenseStatusId
        ])

    async def list_users(self) -> StoreResult[list[User]]:
        active = [u for u in self._users if u.is_active]
        return StoreResult.success(sorted(active, key=lambda u: u.user_name))

    async def get_dashboard_stats(self) -> StoreResult[DashboardStats]:
        expenses = list(self._expenses.values())
        approved = [e for e in expenses if e.status_id == ExpenseStatusId.APPROVED]
        return StoreResult.success(
            DashboardStats(
                total_expenses=len(expenses),
                pending_approvals=sum(
                    1 for e in expenses if e.status_id == ExpenseStatusId.SUBMITTED
                ),
                approved_amount_minor=sum(e.amount_minor for e in approved),
                approved_count=len(approved),
            )
        )

    # ── Mutations ─────────────────────────────────────────────────────────

    async def create_expense(self, data: ExpenseCreate, user_id: int) -> StoreResult[Expense]:
        if not self._category(data.category_id):
            return StoreResult.failure(f"Unknown category id {data.category_id}")
        if not any(u.user_id == user_id for u in self._users):
            return StoreResult.failure(f"Unknown user id {user_id}")

        async with self._lock:
            expense_id = max(self._expenses, default=0) + 1
            expense = Expense(
                expense_id=expense_id,
                user_id=user_id,
                category_id=data.category_id,
                status_id=ExpenseStatusId.DRAFT,
                amount_minor=data.amount_minor,
                currency=CURRENCY,
                expense_date=data.expense_date,
                description=data.description,
                created_at=_utcnow(),
            )
            self._expenses[expense_id] = expense
        return StoreResult.success(self._decorate(expense))

    async def update_expense(self, expense_id: int, data: ExpenseUpdate) -> StoreResult[bool]:
        if not self._category(data.category_id):
            return StoreResult.failure(f"Unknown category id {data.category_id}")
        return await self._transition(
            expense_id,
            ExpenseStatusId.DRAFT,
            category_id=data.category_id,
            amount_minor=data.amount_minor,
            expense_date=data.expense_date,
            description=data.description,
        )

    async def submit_expense(self, expense_id: int) -> StoreResult[bool]:
        return await self._transition(
            expense_id,
            ExpenseStatusId.DRAFT,
            status_id=ExpenseStatusId.SUBMITTED,
            submitted_at=_utcnow(),
        )

    async def approve_expense(self, expense_id: int, reviewer_id: int) -> StoreResult[bool]:
        return await self._transition(
            expense_id,
            ExpenseStatusId.SUBMITTED,
            status_id=ExpenseStatusId.APPROVED,
            reviewed_by=reviewer_id,
            reviewed_at=_utcnow(),
        )

    async def reject_expense(self, expense_id: int, reviewer_id: int) -> StoreResult[bool]:
        return await self._transition(
            expense_id,
            ExpenseStatusId.SUBMITTED,
            status_id=ExpenseStatusId.REJECTED,
            reviewed_by=reviewer_id,
            reviewed_at=_utcnow(),
        )

    async def delete_expense(self, expense_id: int) -> StoreResult[bool]:
        async with self._lock:
            expense = self._expenses.get(expense_id)
            if expense is None or expense.status_id != ExpenseStatusId.DRAFT:
                return StoreResult.success(False)
            del self._expenses[expense_id]
        return StoreResult.success(True)

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _transition(
        self,
        expense_id: int,
        required: ExpenseStatusId,
        **changes: object,
    ) -> StoreResult[bool]:
        """Apply *changes* only if the expense exists and is in *required*."""
        async with self._lock:
            expense = self._expenses.get(expense_id)
            if expense is None or expense.status_id != required:
                return StoreResult.success(False)
            self._expenses[expense_id] = expense.model_copy(update=changes)
        return StoreResult.success(True)

    def _category(self, category_id: int) -> ExpenseCategory | None:
        for category in self._categories:
            if category.category_id == category_id and category.is_active:
                return category
        return None

    def _user_name(self, user_id: int | None) -> str | None:
        for user in self._users:
            if user.user_id == user_id:
                return user.user_name
        return None

    def _decorate(self, expense: Expense) -> Expense:
        """Fill the joined display names the stored procedures return."""
        category = self._category(expense.category_id)
        return expense.model_copy(
            update={
                "user_name": self._user_name(expense.user_id),
                "category_name": category.category_name if category else None,
                "status_name": ExpenseStatusId(expense.status_id).label,
                "reviewer_name": self._user_name(expense.reviewed_by),
            }
        )
