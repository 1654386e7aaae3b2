"""Expense store backed by stored procedures.

All application data access goes through the procedures listed in
:data:`PROCEDURES`; no table is ever queried directly.  The procedures are
not created here; the target database must already define them.  The call
syntax depends on the database dialect:

- SQL Server (``mssql+aioodbc://``, install the ``mssql`` extra):
  ``EXEC sp_GetAllExpenses @Filter = :filter``.  The T-SQL procedures are
  called as deployed; the mutating ones return no rows, so their statement
  reads the row count back with ``SELECT @@ROWCOUNT AS Affected``.
- anything else (``postgresql+asyncpg://`` by default):
  ``SELECT * FROM sp_GetAllExpenses(:filter)``.  Each procedure must exist
  as a set-returning function with the same name and result columns, and the
  mutating ones must return a single ``Affected`` row themselves.

Either way a lifecycle precondition that is not met (e.g. approving a
Draft) comes back as ``Affected = 0`` → ``False``.

Column names are matched case-insensitively, since PostgreSQL folds
unquoted identifiers to lower case.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import ValidationError
from sqlalchemy import TextClause, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from expensemgmt.store.base import StoreResult
from expensemgmt.store.models import (
    DashboardStats,
    Expense,
    ExpenseCategory,
    ExpenseCreate,
    ExpenseStatus,
    ExpenseUpdate,
    User,
    to_minor_units,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Row = dict[str, Any]
SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# Procedure name → ordered (procedure parameter, bind name) pairs.
PROCEDURES: dict[str, tuple[tuple[str, str], ...]] = {
    "sp_GetAllExpenses": (("Filter", "filter"),),
    "sp_GetPendingExpenses": (),
    "sp_GetExpenseById": (("ExpenseId", "expense_id"),),
    "sp_GetCategories": (),
    "sp_GetStatuses": (),
    "sp_GetUsers": (),
    "sp_GetDashboardStats": (),
    "sp_CreateExpense": (
        ("UserId", "user_id"),
        ("CategoryId", "category_id"),
        ("AmountMinor", "amount_minor"),
        ("ExpenseDate", "expense_date"),
        ("Description", "description"),
    ),
    "sp_UpdateExpense": (
        ("ExpenseId", "expense_id"),
        ("CategoryId", "category_id"),
        ("AmountMinor", "amount_minor"),
        ("ExpenseDate", "expense_date"),
        ("Description", "description"),
    ),
    "sp_SubmitExpense": (("ExpenseId", "expense_id"),),
    "sp_ApproveExpense": (("ExpenseId", "expense_id"), ("ReviewerId", "reviewer_id")),
    "sp_RejectExpense": (("ExpenseId", "expense_id"), ("ReviewerId", "reviewer_id")),
    "sp_DeleteExpense": (("ExpenseId", "expense_id"),),
}


#: Procedures that change rows and report the count as ``Affected``.
ROWCOUNT_PROCEDURES: frozenset[str] = frozenset(
    {
        "sp_UpdateExpense",
        "sp_SubmitExpense",
        "sp_ApproveExpense",
        "sp_RejectExpense",
        "sp_DeleteExpense",
    }
)


def procedure_sql(dialect: str, name: str) -> TextClause:
    """Build the statement that invokes procedure *name* on *dialect*."""
    params = PROCEDURES[name]
    if dialect == "mssql":
        args = ", ".join(f"@{proc_param} = :{bind}" for proc_param, bind in params)
        call = f"EXEC {name} {args}".rstrip()
        if name in ROWCOUNT_PROCEDURES:
            # NOCOUNT keeps the DML count message from masking the SELECT.
            return text(f"SET NOCOUNT ON; {call}; SELECT @@ROWCOUNT AS Affected")
        return text(call)
    args = ", ".join(f":{bind}" for _, bind in params)
    return text(f"SELECT * FROM {name}({args})")


class SqlExpenseStore:
    """:class:`~expensemgmt.store.base.ExpenseStore` over stored procedures.

    Each operation runs in its own session (and therefore its own
    transaction), so concurrent tool dispatches never share a connection.

    Args:
        session_scope: Zero-argument callable returning an async context
            manager that yields an :class:`AsyncSession` and commits on exit
            (normally :func:`expensemgmt.db.session.get_session`).
        dialect: SQLAlchemy dialect name of the target database.
    """

    def __init__(self, session_scope: SessionScope, dialect: str = "postgresql") -> None:
        self._session_scope = session_scope
        self._dialect = dialect

    # ── Reads ─────────────────────────────────────────────────────────────

    async def list_expenses(self, filter_text: str | None = None) -> StoreResult[list[Expense]]:
        return await self._run(
            "sp_GetAllExpenses",
            {"filter": filter_text or None},
            lambda rows: [_map_expense(r) for r in rows],
        )

    async def list_pending_expenses(self) -> StoreResult[list[Expense]]:
        return await self._run(
            "sp_GetPendingExpenses",
            {},
            lambda rows: [_map_expense(r) for r in rows],
        )

    async def get_expense(self, expense_id: int) -> StoreResult[Expense | None]:
        return await self._run(
            "sp_GetExpenseById",
            {"expense_id": expense_id},
            lambda rows: _map_expense(rows[0]) if rows else None,
        )

    async def list_categories(self) -> StoreResult[list[ExpenseCategory]]:
        return await self._run(
            "sp_GetCategories",
            {},
            lambda rows: [
                ExpenseCategory(
                    category_id=r["categoryid"],
                    category_name=r["categoryname"],
                    is_active=bool(r.get("isactive", True)),
                )
                for r in rows
            ],
        )

    async def list_statuses(self) -> StoreResult[list[ExpenseStatus]]:
        return await self._run(
            "sp_GetStatuses",
            {},
            lambda rows: [
                ExpenseStatus(status_id=r["statusid"], status_name=r["statusname"])
                for r in rows
            ],
        )

    async def list_users(self) -> StoreResult[list[User]]:
        return await self._run(
            "sp_GetUsers",
            {},
            lambda rows: [
                User(
                    user_id=r["userid"],
                    user_name=r["username"],
                    email=r["email"],
                    role_id=r["roleid"],
                    role_name=r.get("rolename"),
                    is_active=bool(r.get("isactive", True)),
                )
                for r in rows
            ],
        )

    async def get_dashboard_stats(self) -> StoreResult[DashboardStats]:
        return await self._run("sp_GetDashboardStats", {}, _map_stats)

    # ── Mutations ─────────────────────────────────────────────────────────

    async def create_expense(self, data: ExpenseCreate, user_id: int) -> StoreResult[Expense]:
        result = await self._run(
            "sp_CreateExpense",
            {
                "user_id": user_id,
                "category_id": data.category_id,
                "amount_minor": data.amount_minor,
                "expense_date": data.expense_date,
                "description": data.description,
            },
            lambda rows: _map_expense(rows[0]) if rows else None,
        )
        if result.ok and result.value is None:
            return StoreResult.failure("Failed to create expense")
        return result  # type: ignore[return-value]

    async def update_expense(self, expense_id: int, data: ExpenseUpdate) -> StoreResult[bool]:
        return await self._run(
            "sp_UpdateExpense",
            {
                "expense_id": expense_id,
                "category_id": data.category_id,
                "amount_minor": data.amount_minor,
                "expense_date": data.expense_date,
                "description": data.description,
            },
            _affected,
        )

    async def submit_expense(self, expense_id: int) -> StoreResult[bool]:
        return await self._run("sp_SubmitExpense", {"expense_id": expense_id}, _affected)

    async def approve_expense(self, expense_id: int, reviewer_id: int) -> StoreResult[bool]:
        return await self._run(
            "sp_ApproveExpense",
            {"expense_id": expense_id, "reviewer_id": reviewer_id},
            _affected,
        )

    async def reject_expense(self, expense_id: int, reviewer_id: int) -> StoreResult[bool]:
        return await self._run(
            "sp_RejectExpense",
            {"expense_id": expense_id, "reviewer_id": reviewer_id},
            _affected,
        )

    async def delete_expense(self, expense_id: int) -> StoreResult[bool]:
        return await self._run("sp_DeleteExpense", {"expense_id": expense_id}, _affected)

    # ── Plumbing ──────────────────────────────────────────────────────────

    async def _run(
        self,
        procedure: str,
        params: dict[str, Any],
        mapper: Callable[[list[Row]], T],
    ) -> StoreResult[T]:
        """Execute *procedure* in a fresh session and map its rows."""
        statement = procedure_sql(self._dialect, procedure)
        try:
            async with self._session_scope() as session:
                result = await session.execute(statement, params)
                rows = [_normalise_row(r) for r in result.all()]
        except (SQLAlchemyError, OSError) as exc:
            logger.exception("Database error in %s", procedure)
            return StoreResult.failure(f"Database error in {procedure}: {exc}")

        logger.debug("%s returned %d row(s)", procedure, len(rows))
        try:
            value = mapper(rows)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            logger.exception("Unexpected result from %s", procedure)
            return StoreResult.failure(f"Unexpected result from {procedure}: {exc!r}")
        return StoreResult.success(value)


# ── Row mapping ───────────────────────────────────────────────────────────────


def _normalise_row(row: Any) -> Row:
    """Return a lower-cased column → value dict for a result row."""
    return {str(key).lower(): value for key, value in row._mapping.items()}


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def _map_expense(r: Row) -> Expense:
    return Expense(
        expense_id=r["expenseid"],
        user_id=r["userid"],
        category_id=r["categoryid"],
        status_id=r["statusid"],
        amount_minor=r["amountminor"],
        currency=r.get("currency") or "GBP",
        expense_date=_as_date(r["expensedate"]),
        description=r.get("description"),
        receipt_file=r.get("receiptfile"),
        submitted_at=r.get("submittedat"),
        reviewed_by=r.get("reviewedby"),
        reviewed_at=r.get("reviewedat"),
        created_at=r["createdat"],
        user_name=r.get("username"),
        category_name=r.get("categoryname"),
        status_name=r.get("statusname"),
        reviewer_name=r.get("reviewername"),
    )


def _map_stats(rows: list[Row]) -> DashboardStats:
    if not rows:
        return DashboardStats()
    r = rows[0]
    approved = r.get("approvedamount") or Decimal("0")
    return DashboardStats(
        total_expenses=r.get("totalexpenses") or 0,
        pending_approvals=r.get("pendingapprovals") or 0,
        approved_amount_minor=to_minor_units(Decimal(str(approved))),
        approved_count=r.get("approvedcount") or 0,
    )


def _affected(rows: list[Row]) -> bool:
    if not rows:
        return False
    return int(rows[0].get("affected") or 0) > 0
