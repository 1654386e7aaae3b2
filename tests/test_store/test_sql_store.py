"""Tests for the stored-procedure store.

The session scope is replaced by a fake yielding a mocked ``AsyncSession``,
so these tests check the SQL sent, the bound parameters and the row
mapping without a database.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from expensemgmt.store.base import ExpenseStore
from expensemgmt.store.models import ExpenseCreate
from expensemgmt.store.sql import ROWCOUNT_PROCEDURES, SqlExpenseStore, procedure_sql

# ── Helpers ───────────────────────────────────────────────────────────────────


def _row(**columns) -> SimpleNamespace:
    return SimpleNamespace(_mapping=columns)


def _make_store(
    rows: list[dict] | None = None,
    *,
    dialect: str = "postgresql",
    error: Exception | None = None,
) -> tuple[SqlExpenseStore, AsyncMock]:
    """Build a store whose sessions return *rows* (or raise *error*)."""
    result = MagicMock()
    result.all.return_value = [_row(**r) for r in rows or []]

    session = AsyncMock()
    session.execute = AsyncMock(return_value=result, side_effect=error)

    @asynccontextmanager
    async def scope():
        yield session

    return SqlExpenseStore(scope, dialect=dialect), session


def _sent(session: AsyncMock) -> tuple[str, dict]:
    statement, params = session.execute.call_args.args
    return str(statement), params


EXPENSE_ROW = {
    "ExpenseId": 1,
    "UserId": 1,
    "UserName": "Alice Example",
    "CategoryId": 1,
    "CategoryName": "Travel",
    "StatusId": 2,
    "StatusName": "Submitted",
    "AmountMinor": 2540,
    "Currency": "GBP",
    "ExpenseDate": datetime(2025, 10, 20),
    "Description": "Taxi from airport to client site",
    "ReceiptFile": None,
    "SubmittedAt": datetime(2025, 10, 21, 9, 0, tzinfo=UTC),
    "ReviewedBy": None,
    "ReviewerName": None,
    "ReviewedAt": None,
    "CreatedAt": datetime(2025, 10, 20, 18, 0, tzinfo=UTC),
}


def test_satisfies_store_protocol() -> None:
    store, _ = _make_store()
    assert isinstance(store, ExpenseStore)


# ── Statement building ────────────────────────────────────────────────────────


def test_procedure_sql_postgres() -> None:
    assert str(procedure_sql("postgresql", "sp_GetAllExpenses")) == (
        "SELECT * FROM sp_GetAllExpenses(:filter)"
    )
    assert str(procedure_sql("postgresql", "sp_GetCategories")) == (
        "SELECT * FROM sp_GetCategories()"
    )


def test_procedure_sql_mssql() -> None:
    assert str(procedure_sql("mssql", "sp_GetExpenseById")) == (
        "EXEC sp_GetExpenseById @ExpenseId = :expense_id"
    )
    assert str(procedure_sql("mssql", "sp_GetPendingExpenses")) == "EXEC sp_GetPendingExpenses"


def test_procedure_sql_mssql_mutations_read_back_row_count() -> None:
    assert str(procedure_sql("mssql", "sp_ApproveExpense")) == (
        "SET NOCOUNT ON; "
        "EXEC sp_ApproveExpense @ExpenseId = :expense_id, @ReviewerId = :reviewer_id; "
        "SELECT @@ROWCOUNT AS Affected"
    )
    for name in ROWCOUNT_PROCEDURES:
        assert str(procedure_sql("mssql", name)).endswith("SELECT @@ROWCOUNT AS Affected")
    assert "@@ROWCOUNT" not in str(procedure_sql("mssql", "sp_CreateExpense"))
    assert "@@ROWCOUNT" not in str(procedure_sql("postgresql", "sp_ApproveExpense"))


# ── Reads ─────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_expenses_maps_rows() -> None:
    store, session = _make_store([EXPENSE_ROW])

    result = await store.list_expenses("taxi")

    assert result.ok is True
    expense = result.value[0]
    assert expense.expense_id == 1
    assert expense.user_name == "Alice Example"
    assert expense.amount_minor == 2540
    assert expense.expense_date == date(2025, 10, 20)
    assert expense.status_name == "Submitted"
    sql, params = _sent(session)
    assert sql == "SELECT * FROM sp_GetAllExpenses(:filter)"
    assert params == {"filter": "taxi"}


@pytest.mark.asyncio
async def test_lowercase_columns_are_accepted() -> None:
    store, _ = _make_store([{k.lower(): v for k, v in EXPENSE_ROW.items()}])

    result = await store.get_expense(1)

    assert result.value.category_name == "Travel"


@pytest.mark.asyncio
async def test_get_expense_missing_is_none() -> None:
    store, session = _make_store([])

    result = await store.get_expense(77)

    assert result.ok is True
    assert result.value is None
    assert _sent(session)[1] == {"expense_id": 77}


@pytest.mark.asyncio
async def test_dashboard_converts_decimal_to_minor_units() -> None:
    store, _ = _make_store(
        [
            {
                "TotalExpenses": 5,
                "PendingApprovals": 1,
                "ApprovedAmount": Decimal("519.24"),
                "ApprovedCount": 3,
            }
        ]
    )

    stats = (await store.get_dashboard_stats()).value

    assert stats.total_expenses == 5
    assert stats.approved_amount_minor == 51924
    assert stats.approved_count == 3


@pytest.mark.asyncio
async def test_categories_and_users() -> None:
    store, _ = _make_store([{"CategoryId": 4, "CategoryName": "Accommodation", "IsActive": 1}])
    categories = (await store.list_categories()).value
    assert categories[0].category_name == "Accommodation"
    assert categories[0].is_active is True

    store, _ = _make_store(
        [
            {
                "UserId": 2,
                "UserName": "Bob Manager",
                "Email": "bob.manager@example.co.uk",
                "RoleId": 2,
                "RoleName": "Manager",
                "IsActive": True,
            }
        ]
    )
    users = (await store.list_users()).value
    assert users[0].role_name == "Manager"


# ── Mutations ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_expense_binds_minor_units() -> None:
    store, session = _make_store([{**EXPENSE_ROW, "ExpenseId": 6, "StatusId": 1}])
    data = ExpenseCreate.model_validate(
        {"amount": 25.4, "categoryId": 1, "expenseDate": "2025-10-20", "description": "Taxi"}
    )

    result = await store.create_expense(data, user_id=3)

    assert result.value.expense_id == 6
    sql, params = _sent(session)
    assert sql.startswith("SELECT * FROM sp_CreateExpense(")
    assert params == {
        "user_id": 3,
        "category_id": 1,
        "amount_minor": 2540,
        "expense_date": date(2025, 10, 20),
        "description": "Taxi",
    }


@pytest.mark.asyncio
async def test_create_expense_without_row_fails() -> None:
    store, _ = _make_store([])
    data = ExpenseCreate.model_validate({"amount": 1, "categoryId": 1, "expenseDate": "2025-10-20"})

    result = await store.create_expense(data, user_id=1)

    assert result.ok is False
    assert result.error == "Failed to create expense"


@pytest.mark.asyncio
async def test_approve_reads_affected_rows() -> None:
    store, session = _make_store([{"Affected": 1}], dialect="mssql")

    result = await store.approve_expense(4, reviewer_id=2)

    assert result.value is True
    sql, params = _sent(session)
    assert "EXEC sp_ApproveExpense @ExpenseId = :expense_id" in sql
    assert params == {"expense_id": 4, "reviewer_id": 2}


@pytest.mark.asyncio
async def test_zero_affected_rows_is_false() -> None:
    store, _ = _make_store([{"affected": 0}])
    assert (await store.reject_expense(3, reviewer_id=2)).value is False


@pytest.mark.asyncio
async def test_delete_with_no_result_is_false() -> None:
    store, _ = _make_store([])
    assert (await store.delete_expense(3)).value is False


# ── Failures ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_sqlalchemy_error_becomes_failure() -> None:
    store, _ = _make_store(error=OperationalError("stmt", {}, Exception("server gone")))

    result = await store.list_categories()

    assert result.ok is False
    assert result.error.startswith("Database error in sp_GetCategories:")
    assert "server gone" in result.error


@pytest.mark.asyncio
async def test_missing_column_becomes_failure() -> None:
    row = {k: v for k, v in EXPENSE_ROW.items() if k != "CreatedAt"}
    store, _ = _make_store([row])

    result = await store.list_pending_expenses()

    assert result.ok is False
    assert result.error.startswith("Unexpected result from sp_GetPendingExpenses:")
    assert "createdat" in result.error


@pytest.mark.asyncio
async def test_invalid_column_value_becomes_failure() -> None:
    store, _ = _make_store([{**EXPENSE_ROW, "AmountMinor": "a lot"}])

    result = await store.get_expense(1)

    assert result.ok is False
    assert result.error.startswith("Unexpected result from sp_GetExpenseById:")


@pytest.mark.asyncio
async def test_connection_error_becomes_failure() -> None:
    @asynccontextmanager
    async def refusing_scope():
        raise ConnectionRefusedError("connection refused")
        yield  # pragma: no cover

    store = SqlExpenseStore(refusing_scope)

    result = await store.submit_expense(1)

    assert result.ok is False
    assert "sp_SubmitExpense" in result.error
