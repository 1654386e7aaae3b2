"""Tests for the create/approve/reject tools."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from expensemgmt.agent.conversation import ChatIdentity
from expensemgmt.agent.llm_client import ToolCall
from expensemgmt.store.base import StoreResult
from expensemgmt.store.demo import DemoExpenseStore
from expensemgmt.store.models import ExpenseStatusId
from expensemgmt.tools import default_registry
from expensemgmt.tools.registry import ToolContext


def _context(store=None, *, user_id: int = 1, reviewer_id: int = 2) -> ToolContext:
    return ToolContext(
        store=store or DemoExpenseStore(),
        identity=ChatIdentity(user_id=user_id, reviewer_id=reviewer_id),
    )


async def _dispatch(context: ToolContext, name: str, **arguments) -> dict:
    payload = await default_registry.dispatch(
        ToolCall(id="call_0", name=name, arguments=arguments), context
    )
    return json.loads(payload)


# ── create_expense ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_expense_returns_confirmation() -> None:
    store = DemoExpenseStore()

    result = await _dispatch(
        _context(store),
        "create_expense",
        amount=12.5,
        categoryId=2,
        expenseDate="2025-11-03",
        description="Sandwiches",
    )

    assert result == {
        "success": True,
        "expenseId": 6,
        "amount": "£12.50",
        "status": "Draft",
        "message": "Expense created successfully with ID 6",
    }
    expense = (await store.get_expense(6)).value
    assert expense.amount_minor == 1250
    assert expense.category_name == "Meals"


@pytest.mark.asyncio
async def test_create_expense_float_amount_does_not_drift() -> None:
    store = DemoExpenseStore()

    await _dispatch(
        _context(store), "create_expense", amount=0.29, categoryId=3, expenseDate="2025-11-03"
    )

    assert (await store.get_expense(6)).value.amount_minor == 29


@pytest.mark.asyncio
async def test_create_expense_owner_comes_from_identity() -> None:
    store = DemoExpenseStore()

    await _dispatch(
        _context(store, user_id=2),
        "create_expense",
        amount=5,
        categoryId=5,
        expenseDate="2025-11-03",
        userId=1,
    )

    assert (await store.get_expense(6)).value.user_id == 2


@pytest.mark.asyncio
async def test_create_expense_requires_date() -> None:
    result = await _dispatch(_context(), "create_expense", amount=5, categoryId=1)

    assert result["error"].startswith("Invalid arguments for create_expense")
    assert "expenseDate" in result["error"]


@pytest.mark.asyncio
async def test_create_expense_rejects_non_positive_amount() -> None:
    result = await _dispatch(
        _context(), "create_expense", amount=0, categoryId=1, expenseDate="2025-11-03"
    )

    assert "amount" in result["error"]


@pytest.mark.asyncio
async def test_create_expense_unknown_category() -> None:
    result = await _dispatch(
        _context(), "create_expense", amount=5, categoryId=99, expenseDate="2025-11-03"
    )

    assert result == {"error": "Unknown category id 99"}


# ── approve / reject ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_approve_submitted_expense() -> None:
    store = DemoExpenseStore()

    result = await _dispatch(_context(store, reviewer_id=2), "approve_expense", expenseId=1)

    assert result == {"success": True, "message": "Expense 1 approved successfully"}
    assert (await store.get_expense(1)).value.status_id == ExpenseStatusId.APPROVED


@pytest.mark.asyncio
async def test_approve_draft_fails() -> None:
    result = await _dispatch(_context(), "approve_expense", expenseId=3)

    assert result == {"success": False, "message": "Failed to approve expense 3"}


@pytest.mark.asyncio
async def test_reject_submitted_expense() -> None:
    store = DemoExpenseStore()

    result = await _dispatch(_context(store, reviewer_id=9), "reject_expense", expenseId=1)

    assert result == {"success": True, "message": "Expense 1 rejected"}
    expense = (await store.get_expense(1)).value
    assert expense.status_id == ExpenseStatusId.REJECTED
    assert expense.reviewed_by == 9


@pytest.mark.asyncio
async def test_reject_missing_expense() -> None:
    result = await _dispatch(_context(), "reject_expense", expenseId=404)

    assert result == {"success": False, "message": "Failed to reject expense 404"}


@pytest.mark.asyncio
async def test_approve_store_failure() -> None:
    store = AsyncMock()
    store.approve_expense = AsyncMock(
        return_value=StoreResult.failure("Database error in sp_ApproveExpense: deadlock")
    )

    result = await _dispatch(_context(store), "approve_expense", expenseId=1)

    assert result == {"error": "Database error in sp_ApproveExpense: deadlock"}
    store.approve_expense.assert_awaited_once_with(1, 2)
