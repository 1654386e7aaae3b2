"""Tests for the JSON shaping helpers."""

from __future__ import annotations

from datetime import UTC, date, datetime

from expensemgmt.store.models import Expense, ExpenseStatusId
from expensemgmt.tools.formatters import (
    created_summary,
    decision_summary,
    expense_summary,
    format_date,
    to_json,
)


def _expense(**overrides) -> Expense:
    data = {
        "expense_id": 7,
        "user_id": 1,
        "category_id": 2,
        "status_id": ExpenseStatusId.SUBMITTED,
        "amount_minor": 150075,
        "expense_date": date(2025, 1, 5),
        "description": "Team dinner",
        "created_at": datetime(2025, 1, 5, tzinfo=UTC),
        "user_name": "Alice Example",
        "category_name": "Meals",
        "status_name": "Submitted",
    }
    data.update(overrides)
    return Expense(**data)


def test_to_json_is_compact_and_keeps_pound_sign() -> None:
    assert to_json({"amount": "£1.00", "items": [1, 2]}) == '{"amount":"£1.00","items":[1,2]}'


def test_format_date() -> None:
    assert format_date(date(2025, 10, 20)) == "20 Oct 2025"
    assert format_date(date(2025, 1, 5)) == "05 Jan 2025"


def test_expense_summary_key_order() -> None:
    summary = expense_summary(_expense())
    assert list(summary) == [
        "expenseId",
        "userName",
        "categoryName",
        "amount",
        "date",
        "statusName",
        "description",
    ]
    assert summary["amount"] == "£1,500.75"


def test_created_summary_falls_back_to_status_label() -> None:
    summary = created_summary(_expense(status_id=ExpenseStatusId.DRAFT, status_name=None))
    assert summary["status"] == "Draft"


def test_decision_summary_messages() -> None:
    assert decision_summary(3, True, approved=True)["message"] == "Expense 3 approved successfully"
    assert decision_summary(3, False, approved=True)["message"] == "Failed to approve expense 3"
    assert decision_summary(3, True, approved=False)["message"] == "Expense 3 rejected"
    assert decision_summary(3, False, approved=False)["message"] == "Failed to reject expense 3"
