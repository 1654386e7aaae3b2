"""Shape store results into the compact JSON the model reads.

Keys are camelCase and emitted in insertion order; amounts are rendered as
``£N,NNN.NN`` strings and dates as ``20 Oct 2025``.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any

from expensemgmt.store.models import (
    DashboardStats,
    Expense,
    ExpenseCategory,
    ExpenseStatusId,
    format_money,
)


def to_json(payload: Any) -> str:
    """Serialise *payload* without whitespace, keeping non-ASCII (e.g. ``£``)."""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)


def format_date(value: date) -> str:
    return value.strftime("%d %b %Y")


def expense_summary(expense: Expense, *, include_status: bool = True) -> dict[str, Any]:
    """One expense as shown to the model."""
    summary: dict[str, Any] = {
        "expenseId": expense.expense_id,
        "userName": expense.user_name,
        "categoryName": expense.category_name,
        "amount": format_money(expense.amount_minor),
        "date": format_date(expense.expense_date),
    }
    if include_status:
        summary["statusName"] = expense.status_name
    summary["description"] = expense.description
    return summary


def dashboard_summary(stats: DashboardStats) -> dict[str, Any]:
    return {
        "totalExpenses": stats.total_expenses,
        "pendingApprovals": stats.pending_approvals,
        "approvedAmount": format_money(stats.approved_amount_minor),
        "approvedCount": stats.approved_count,
    }


def category_summary(category: ExpenseCategory) -> dict[str, Any]:
    return {"categoryId": category.category_id, "categoryName": category.category_name}


def created_summary(expense: Expense) -> dict[str, Any]:
    """Confirmation payload for a newly created expense."""
    return {
        "success": True,
        "expenseId": expense.expense_id,
        "amount": format_money(expense.amount_minor),
        "status": expense.status_name or ExpenseStatusId(expense.status_id).label,
        "message": f"Expense created successfully with ID {expense.expense_id}",
    }


def decision_summary(expense_id: int, ok: bool, *, approved: bool) -> dict[str, Any]:
    """Outcome payload for an approve or reject call."""
    if approved:
        message = (
            f"Expense {expense_id} approved successfully"
            if ok
            else f"Failed to approve expense {expense_id}"
        )
    else:
        message = f"Expense {expense_id} rejected" if ok else f"Failed to reject expense {expense_id}"
    return {"success": ok, "message": message}
