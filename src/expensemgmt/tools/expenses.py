"""Expense listing tools for the LLM agent.

- ``get_all_expenses`` — every expense, optionally filtered by a search term
- ``get_pending_expenses`` — submitted expenses awaiting review
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from expensemgmt.tools.formatters import expense_summary
from expensemgmt.tools.registry import NoArguments, ToolContext, ToolError, default_registry


class ExpenseFilterArgs(BaseModel):
    filter: str | None = None


@default_registry.tool(
    name="get_all_expenses",
    description="Retrieves all expenses from the database, optionally filtered by a search term",
    parameters_schema={
        "type": "object",
        "properties": {
            "filter": {
                "type": "string",
                "description": (
                    "Optional search term to filter expenses by category, "
                    "description, or user name"
                ),
            },
        },
    },
    args_model=ExpenseFilterArgs,
)
async def get_all_expenses(context: ToolContext, args: ExpenseFilterArgs) -> list[dict[str, Any]]:
    """List expenses, newest first.

    Args:
        context: Store and identity for this request.
        args: Optional ``filter`` search term.

    Returns:
        One summary dict per expense, including its status name.
    """
    result = await context.store.list_expenses(args.filter or None)
    if not result.ok:
        raise ToolError(result.error or "Failed to load expenses")
    return [expense_summary(e) for e in result.value or []]


@default_registry.tool(
    name="get_pending_expenses",
    description="Retrieves all expenses that are pending approval",
    parameters_schema={"type": "object", "properties": {}},
)
async def get_pending_expenses(context: ToolContext, args: NoArguments) -> list[dict[str, Any]]:
    """List submitted expenses, oldest submission first (no status field)."""
    result = await context.store.list_pending_expenses()
    if not result.ok:
        raise ToolError(result.error or "Failed to load pending expenses")
    return [expense_summary(e, include_status=False) for e in result.value or []]
