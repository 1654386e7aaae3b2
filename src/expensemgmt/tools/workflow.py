"""Mutating tools for the LLM agent.

- ``create_expense`` — record a new Draft expense for the acting user
- ``approve_expense`` / ``reject_expense`` — manager decisions on a
  submitted expense, recorded against the acting reviewer

Identity comes from the :class:`~expensemgmt.tools.registry.ToolContext`,
never from the model's arguments.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from expensemgmt.store.models import ExpenseCreate
from expensemgmt.tools.formatters import created_summary, decision_summary
from expensemgmt.tools.registry import ToolContext, ToolError, default_registry

logger = logging.getLogger(__name__)


class ExpenseIdArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expense_id: int = Field(..., alias="expenseId")


def _expense_id_schema(verb: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "expenseId": {
                "type": "integer",
                "description": f"The ID of the expense to {verb}",
            },
        },
        "required": ["expenseId"],
    }


@default_registry.tool(
    name="create_expense",
    description="Creates a new expense entry in the system",
    parameters_schema={
        "type": "object",
        "properties": {
            "amount": {
                "type": "number",
                "description": "The expense amount in GBP",
            },
            "categoryId": {
                "type": "integer",
                "description": (
                    "The category ID (1=Travel, 2=Meals, 3=Supplies, "
                    "4=Accommodation, 5=Other)"
                ),
            },
            "expenseDate": {
                "type": "string",
                "description": "The date of the expense in ISO format (YYYY-MM-DD)",
            },
            "description": {
                "type": "string",
                "description": "Description of the expense",
            },
        },
        "required": ["amount", "categoryId", "expenseDate"],
    },
    args_model=ExpenseCreate,
)
async def create_expense(context: ToolContext, args: ExpenseCreate) -> dict[str, Any]:
    """Create a Draft expense owned by the acting user.

    The amount arrives in pounds and is stored in pence; see
    :func:`~expensemgmt.store.models.to_minor_units`.
    """
    result = await context.store.create_expense(args, context.identity.user_id)
    if not result.ok or result.value is None:
        raise ToolError(result.error or "Failed to create expense")
    logger.info(
        "Created expense %d for user %d", result.value.expense_id, context.identity.user_id
    )
    return created_summary(result.value)


@default_registry.tool(
    name="approve_expense",
    description="Approves a submitted expense (manager action)",
    parameters_schema=_expense_id_schema("approve"),
    args_model=ExpenseIdArgs,
)
async def approve_expense(context: ToolContext, args: ExpenseIdArgs) -> dict[str, Any]:
    result = await context.store.approve_expense(args.expense_id, context.identity.reviewer_id)
    if not result.ok:
        raise ToolError(result.error or f"Failed to approve expense {args.expense_id}")
    return decision_summary(args.expense_id, bool(result.value), approved=True)


@default_registry.tool(
    name="reject_expense",
    description="Rejects a submitted expense (manager action)",
    parameters_schema=_expense_id_schema("reject"),
    args_model=ExpenseIdArgs,
)
async def reject_expense(context: ToolContext, args: ExpenseIdArgs) -> dict[str, Any]:
    result = await context.store.reject_expense(args.expense_id, context.identity.reviewer_id)
    if not result.ok:
        raise ToolError(result.error or f"Failed to reject expense {args.expense_id}")
    return decision_summary(args.expense_id, bool(result.value), approved=False)
