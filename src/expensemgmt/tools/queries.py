"""Read-only summary tools for the LLM agent.

- ``get_dashboard_stats`` — totals shown on the dashboard
- ``get_categories`` — the active expense categories
"""

from __future__ import annotations

from typing import Any

from expensemgmt.tools.formatters import category_summary, dashboard_summary
from expensemgmt.tools.registry import NoArguments, ToolContext, ToolError, default_registry


@default_registry.tool(
    name="get_dashboard_stats",
    description=(
        "Gets dashboard statistics including total expenses, pending approvals, "
        "and approved amounts"
    ),
    parameters_schema={"type": "object", "properties": {}},
)
async def get_dashboard_stats(context: ToolContext, args: NoArguments) -> dict[str, Any]:
    result = await context.store.get_dashboard_stats()
    if not result.ok or result.value is None:
        raise ToolError(result.error or "Failed to load dashboard statistics")
    return dashboard_summary(result.value)


@default_registry.tool(
    name="get_categories",
    description="Gets the list of available expense categories",
    parameters_schema={"type": "object", "properties": {}},
)
async def get_categories(context: ToolContext, args: NoArguments) -> list[dict[str, Any]]:
    result = await context.store.list_categories()
    if not result.ok:
        raise ToolError(result.error or "Failed to load categories")
    return [category_summary(c) for c in result.value or []]
