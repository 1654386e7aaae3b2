"""Tool implementations for the chat assistant.

Importing this package ensures all tools are registered with the
:data:`~expensemgmt.tools.registry.default_registry`, in catalog order.
"""

# Import tool modules so their @default_registry.tool decorators execute.
from expensemgmt.tools import expenses, queries, workflow  # noqa: F401
from expensemgmt.tools.registry import ToolContext, ToolRegistry, default_registry

__all__ = ["ToolContext", "ToolRegistry", "default_registry"]
