"""Lightweight tool registry for LLM function-calling.

Tools are async functions that the LLM can invoke.  The registry stores
:class:`ToolDef` descriptors and provides methods to:

- Register tools via the :meth:`ToolRegistry.tool` decorator
- Export tool schemas in OpenAI function-calling format (used by all providers)
- Dispatch a model-issued tool call: validate its arguments, run the
  handler and serialise the outcome as a compact JSON string

:meth:`ToolRegistry.dispatch` never raises for a bad call.  Unknown tools,
invalid arguments, store failures and handler exceptions all come back as an
``{"error": ...}`` payload, which is what the model sees in the tool turn.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from expensemgmt.tools.formatters import to_json

if TYPE_CHECKING:
    from expensemgmt.agent.conversation import ChatIdentity
    from expensemgmt.agent.llm_client import ToolCall
    from expensemgmt.store.base import ExpenseStore

logger = logging.getLogger(__name__)

# Type alias for an async tool handler: ``handler(context, args) -> payload``.
ToolHandler = Callable[..., Coroutine[Any, Any, Any]]


class NoArguments(BaseModel):
    """Argument model for tools that take no parameters (extras are ignored)."""


class ToolError(Exception):
    """Raised by a handler to report an expected failure (e.g. store error)."""


@dataclass(frozen=True)
class ToolContext:
    """Per-request dependencies handed to every tool handler."""

    store: ExpenseStore
    identity: ChatIdentity


@dataclass
class ToolDef:
    """Definition of a single tool callable by the LLM.

    Attributes:
        name: Unique tool name (used in LLM function-calling).
        description: Human-readable description shown to the LLM.
        parameters_schema: JSON Schema dict describing the tool's parameters.
        handler: Async function that executes the tool logic.
        args_model: Pydantic model the raw arguments are validated against
            before the handler runs.
    """

    name: str
    description: str
    parameters_schema: dict[str, Any]
    handler: ToolHandler
    args_model: type[BaseModel] = NoArguments


class ToolRegistry:
    """Registry of tools available to the chat assistant.

    Usage::

        registry = ToolRegistry()

        @registry.tool(
            name="get_categories",
            description="Gets the list of available expense categories",
            parameters_schema={"type": "object", "properties": {}},
        )
        async def get_categories(context: ToolContext, args: NoArguments) -> list:
            ...

        # Export schemas for the LLM.
        schemas = registry.get_tools_for_llm()

        # Execute a tool call from the LLM.
        payload = await registry.dispatch(call, context)
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def tool(
        self,
        *,
        name: str,
        description: str,
        parameters_schema: dict[str, Any],
        args_model: type[BaseModel] = NoArguments,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator to register a tool function.

        Args:
            name: Unique tool name.
            description: What the tool does (shown to LLM).
            parameters_schema: JSON Schema for the tool's parameters.
            args_model: Model used to validate and convert the arguments.

        Returns:
            The original function, unmodified.
        """

        def decorator(func: ToolHandler) -> ToolHandler:
            self.register(
                name=name,
                description=description,
                parameters_schema=parameters_schema,
                handler=func,
                args_model=args_model,
            )
            return func

        return decorator

    def register(
        self,
        *,
        name: str,
        description: str,
        parameters_schema: dict[str, Any],
        handler: ToolHandler,
        args_model: type[BaseModel] = NoArguments,
    ) -> None:
        """Imperatively register a tool (alternative to the decorator).

        Raises:
            ValueError: If *name* is already registered.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")
        self._tools[name] = ToolDef(
            name=name,
            description=description,
            parameters_schema=parameters_schema,
            handler=handler,
            args_model=args_model,
        )
        logger.debug("Registered tool: %s", name)

    def get_tool(self, name: str) -> ToolDef | None:
        """Look up a tool by name.

        Returns:
            The :class:`ToolDef` if found, else ``None``.
        """
        return self._tools.get(name)

    def list_tools(self) -> list[ToolDef]:
        """Return all registered tools in registration order."""
        return list(self._tools.values())

    def get_tools_for_llm(self) -> list[dict[str, Any]]:
        """Export tool schemas in OpenAI function-calling format.

        Returns a list of dicts, each with::

            {
                "type": "function",
                "function": {
                    "name": "...",
                    "description": "...",
                    "parameters": { ... JSON Schema ... }
                }
            }

        This format is used by OpenAI, Azure OpenAI, Ollama and (after
        conversion) Anthropic.
        """
        return [
            {
                "type": "function",
                "function": {
                    "name": tool_def.name,
                    "description": tool_def.description,
                    "parameters": tool_def.parameters_schema,
                },
            }
            for tool_def in self._tools.values()
        ]

    async def dispatch(self, call: ToolCall, context: ToolContext) -> str:
        """Execute a model-issued tool call and return its JSON payload.

        Args:
            call: The tool call as parsed from the model response.
            context: Store and identity for this request.

        Returns:
            Compact JSON text for the tool turn.  Failures are reported as
            ``{"error": "..."}`` rather than raised.
        """
        tool_def = self._tools.get(call.name)
        if tool_def is None:
            logger.warning("Model requested unknown tool %r", call.name)
            return to_json({"error": f"Unknown function: {call.name}"})

        if call.parse_error:
            logger.warning("Unparseable arguments for %s: %s", call.name, call.parse_error)
            return to_json({"error": f"Invalid arguments for {call.name}: {call.parse_error}"})

        try:
            args = tool_def.args_model.model_validate(call.arguments)
        except ValidationError as exc:
            logger.warning("Invalid arguments for %s: %s", call.name, call.arguments)
            return to_json(
                {"error": f"Invalid arguments for {call.name}: {_describe_errors(exc)}"}
            )

        logger.info("Executing tool: %s(%s)", call.name, call.arguments)
        try:
            result = await tool_def.handler(context, args)
        except ToolError as exc:
            logger.warning("Tool %s failed: %s", call.name, exc)
            return to_json({"error": str(exc)})
        except Exception as exc:
            logger.exception("Error executing tool %s", call.name)
            return to_json({"error": str(exc)})

        return to_json(result)


def _describe_errors(exc: ValidationError) -> str:
    """Flatten a pydantic error into ``field: message; ...`` form."""
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error["loc"]) or "arguments"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


# ── Global registry instance ──────────────────────────────────────────────────
# Tools register themselves on import via the decorator.

default_registry = ToolRegistry()
