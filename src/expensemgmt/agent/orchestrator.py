"""Chat orchestrator: the bounded function-calling loop.

For each request::

    transcript = [system, *history, user]
    response   = model(transcript, tools)
    while response has tool calls:
        dispatch every call of the round (concurrently by default)
        append assistant(tool_calls) + one tool turn per call
        response = model(transcript, tools)
    reply with response.content

Tool-call rounds are bounded by ``chat_max_tool_rounds``.  Tool failures
are isolated per call (they become an error payload in that call's tool
turn); model failures abort the request.  :meth:`ChatOrchestrator.handle`
never raises ``Exception`` to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import date
from typing import Any

from expensemgmt.agent.conversation import (
    ChatIdentity,
    ChatRequest,
    ChatResponse,
    Transcript,
)
from expensemgmt.agent.llm_client import LLMClient, LLMResponse, ToolCall
from expensemgmt.agent.prompts import (
    ERROR_REPLY,
    LLM_AUTH_ERROR,
    NOT_CONFIGURED_REPLY,
    build_system_prompt,
)
from expensemgmt.config import settings
from expensemgmt.store.base import ExpenseStore
from expensemgmt.tools import ToolContext, ToolRegistry, default_registry
from expensemgmt.tools.formatters import to_json

logger = logging.getLogger(__name__)


class ToolRoundLimitExceeded(RuntimeError):
    """The model kept requesting tools past the configured round bound."""


def _is_llm_auth_error(exc: BaseException) -> bool:
    """True if the exception looks like an LLM API auth error (401 / invalid key)."""
    msg = str(exc).lower()
    return "401" in msg or "invalid_api_key" in msg or "incorrect api key" in msg or "unauthorized" in msg


def _format_llm_response_for_log(response: LLMResponse, max_content_len: int = 500) -> str:
    """Format an LLM response for human-readable logging (no raw JSON)."""
    parts: list[str] = []
    if response.content and response.content.strip():
        text = response.content.strip()
        if len(text) > max_content_len:
            text = text[:max_content_len] + "..."
        parts.append(f"content: {text!r}")
    for tc in response.tool_calls:
        args = ", ".join(f"{k}={v!r}" for k, v in tc.arguments.items())
        parts.append(f"tool {tc.name}({args})")
    return " | ".join(parts) if parts else "(empty)"


# ── Orchestrator ──────────────────────────────────────────────────────────────


class ChatOrchestrator:
    """Runs chat requests against a model and the expense tools.

    Args:
        llm_client: Completion client, or ``None`` when no provider is
            configured (every request then gets the informational reply).
        store: Expense store the tools operate on.
        registry: Tool catalog (defaults to the module-level registry).
        max_tool_rounds: Round bound; defaults to ``settings.chat_max_tool_rounds``.
        llm_timeout: Seconds allowed per completion call.
        tool_timeout: Seconds allowed per tool dispatch.
        parallel_tool_calls: Dispatch a round's calls concurrently.
        today: Date provider for the system prompt.
    """

    def __init__(
        self,
        llm_client: LLMClient | None,
        store: ExpenseStore,
        registry: ToolRegistry | None = None,
        *,
        max_tool_rounds: int | None = None,
        llm_timeout: float | None = None,
        tool_timeout: float | None = None,
        parallel_tool_calls: bool | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._llm = llm_client
        self._store = store
        self._registry = registry or default_registry
        self._max_tool_rounds = (
            settings.chat_max_tool_rounds if max_tool_rounds is None else max_tool_rounds
        )
        self._llm_timeout = (
            settings.chat_llm_timeout_seconds if llm_timeout is None else llm_timeout
        )
        self._tool_timeout = (
            settings.chat_tool_timeout_seconds if tool_timeout is None else tool_timeout
        )
        self._parallel = (
            settings.chat_parallel_tool_calls
            if parallel_tool_calls is None
            else parallel_tool_calls
        )
        self._today = today

    @property
    def configured(self) -> bool:
        return self._llm is not None

    async def handle(
        self,
        request: ChatRequest,
        identity: ChatIdentity | None = None,
    ) -> ChatResponse:
        """Answer one chat request.

        Args:
            request: The user message plus prior user/assistant turns.
            identity: Acting user and reviewer; defaults from settings.

        Returns:
            A :class:`ChatResponse`.  Failures are reported through
            ``success=False`` and ``error`` rather than raised.
        """
        if self._llm is None:
            logger.info("Chat requested but no LLM provider is configured")
            return ChatResponse(message=NOT_CONFIGURED_REPLY, success=True)

        identity = identity or ChatIdentity.from_settings()
        transcript = Transcript.start(
            build_system_prompt(self._today()),
            request.history,
            request.message,
        )
        context = ToolContext(store=self._store, identity=identity)

        try:
            reply = await self._run(self._llm, transcript, context)
        except ToolRoundLimitExceeded as exc:
            logger.warning("%s", exc)
            return ChatResponse(message=ERROR_REPLY, success=False, error=str(exc))
        except Exception as exc:
            if _is_llm_auth_error(exc):
                logger.warning("LLM call failed: invalid or missing API key")
                return ChatResponse(message=ERROR_REPLY, success=False, error=LLM_AUTH_ERROR)
            logger.exception("Error in chat service")
            return ChatResponse(
                message=ERROR_REPLY,
                success=False,
                error=f"Error communicating with AI service: {exc}",
            )

        if not reply.strip():
            logger.warning("Model returned an empty final answer")
            return ChatResponse(
                message=ERROR_REPLY,
                success=False,
                error="The AI service returned an empty response",
            )
        return ChatResponse(message=reply, success=True)

    # ── Loop ──────────────────────────────────────────────────────────────

    async def _run(
        self,
        llm: LLMClient,
        transcript: Transcript,
        context: ToolContext,
    ) -> str:
        tools = self._registry.get_tools_for_llm()
        rounds = 0

        response = await self._complete(llm, transcript, tools)
        while response.tool_calls:
            if rounds >= self._max_tool_rounds:
                raise ToolRoundLimitExceeded(
                    f"Model requested tools for more than {self._max_tool_rounds} rounds"
                )
            rounds += 1
            results = await self._dispatch_round(response.tool_calls, context)
            transcript.add_tool_round(response.tool_calls, results, content=response.content)
            response = await self._complete(llm, transcript, tools)

        logger.debug("Chat resolved after %d tool round(s)", rounds)
        return response.content

    async def _complete(
        self,
        llm: LLMClient,
        transcript: Transcript,
        tools: list[dict[str, Any]],
    ) -> LLMResponse:
        try:
            response = await asyncio.wait_for(
                llm.chat(transcript.turns, tools),
                timeout=self._llm_timeout,
            )
        except TimeoutError:
            raise TimeoutError(f"LLM call timed out after {self._llm_timeout:g}s") from None

        logger.info(
            "LLM %s/%s (%s, %sms): %s",
            response.provider,
            response.model,
            response.finish_reason,
            response.latency_ms,
            _format_llm_response_for_log(response),
        )
        return response

    async def _dispatch_round(
        self,
        calls: Sequence[ToolCall],
        context: ToolContext,
    ) -> list[str]:
        """Run every call of one round; results keep the call order."""
        if self._parallel and len(calls) > 1:
            return list(await asyncio.gather(*(self._dispatch(c, context) for c in calls)))
        return [await self._dispatch(call, context) for call in calls]

    async def _dispatch(self, call: ToolCall, context: ToolContext) -> str:
        try:
            return await asyncio.wait_for(
                self._registry.dispatch(call, context),
                timeout=self._tool_timeout,
            )
        except TimeoutError:
            logger.warning("Tool %s timed out after %gs", call.name, self._tool_timeout)
            return to_json({"error": f"{call.name} timed out after {self._tool_timeout:g}s"})
