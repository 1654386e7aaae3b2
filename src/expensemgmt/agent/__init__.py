"""Chat assistant layer.

Provides the entry point for the HTTP layer:

- :func:`process_chat` — run a :class:`~expensemgmt.agent.conversation.ChatRequest`
  through the function-calling orchestrator and return a
  :class:`~expensemgmt.agent.conversation.ChatResponse`.

The LLM client and orchestrator are module-level singletons created lazily
from settings; tests swap them with :func:`set_llm_client` and
:func:`set_orchestrator`.
"""

from __future__ import annotations

import logging

from expensemgmt.agent.conversation import ChatIdentity, ChatRequest, ChatResponse
from expensemgmt.agent.llm_client import LLMClient, create_llm_client
from expensemgmt.agent.orchestrator import ChatOrchestrator
from expensemgmt.config import settings
from expensemgmt.store import ExpenseStore, create_store

logger = logging.getLogger(__name__)

__all__ = [
    "ChatIdentity",
    "ChatOrchestrator",
    "ChatRequest",
    "ChatResponse",
    "get_llm_client",
    "get_orchestrator",
    "process_chat",
    "set_llm_client",
    "set_orchestrator",
]

# Module-level LLM client, lazily initialized (None when not configured).
_llm_client: LLMClient | None = None

# Module-level orchestrator, lazily initialized.
_orchestrator: ChatOrchestrator | None = None


def get_llm_client() -> LLMClient | None:
    """Return the module-level LLM client, or ``None`` if chat is not configured."""
    global _llm_client
    if _llm_client is None and settings.chat_configured:
        _llm_client = create_llm_client(settings)
    return _llm_client


def set_llm_client(client: LLMClient | None) -> None:
    """Override the module-level LLM client (useful for testing)."""
    global _llm_client, _orchestrator
    _llm_client = client
    # Reset orchestrator so it picks up the new client.
    _orchestrator = None


def get_orchestrator(store: ExpenseStore | None = None) -> ChatOrchestrator:
    """Return the module-level orchestrator, creating it on first call.

    Args:
        store: Store for the tools; only used when the orchestrator is
            created (defaults to :func:`~expensemgmt.store.create_store`).
    """
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator(
            llm_client=get_llm_client(),
            store=store or create_store(),
        )
        if not _orchestrator.configured:
            logger.warning("No LLM provider configured; chat will return setup instructions")
    return _orchestrator


def set_orchestrator(orch: ChatOrchestrator | None) -> None:
    """Override the module-level orchestrator (useful for testing)."""
    global _orchestrator
    _orchestrator = orch


async def process_chat(
    request: ChatRequest,
    identity: ChatIdentity | None = None,
) -> ChatResponse:
    """Answer a chat request with the module-level orchestrator."""
    return await get_orchestrator().handle(request, identity)
