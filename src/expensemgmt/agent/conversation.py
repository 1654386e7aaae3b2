"""Chat request/response models and the per-request transcript.

A :class:`Transcript` is built fresh for every chat request and discarded
once the reply is produced; nothing about a conversation survives between
requests other than the ``history`` the caller sends back.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from pydantic import BaseModel, Field

from expensemgmt.agent.llm_client import ChatMessage, ToolCall
from expensemgmt.config import Settings, settings

#: History roles that are replayed into the transcript; anything else is dropped.
HISTORY_ROLES = frozenset({"user", "assistant"})


class HistoryMessage(BaseModel):
    """A prior turn supplied by the caller."""

    role: str
    content: str = ""


class ChatRequest(BaseModel):
    """Inbound chat request."""

    message: str
    history: list[HistoryMessage] = Field(default_factory=list)


class ChatResponse(BaseModel):
    """Reply returned to the caller.

    Tool calls and raw tool output are never part of the response.
    """

    message: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class ChatIdentity:
    """Who is acting: the employee creating expenses and the reviewer
    recorded on approvals and rejections."""

    user_id: int
    reviewer_id: int

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> ChatIdentity:
        config = config or settings
        return cls(user_id=config.default_user_id, reviewer_id=config.default_reviewer_id)


class Transcript:
    """Ordered list of turns sent to the model for a single request.

    Keeps two properties true by construction: the system turn appears once
    and first, and every ``tool`` turn directly follows the assistant turn
    that issued its call id, in the order the calls were issued.
    """

    def __init__(self, system_prompt: str) -> None:
        self._turns: list[ChatMessage] = [ChatMessage(role="system", content=system_prompt)]

    @classmethod
    def start(
        cls,
        system_prompt: str,
        history: Sequence[HistoryMessage],
        message: str,
    ) -> Transcript:
        """Build ``[system, *history(user/assistant only), user(message)]``."""
        transcript = cls(system_prompt)
        for turn in history:
            if turn.role in HISTORY_ROLES:
                transcript._turns.append(ChatMessage(role=turn.role, content=turn.content))
        transcript._turns.append(ChatMessage(role="user", content=message))
        return transcript

    @property
    def turns(self) -> list[ChatMessage]:
        """A copy of the current turns."""
        return list(self._turns)

    def add_tool_round(
        self,
        calls: Sequence[ToolCall],
        results: Sequence[str],
        content: str = "",
    ) -> None:
        """Append one assistant turn carrying *calls*, then one tool turn per call.

        Raises:
            ValueError: If *results* does not pair up with *calls*.
        """
        if len(calls) != len(results):
            raise ValueError(
                f"Got {len(results)} result(s) for {len(calls)} tool call(s)"
            )
        self._turns.append(
            ChatMessage(role="assistant", content=content, tool_calls=list(calls))
        )
        for call, result in zip(calls, results):
            self._turns.append(ChatMessage(role="tool", content=result, tool_call_id=call.id))

    def __len__(self) -> int:
        return len(self._turns)
