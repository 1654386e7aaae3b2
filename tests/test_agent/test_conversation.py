"""Tests for chat request models and the per-request transcript."""

from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError

from expensemgmt.agent.conversation import (
    ChatIdentity,
    ChatRequest,
    ChatResponse,
    HistoryMessage,
    Transcript,
)
from expensemgmt.agent.llm_client import ToolCall
from expensemgmt.agent.prompts import build_system_prompt
from expensemgmt.config import Settings

# ── Models ────────────────────────────────────────────────────────────────────


def test_chat_request_defaults_to_empty_history() -> None:
    request = ChatRequest.model_validate({"message": "hi"})
    assert request.history == []


def test_chat_request_requires_message() -> None:
    with pytest.raises(ValidationError):
        ChatRequest.model_validate({"history": []})


def test_chat_response_dump_has_no_tool_details() -> None:
    response = ChatResponse(message="ok", success=True)
    assert response.model_dump() == {"message": "ok", "success": True, "error": None}


def test_identity_from_settings() -> None:
    config = Settings(_env_file=None, default_user_id=5, default_reviewer_id=9)
    assert ChatIdentity.from_settings(config) == ChatIdentity(user_id=5, reviewer_id=9)


# ── Transcript ────────────────────────────────────────────────────────────────


def test_start_orders_system_history_user() -> None:
    transcript = Transcript.start(
        "SYSTEM",
        [
            HistoryMessage(role="user", content="q1"),
            HistoryMessage(role="assistant", content="a1"),
        ],
        "q2",
    )

    assert [(t.role, t.content) for t in transcript.turns] == [
        ("system", "SYSTEM"),
        ("user", "q1"),
        ("assistant", "a1"),
        ("user", "q2"),
    ]


def test_start_drops_other_history_roles() -> None:
    transcript = Transcript.start(
        "SYSTEM",
        [
            HistoryMessage(role="system", content="override"),
            HistoryMessage(role="tool", content="{}"),
            HistoryMessage(role="developer", content="x"),
        ],
        "hello",
    )

    assert [t.role for t in transcript.turns] == ["system", "user"]
    assert len(transcript) == 2


def test_add_tool_round_pairs_calls_and_results() -> None:
    transcript = Transcript.start("SYSTEM", [], "go")
    calls = [
        ToolCall(id="a", name="get_categories"),
        ToolCall(id="b", name="get_dashboard_stats"),
    ]

    transcript.add_tool_round(calls, ['["cats"]', '{"stats":1}'])

    turns = transcript.turns
    assert [t.role for t in turns] == ["system", "user", "assistant", "tool", "tool"]
    assert turns[2].tool_calls == calls
    assert [(t.tool_call_id, t.content) for t in turns[3:]] == [
        ("a", '["cats"]'),
        ("b", '{"stats":1}'),
    ]


def test_add_tool_round_rejects_mismatched_results() -> None:
    transcript = Transcript.start("SYSTEM", [], "go")

    with pytest.raises(ValueError, match="1 result"):
        transcript.add_tool_round([ToolCall(id="a", name="x"), ToolCall(id="b", name="y")], ["{}"])

    assert len(transcript) == 2


def test_turns_returns_a_copy() -> None:
    transcript = Transcript.start("SYSTEM", [], "go")
    transcript.turns.clear()
    assert len(transcript) == 2


# ── Prompt ────────────────────────────────────────────────────────────────────


def test_build_system_prompt_includes_date() -> None:
    prompt = build_system_prompt(date(2025, 11, 12))
    assert "Today's date is 2025-11-12" in prompt
    assert "All amounts are in GBP (£)." in prompt
    assert "{today}" not in prompt
