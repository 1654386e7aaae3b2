"""aiohttp handlers for the chat endpoint and the expense REST API.

Status conventions:

- store failure → 503 ``{"error": ...}``
- unknown expense, or a lifecycle transition that does not apply → 404
- malformed JSON or an invalid body → 400
- ``POST /api/chat`` answers 200 for any well-formed request; chat failures
  are reported inside the :class:`~expensemgmt.agent.conversation.ChatResponse`

Acting identity defaults to the configured user/reviewer and can be
overridden per request with the ``X-User-Id`` and ``X-Reviewer-Id`` headers.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from aiohttp import web
from pydantic import BaseModel, ValidationError

from expensemgmt.agent.conversation import ChatIdentity, ChatRequest
from expensemgmt.agent.orchestrator import ChatOrchestrator
from expensemgmt.config import settings
from expensemgmt.store.base import ExpenseStore, StoreResult
from expensemgmt.store.models import ExpenseCreate, ExpenseUpdate

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
REVIEWER_HEADER = "X-Reviewer-Id"


# ── Helpers ───────────────────────────────────────────────────────────────────


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


def _store_response(result: StoreResult[Any], status: int = 200) -> web.Response:
    """Render a read result, or a 503 if the store failed."""
    if not result.ok:
        return _error(result.error or "Expense store unavailable", 503)
    return web.json_response(_dump(result.value), status=status)


def _transition_response(result: StoreResult[bool], expense_id: int, action: str) -> web.Response:
    if not result.ok:
        return _error(result.error or "Expense store unavailable", 503)
    if not result.value:
        return _error(f"Expense {expense_id} not found or cannot be {action}", 404)
    return web.json_response({"success": True})


def _header_int(request: web.Request, name: str, default: int) -> int:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": f"{name} must be an integer"}),
            content_type="application/json",
        ) from None


def request_identity(request: web.Request) -> ChatIdentity:
    """Acting identity for *request* (headers override configured defaults)."""
    return ChatIdentity(
        user_id=_header_int(request, USER_HEADER, settings.default_user_id),
        reviewer_id=_header_int(request, REVIEWER_HEADER, settings.default_reviewer_id),
    )


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON"}),
            content_type="application/json",
        ) from None


def _expense_id(request: web.Request) -> int:
    return int(request.match_info["expense_id"])


def _store(request: web.Request) -> ExpenseStore:
    return request.app["store"]


# ── Chat ──────────────────────────────────────────────────────────────────────


async def handle_chat(request: web.Request) -> web.Response:
    """POST /api/chat — run one chat request."""
    body = await _read_json(request)
    try:
        chat_request = ChatRequest.model_validate(body)
    except ValidationError as exc:
        return _error(f"Invalid chat request: {exc.error_count()} error(s)", 400)

    orchestrator: ChatOrchestrator = request.app["orchestrator"]
    response = await orchestrator.handle(chat_request, request_identity(request))
    return web.json_response(response.model_dump())


async def handle_chat_status(request: web.Request) -> web.Response:
    """GET /api/chat/status — whether a model provider is configured."""
    orchestrator: ChatOrchestrator = request.app["orchestrator"]
    return web.json_response({"configured": orchestrator.configured})


# ── Expenses ──────────────────────────────────────────────────────────────────


async def list_expenses(request: web.Request) -> web.Response:
    filter_text = request.query.get("filter") or None
    return _store_response(await _store(request).list_expenses(filter_text))


async def list_pending_expenses(request: web.Request) -> web.Response:
    return _store_response(await _store(request).list_pending_expenses())


async def get_expense(request: web.Request) -> web.Response:
    expense_id = _expense_id(request)
    result = await _store(request).get_expense(expense_id)
    if result.ok and result.value is None:
        return _error(f"Expense {expense_id} not found", 404)
    return _store_response(result)


async def create_expense(request: web.Request) -> web.Response:
    body = await _read_json(request)
    try:
        data = ExpenseCreate.model_validate(body)
    except ValidationError as exc:
        return _error(f"Invalid expense: {exc.error_count()} error(s)", 400)

    identity = request_identity(request)
    result = await _store(request).create_expense(data, identity.user_id)
    if result.ok and result.value is not None:
        logger.info("Created expense %d for user %d", result.value.expense_id, identity.user_id)
    return _store_response(result, status=201)


async def update_expense(request: web.Request) -> web.Response:
    expense_id = _expense_id(request)
    body = await _read_json(request)
    try:
        data = ExpenseUpdate.model_validate(body)
    except ValidationError as exc:
        return _error(f"Invalid expense: {exc.error_count()} error(s)", 400)
    result = await _store(request).update_expense(expense_id, data)
    return _transition_response(result, expense_id, "updated")


async def submit_expense(request: web.Request) -> web.Response:
    expense_id = _expense_id(request)
    result = await _store(request).submit_expense(expense_id)
    return _transition_response(result, expense_id, "submitted")


async def approve_expense(request: web.Request) -> web.Response:
    expense_id = _expense_id(request)
    identity = request_identity(request)
    result = await _store(request).approve_expense(expense_id, identity.reviewer_id)
    return _transition_response(result, expense_id, "approved")


async def reject_expense(request: web.Request) -> web.Response:
    expense_id = _expense_id(request)
    identity = request_identity(request)
    result = await _store(request).reject_expense(expense_id, identity.reviewer_id)
    return _transition_response(result, expense_id, "rejected")


async def delete_expense(request: web.Request) -> web.Response:
    expense_id = _expense_id(request)
    result = await _store(request).delete_expense(expense_id)
    return _transition_response(result, expense_id, "deleted")


# ── Reference data ────────────────────────────────────────────────────────────


async def list_categories(request: web.Request) -> web.Response:
    return _store_response(await _store(request).list_categories())


async def list_statuses(request: web.Request) -> web.Response:
    return _store_response(await _store(request).list_statuses())


async def list_users(request: web.Request) -> web.Response:
    return _store_response(await _store(request).list_users())


async def dashboard_stats(request: web.Request) -> web.Response:
    result = await _store(request).get_dashboard_stats()
    if not result.ok or result.value is None:
        return _error(result.error or "Expense store unavailable", 503)
    stats = result.value
    return web.json_response(
        {
            **stats.model_dump(mode="json"),
            "approved_amount": str(stats.approved_amount),
        }
    )


# ── Application ───────────────────────────────────────────────────────────────


def create_app(store: ExpenseStore, orchestrator: ChatOrchestrator) -> web.Application:
    """Build the aiohttp application.

    Args:
        store: Expense store behind the REST API.
        orchestrator: Chat orchestrator behind ``/api/chat``.
    """
    app = web.Application()
    app["store"] = store
    app["orchestrator"] = orchestrator

    app.router.add_post("/api/chat", handle_chat)
    app.router.add_get("/api/chat/status", handle_chat_status)

    expense = r"/api/expenses/{expense_id:\d+}"
    app.router.add_get("/api/expenses", list_expenses)
    app.router.add_post("/api/expenses", create_expense)
    app.router.add_get("/api/expenses/pending", list_pending_expenses)
    app.router.add_get(expense, get_expense)
    app.router.add_put(expense, update_expense)
    app.router.add_delete(expense, delete_expense)
    app.router.add_post(expense + "/submit", submit_expense)
    app.router.add_post(expense + "/approve", approve_expense)
    app.router.add_post(expense + "/reject", reject_expense)

    app.router.add_get("/api/categories", list_categories)
    app.router.add_get("/api/statuses", list_statuses)
    app.router.add_get("/api/users", list_users)
    app.router.add_get("/api/dashboard/stats", dashboard_stats)

    return app
