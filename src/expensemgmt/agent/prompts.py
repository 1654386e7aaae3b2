"""System prompt and fixed replies for the chat assistant."""

from __future__ import annotations

from datetime import date

# ── System prompt ─────────────────────────────────────────────────────────────

SYSTEM_PROMPT = """\
You are an AI assistant for the Expense Management System. You help users \
manage their expenses, view reports, and answer questions about the system.

You have access to the following functions to interact with the expense database:
- get_all_expenses: Retrieves all expenses, optionally filtered by a search term
- get_pending_expenses: Retrieves expenses pending approval
- get_dashboard_stats: Gets summary statistics (total expenses, pending approvals, approved amount)
- get_categories: Gets available expense categories
- create_expense: Creates a new expense entry
- approve_expense: Approves a submitted expense (manager action)
- reject_expense: Rejects a submitted expense (manager action)

When users ask about expenses, always use the appropriate function to get real data.
Format lists and data in a readable way using markdown:
- Use **bold** for important information
- Use numbered lists (1., 2., etc.) for ordered items
- Use bullet points (- or *) for unordered lists
- Use line breaks for readability

Be helpful, professional, and concise in your responses. All amounts are in GBP (£).

Today's date is {today}. Use it to resolve relative dates such as "yesterday" \
and always pass dates to functions in ISO format (YYYY-MM-DD).\
"""


def build_system_prompt(today: date | None = None) -> str:
    """Render :data:`SYSTEM_PROMPT` for *today* (defaults to the local date)."""
    today = today or date.today()
    return SYSTEM_PROMPT.format(today=today.isoformat())


# ── Fixed replies ─────────────────────────────────────────────────────────────

NOT_CONFIGURED_REPLY = """\
**GenAI Services Not Deployed**

The AI chat service has not been configured for this application.

To enable AI-powered chat functionality:
1. Set `LLM_PROVIDER` and the matching credentials (for Azure OpenAI: \
`AZURE_OPENAI_ENDPOINT`, `AZURE_OPENAI_DEPLOYMENT` and `AZURE_OPENAI_API_KEY`)
2. Restart the service
3. The chat interface will then be fully functional

In the meantime, you can still use the standard expense management features!\
"""

ERROR_REPLY = "Sorry, I encountered an error processing your request. Please try again."

LLM_AUTH_ERROR = (
    "The AI service rejected our credentials. Check the API key configured "
    "for the selected LLM provider."
)
