"""Expense management service with an LLM chat assistant."""
