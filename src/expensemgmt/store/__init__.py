"""Expense persistence and approval workflow.

:func:`create_store` picks the implementation from configuration: the
stored-procedure store when ``DATABASE_URL`` is set, otherwise the in-memory
demo store.
"""

from __future__ import annotations

import logging

from expensemgmt.config import Settings, settings
from expensemgmt.store.base import ExpenseStore, StoreResult
from expensemgmt.store.demo import DemoExpenseStore
from expensemgmt.store.sql import SqlExpenseStore

logger = logging.getLogger(__name__)

__all__ = [
    "DemoExpenseStore",
    "ExpenseStore",
    "SqlExpenseStore",
    "StoreResult",
    "create_store",
]


def create_store(config: Settings | None = None) -> ExpenseStore:
    """Build the expense store for the current configuration."""
    config = config or settings
    if not config.database_url:
        logger.warning("DATABASE_URL is not set; using in-memory demo data")
        return DemoExpenseStore()

    from expensemgmt.db.session import get_engine, get_session

    dialect = get_engine().dialect.name
    logger.info("Using stored-procedure expense store (%s)", dialect)
    return SqlExpenseStore(get_session, dialect=dialect)
