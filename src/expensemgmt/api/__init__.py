"""HTTP surface: the chat endpoint and the expense REST API."""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web

from expensemgmt.agent import get_orchestrator
from expensemgmt.api.handlers import create_app
from expensemgmt.config import settings
from expensemgmt.db.session import dispose_engine
from expensemgmt.store import create_store

logger = logging.getLogger(__name__)

__all__ = ["create_app", "run_server"]


async def run_server() -> None:
    """Start the API server and serve until cancelled.

    This is the main coroutine invoked from ``__main__.py``.  It sets up
    logging, builds the store and orchestrator from settings, and serves
    on ``settings.webapp_host:settings.webapp_port``.
    """
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    store = create_store()
    app = create_app(store, get_orchestrator(store))

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.webapp_host, settings.webapp_port)
    await site.start()
    logger.info(
        "Expense API running on http://%s:%d",
        settings.webapp_host,
        settings.webapp_port,
    )

    try:
        await asyncio.Event().wait()
    finally:
        logger.info("Shutting down, disposing DB engine")
        await runner.cleanup()
        await dispose_engine()
