"""
Service container and request-scoped helpers shared by the routers
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import structlog
from fastapi import Request

from dlq_intel.history import HistoryExporter, HistoryQueryService
from dlq_intel.observability.health import HealthStatus
from dlq_intel.replay import ReplayExecutor
from dlq_intel.rules import RuleService
from dlq_intel.scanner import ScanScheduler
from dlq_intel.store import HistoryStore

logger = structlog.get_logger(__name__)

DISCONNECT_POLL_SECONDS = 0.5


@dataclass
class ApiServices:
    """Everything the HTTP layer needs, built once at startup"""

    store: HistoryStore
    queries: HistoryQueryService
    exporter: HistoryExporter
    rules: RuleService
    replay: ReplayExecutor
    health: HealthStatus
    scheduler: Optional[ScanScheduler] = None


def get_services(request: Request) -> ApiServices:
    return request.app.state.services


@asynccontextmanager
async def cancel_on_disconnect(request: Request) -> AsyncIterator[asyncio.Event]:
    """
    Yield an event that is set when the client goes away

    Long-running batch operations pass it down as their cancellation signal.
    """
    cancel_event = asyncio.Event()

    async def watch() -> None:
        while not cancel_event.is_set():
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling request", path=request.url.path)
                cancel_event.set()
                return
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)

    watcher = asyncio.create_task(watch())
    try:
        yield cancel_event
    finally:
        watcher.cancel()
        with suppress(asyncio.CancelledError):
            await watcher
