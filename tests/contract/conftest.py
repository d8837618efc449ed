"""
Fixtures for HTTP contract tests
Builds the FastAPI app over the in-memory store and the fake broker
"""

import httpx
import pytest

from dlq_intel.api import ApiServices, create_app
from dlq_intel.history import HistoryExporter, HistoryQueryService
from dlq_intel.observability.health import HealthStatus
from dlq_intel.replay import HistoryRateLimiter, ReplayExecutor
from dlq_intel.rules import RuleEngine, RuleService


@pytest.fixture
def services(store, directory, client_cache) -> ApiServices:
    engine = RuleEngine()
    return ApiServices(
        store=store,
        queries=HistoryQueryService(store),
        exporter=HistoryExporter(store, max_rows=100),
        rules=RuleService(store, engine),
        replay=ReplayExecutor(
            store, engine, directory, client_cache, HistoryRateLimiter(store)
        ),
        health=HealthStatus(),
    )


@pytest.fixture
def app(services):
    return create_app(services)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
