"""
FastAPI application factory
"""

from fastapi import FastAPI

from dlq_intel import __version__
from dlq_intel.api.dependencies import ApiServices
from dlq_intel.api.errors import setup_exception_handlers
from dlq_intel.api.routers import health_router, history_router, rules_router


def create_app(services: ApiServices) -> FastAPI:
    """
    Build the HTTP API around already-constructed services

    Lifecycle of the services (store connection, scheduler) belongs to the
    caller; the app only routes requests to them.

    Args:
        services: Service container exposed to routes via app.state

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="DLQ Intelligence API",
        description="Dead-letter history, failure categorization and rule-based auto-replay",
        version=__version__,
    )
    app.state.services = services

    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(history_router)
    app.include_router(rules_router)

    return app
