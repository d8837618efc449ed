"""
API routers
"""

from dlq_intel.api.routers.health import router as health_router
from dlq_intel.api.routers.history import router as history_router
from dlq_intel.api.routers.rules import router as rules_router

__all__ = ["health_router", "history_router", "rules_router"]
