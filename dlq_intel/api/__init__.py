"""
HTTP API: FastAPI app factory, routers and error mapping
"""

from dlq_intel.api.app import create_app
from dlq_intel.api.dependencies import ApiServices, get_services
from dlq_intel.api.errors import STATUS_BY_ERROR_TYPE, setup_exception_handlers

__all__ = [
    "create_app",
    "ApiServices",
    "get_services",
    "STATUS_BY_ERROR_TYPE",
    "setup_exception_handlers",
]
