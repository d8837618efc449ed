"""
Health Router - liveness and dependency status
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dlq_intel.api.dependencies import ApiServices, get_services
from dlq_intel.observability.health import update_health_status

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(services: ApiServices = Depends(get_services)) -> JSONResponse:
    """200 when the store and scheduler are up, 503 otherwise"""
    body = await update_health_status(services.health, services.store, services.scheduler)
    status_code = 200 if body["status"] == "healthy" else 503
    return JSONResponse(status_code=status_code, content=body)
