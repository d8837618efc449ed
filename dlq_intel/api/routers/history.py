"""
History Router - DLQ record browsing, timelines, notes, summary and export
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response

from dlq_intel.api.dependencies import ApiServices, get_services
from dlq_intel.api.schemas import NotesRequest, detail_to_dict, page_to_dict, summary_to_dict
from dlq_intel.history import ExportFormat
from dlq_intel.models import DlqStatus, FailureCategory
from dlq_intel.store import RecordFilter

router = APIRouter(prefix="/api/v1/dlq", tags=["history"])


def record_filter(
    namespace_id: Optional[str] = Query(default=None, alias="namespaceId"),
    entity_name: Optional[str] = Query(default=None, alias="entityName", description="Substring match"),
    detected_from: Optional[datetime] = Query(default=None, alias="from"),
    detected_to: Optional[datetime] = Query(default=None, alias="to"),
    status: Optional[DlqStatus] = Query(default=None),
    category: Optional[FailureCategory] = Query(default=None),
) -> RecordFilter:
    return RecordFilter(
        namespace_id=namespace_id,
        entity_name=entity_name,
        detected_from=detected_from,
        detected_to=detected_to,
        status=status,
        category=category,
    )


@router.get("/history")
async def list_history(
    filters: RecordFilter = Depends(record_filter),
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, alias="pageSize", ge=1),
    services: ApiServices = Depends(get_services),
) -> Dict[str, Any]:
    """Paginated DLQ records, most recently detected first"""
    result = await services.queries.list_records(filters, page=page, page_size=page_size)
    return page_to_dict(result)


@router.get("/history/{record_id}")
async def get_history_record(
    record_id: int, services: ApiServices = Depends(get_services)
) -> Dict[str, Any]:
    detail = await services.queries.get_record(record_id)
    return detail_to_dict(detail)


@router.get("/history/{record_id}/timeline")
async def get_history_timeline(
    record_id: int, services: ApiServices = Depends(get_services)
) -> List[Dict[str, Any]]:
    events = await services.queries.get_timeline(record_id)
    return [event.to_dict() for event in events]


@router.post("/history/{record_id}/notes")
async def update_history_notes(
    record_id: int,
    body: NotesRequest,
    services: ApiServices = Depends(get_services),
) -> Dict[str, Any]:
    record = await services.queries.update_notes(record_id, body.notes)
    return record.to_dict()


@router.get("/export")
async def export_history(
    export_format: ExportFormat = Query(default=ExportFormat.JSON, alias="format"),
    filters: RecordFilter = Depends(record_filter),
    services: ApiServices = Depends(get_services),
) -> Response:
    """Bounded bulk export as JSON or CSV"""
    result = await services.exporter.export(filters, export_format)
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Row-Count": str(result.row_count),
        },
    )


@router.get("/summary")
async def get_summary(
    namespace_id: Optional[str] = Query(default=None, alias="namespaceId"),
    services: ApiServices = Depends(get_services),
) -> Dict[str, Any]:
    summary = await services.queries.get_summary(namespace_id)
    return summary_to_dict(summary)
