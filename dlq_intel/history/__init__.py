"""
History queries: pagination, timelines, summaries and bulk export
"""

from dlq_intel.history.export import (
    CSV_COLUMNS,
    ExportFormat,
    ExportResult,
    HistoryExporter,
    records_to_csv,
    records_to_json,
)
from dlq_intel.history.query import (
    DailyTrend,
    DlqSummary,
    HistoryQueryService,
    PagedResult,
    RecordDetail,
    TimelineEvent,
    TimelineEventType,
    build_timeline,
    summarize,
)

__all__ = [
    "CSV_COLUMNS",
    "ExportFormat",
    "ExportResult",
    "HistoryExporter",
    "records_to_csv",
    "records_to_json",
    "DailyTrend",
    "DlqSummary",
    "HistoryQueryService",
    "PagedResult",
    "RecordDetail",
    "TimelineEvent",
    "TimelineEventType",
    "build_timeline",
    "summarize",
]
