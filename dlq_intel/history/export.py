"""
Bulk Export
Renders filtered DLQ records as JSON or CSV, bounded by a row limit
"""

import csv
import io
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Sequence, Tuple

import structlog

from dlq_intel.models import DlqRecord
from dlq_intel.store import HistoryStore, RecordFilter

logger = structlog.get_logger(__name__)

EXPORT_MAX_ROWS = 10000


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


def _iso(value) -> str:
    return value.isoformat() if value is not None else ""


CSV_COLUMNS: Tuple[Tuple[str, Callable[[DlqRecord], Any]], ...] = (
    ("Id", lambda r: r.id),
    ("MessageId", lambda r: r.message_id),
    ("SequenceNumber", lambda r: r.sequence_number),
    ("EntityName", lambda r: r.entity_name),
    ("EntityType", lambda r: r.entity_kind.value),
    ("EnqueuedTimeUtc", lambda r: _iso(r.enqueued_at)),
    ("DeadLetterTimeUtc", lambda r: _iso(r.dead_lettered_at)),
    ("DetectedAtUtc", lambda r: _iso(r.detected_at)),
    ("DeadLetterReason", lambda r: r.dead_letter_reason or ""),
    ("DeliveryCount", lambda r: r.delivery_count),
    ("FailureCategory", lambda r: r.failure_category.value),
    ("Status", lambda r: r.status.value),
    ("BodyPreview", lambda r: r.body_preview or ""),
)


@dataclass
class ExportResult:
    """Rendered export payload"""

    content: str
    media_type: str
    filename: str
    row_count: int


def records_to_csv(records: Sequence[DlqRecord]) -> str:
    """
    Render records as RFC 4180 CSV with a header row

    Fields containing delimiters, quotes or line breaks are quoted.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL)
    writer.writerow([name for name, _ in CSV_COLUMNS])
    for record in records:
        writer.writerow([getter(record) for _, getter in CSV_COLUMNS])
    return buffer.getvalue()


def records_to_json(records: Sequence[DlqRecord]) -> str:
    return json.dumps([record.to_dict() for record in records])


_RENDERERS: Dict[ExportFormat, Tuple[Callable[[Sequence[DlqRecord]], str], str]] = {
    ExportFormat.JSON: (records_to_json, "application/json"),
    ExportFormat.CSV: (records_to_csv, "text/csv"),
}


class HistoryExporter:
    """Bounded bulk export of DLQ records"""

    def __init__(self, store: HistoryStore, max_rows: int = EXPORT_MAX_ROWS):
        self.store = store
        self.max_rows = max_rows

    async def export(self, record_filter: RecordFilter, export_format: ExportFormat) -> ExportResult:
        """
        Export filtered records, most recently detected first

        Args:
            record_filter: Filter to apply
            export_format: json or csv

        Returns:
            ExportResult with the rendered payload
        """
        records: List[DlqRecord]
        records, total = await self.store.list_records(record_filter, limit=self.max_rows)
        if total > len(records):
            logger.warning(
                "Export truncated at row limit",
                total=total,
                exported=len(records),
                max_rows=self.max_rows,
            )

        render, media_type = _RENDERERS[export_format]
        return ExportResult(
            content=render(records),
            media_type=media_type,
            filename=f"dlq-export.{export_format.value}",
            row_count=len(records),
        )
