"""
History & Summary Query Service
Paginated reads, timeline reconstruction, notes and aggregate summaries over DLQ records
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from dlq_intel.errors import ErrorCode, NotFoundError
from dlq_intel.models import DlqRecord, DlqStatus, ReplayHistoryRecord, utc_now
from dlq_intel.store import HistoryStore, RecordFilter

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE = 50
TREND_DAYS = 30
TOP_ENTITIES = 20


@dataclass
class PagedResult:
    """One page of DLQ records"""

    items: List[DlqRecord]
    total_count: int
    page: int
    page_size: int

    @property
    def has_next_page(self) -> bool:
        return self.page * self.page_size < self.total_count

    @property
    def has_previous_page(self) -> bool:
        return self.page > 1


@dataclass
class RecordDetail:
    """DLQ record with its full replay history"""

    record: DlqRecord
    replay_history: List[ReplayHistoryRecord]


class TimelineEventType(str, Enum):
    """Kinds of synthesized timeline events"""

    ENQUEUED = "Enqueued"
    DEAD_LETTERED = "DeadLettered"
    DETECTED = "Detected"
    REPLAYED_SUCCESS = "ReplayedSuccess"
    REPLAYED_FAILED = "ReplayedFailed"
    STATUS_CHANGED = "StatusChanged"
    ARCHIVED = "Archived"


@dataclass
class TimelineEvent:
    timestamp: datetime
    event_type: TimelineEventType
    description: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "eventType": self.event_type.value,
            "description": self.description,
            "details": self.details,
        }


@dataclass
class DailyTrend:
    day: date
    new_count: int = 0
    resolved_count: int = 0


@dataclass
class DlqSummary:
    """
    Aggregate view of DLQ records

    Category and entity breakdowns only count Active records.
    """

    total_count: int
    active_count: int
    replayed_count: int
    replay_failed_count: int
    archived_count: int
    by_category: Dict[str, int]
    by_entity: List[Tuple[str, int]]
    oldest_detected_at: Optional[datetime]
    newest_detected_at: Optional[datetime]
    daily_trend: List[DailyTrend]


def build_timeline(record: DlqRecord, history: List[ReplayHistoryRecord]) -> List[TimelineEvent]:
    """
    Synthesize a chronological event list from a record and its replay history

    Args:
        record: DLQ record
        history: Replay attempts of the record

    Returns:
        Events sorted by timestamp
    """
    events = [
        TimelineEvent(
            timestamp=record.enqueued_at,
            event_type=TimelineEventType.ENQUEUED,
            description=f"Message enqueued to {record.entity_name}",
            details={"entity": record.entity_name, "messageId": record.message_id},
        )
    ]

    if record.dead_lettered_at is not None:
        events.append(
            TimelineEvent(
                timestamp=record.dead_lettered_at,
                event_type=TimelineEventType.DEAD_LETTERED,
                description=f"Dead-lettered: {record.dead_letter_reason or 'unknown reason'}",
                details={
                    "reason": record.dead_letter_reason,
                    "deliveryCount": record.delivery_count,
                    "errorDescription": record.dead_letter_description,
                },
            )
        )

    events.append(
        TimelineEvent(
            timestamp=record.detected_at,
            event_type=TimelineEventType.DETECTED,
            description=f"Detected and categorized as {record.failure_category.value}",
            details={
                "category": record.failure_category.value,
                "confidence": f"{record.category_confidence:.0%}",
            },
        )
    )

    for entry in history:
        events.append(
            TimelineEvent(
                timestamp=entry.replayed_at,
                event_type=(
                    TimelineEventType.REPLAYED_SUCCESS
                    if entry.succeeded
                    else TimelineEventType.REPLAYED_FAILED
                ),
                description=f"Replay to {entry.replayed_to}: {entry.outcome.value}",
                details={
                    "strategy": entry.strategy.value,
                    "replayedBy": entry.replayed_by,
                    "outcome": entry.outcome.value,
                    "error": entry.error_details,
                },
            )
        )

    # Failed replays leave replayed_at unset; the last attempt marks the change
    status_changed_at = record.replayed_at
    if status_changed_at is None and record.status == DlqStatus.REPLAY_FAILED and history:
        status_changed_at = max(entry.replayed_at for entry in history)

    if status_changed_at is not None:
        events.append(
            TimelineEvent(
                timestamp=status_changed_at,
                event_type=TimelineEventType.STATUS_CHANGED,
                description=f"Status changed to {record.status.value}",
                details={"status": record.status.value},
            )
        )

    if record.archived_at is not None:
        events.append(
            TimelineEvent(
                timestamp=record.archived_at,
                event_type=TimelineEventType.ARCHIVED,
                description="Record archived",
                details={"status": record.status.value},
            )
        )

    # sorted() is stable, so same-instant events keep their logical order
    return sorted(events, key=lambda e: e.timestamp)


def summarize(records: List[DlqRecord], today: date, days: int = TREND_DAYS) -> DlqSummary:
    """
    Aggregate counts, breakdowns and a dense daily trend

    Args:
        records: Records to aggregate
        today: Last day of the trend (UTC)
        days: Trend length in days

    Returns:
        DlqSummary
    """
    statuses = Counter(r.status for r in records)
    active = [r for r in records if r.is_active]

    by_category = Counter(r.failure_category.value for r in active)
    by_entity = Counter(r.entity_name for r in active).most_common(TOP_ENTITIES)

    start = today - timedelta(days=days - 1)
    trend = {start + timedelta(days=i): DailyTrend(start + timedelta(days=i)) for i in range(days)}
    for record in records:
        detected_day = record.detected_at.date()
        if detected_day in trend:
            trend[detected_day].new_count += 1
        if record.replayed_at is not None:
            resolved_day = record.replayed_at.date()
            if resolved_day in trend:
                trend[resolved_day].resolved_count += 1

    detected = [r.detected_at for r in records]
    return DlqSummary(
        total_count=len(records),
        active_count=statuses[DlqStatus.ACTIVE],
        replayed_count=statuses[DlqStatus.REPLAYED],
        replay_failed_count=statuses[DlqStatus.REPLAY_FAILED],
        archived_count=statuses[DlqStatus.ARCHIVED],
        by_category=dict(by_category),
        by_entity=by_entity,
        oldest_detected_at=min(detected) if detected else None,
        newest_detected_at=max(detected) if detected else None,
        daily_trend=list(trend.values()),
    )


class HistoryQueryService:
    """Read-side service over the history store"""

    def __init__(
        self,
        store: HistoryStore,
        max_page_size: int = MAX_PAGE_SIZE,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.max_page_size = max_page_size
        self.default_page_size = default_page_size
        self._clock = clock

    async def list_records(
        self,
        record_filter: RecordFilter,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> PagedResult:
        """
        Filtered records, most recently detected first

        Page is at least 1; page size is clamped to [1, max_page_size].
        """
        page = max(1, page)
        page_size = max(1, min(page_size or self.default_page_size, self.max_page_size))

        items, total = await self.store.list_records(
            record_filter, offset=(page - 1) * page_size, limit=page_size
        )
        return PagedResult(items=items, total_count=total, page=page, page_size=page_size)

    async def get_record(self, record_id: int) -> RecordDetail:
        record = await self._require_record(record_id)
        history = await self.store.get_replay_history(record_id)
        return RecordDetail(record=record, replay_history=history)

    async def get_timeline(self, record_id: int) -> List[TimelineEvent]:
        detail = await self.get_record(record_id)
        return build_timeline(detail.record, detail.replay_history)

    async def update_notes(self, record_id: int, notes: Optional[str]) -> DlqRecord:
        """Overwrite a record's notes (idempotent)"""
        record = await self.store.update_notes(record_id, notes)
        if record is None:
            raise NotFoundError(f"DLQ record {record_id} not found", code=ErrorCode.DLQ_NOT_FOUND)
        logger.info("DLQ record notes updated", record_id=record_id)
        return record

    async def get_summary(self, namespace_id: Optional[str] = None) -> DlqSummary:
        records, _ = await self.store.list_records(RecordFilter(namespace_id=namespace_id))
        return summarize(records, today=self._clock().date())

    async def _require_record(self, record_id: int) -> DlqRecord:
        record = await self.store.get_record(record_id)
        if record is None:
            raise NotFoundError(f"DLQ record {record_id} not found", code=ErrorCode.DLQ_NOT_FOUND)
        return record
