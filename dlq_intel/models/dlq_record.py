"""
DlqRecord Data Model - one persisted dead-letter observation
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


class FailureCategory(str, Enum):
    """Heuristic classification of why a message was dead-lettered"""

    UNKNOWN = "Unknown"
    TRANSIENT = "Transient"
    MAX_DELIVERY = "MaxDelivery"
    EXPIRED = "Expired"
    DATA_QUALITY = "DataQuality"
    AUTHORIZATION = "Authorization"
    PROCESSING_ERROR = "ProcessingError"
    RESOURCE_NOT_FOUND = "ResourceNotFound"
    QUOTA_EXCEEDED = "QuotaExceeded"


class DlqStatus(str, Enum):
    """Lifecycle status of a DLQ record"""

    ACTIVE = "Active"
    REPLAYED = "Replayed"
    REPLAY_FAILED = "ReplayFailed"
    ARCHIVED = "Archived"
    DISCARDED = "Discarded"


class EntityKind(str, Enum):
    """Kind of broker entity owning the dead-letter queue"""

    QUEUE = "Queue"
    SUBSCRIPTION = "Subscription"


# Categories that usually succeed when replayed as-is
RECOVERABLE_CATEGORIES = frozenset(
    {FailureCategory.TRANSIENT, FailureCategory.MAX_DELIVERY, FailureCategory.EXPIRED}
)


def subscription_entity_name(topic_name: str, subscription_name: str) -> str:
    """Fully qualified entity name of a topic subscription"""
    return f"{topic_name}/subscriptions/{subscription_name}"


@dataclass
class DlqRecord:
    """
    Dead-lettered message observed by the scanner

    The tuple (namespace_id, entity_name, sequence_number) is the dedup key.
    Only a bounded body preview and a content hash are stored, never the full body.

    Attributes:
        message_id: Broker message id (opaque)
        sequence_number: Per-entity sequence number
        body_hash: SHA-256 hex of the body, or "empty"
        body_preview: First characters of the body
        namespace_id: Owning namespace
        entity_name: Queue name or "topic/subscriptions/sub"
        entity_kind: Queue or Subscription
        topic_name: Parent topic for subscriptions
        enqueued_at: When the message was originally enqueued
        dead_lettered_at: When the message was dead-lettered (if known)
        detected_at: When the scanner first saw it
        dead_letter_reason: Broker-reported reason
        dead_letter_description: Broker-reported error description
        delivery_count: Delivery attempts before dead-lettering
        content_type: Message content type
        size_bytes: Body size
        application_properties: JSON-serialized property bag
        failure_category: Heuristic category
        category_confidence: Confidence in [0, 1]
        status: Lifecycle status
        replayed_at: Last replay time
        replay_success: Outcome of last replay
        resolved_at: When the message left the DLQ
        archived_at: When the record was archived
        user_notes: Operator notes
        correlation_id: Message correlation id
        session_id: Message session id
        id: Store-assigned identifier
    """

    message_id: str
    sequence_number: int
    namespace_id: str
    entity_name: str
    entity_kind: EntityKind
    enqueued_at: datetime
    body_hash: str = "empty"
    body_preview: Optional[str] = None
    topic_name: Optional[str] = None
    dead_lettered_at: Optional[datetime] = None
    detected_at: datetime = None
    dead_letter_reason: Optional[str] = None
    dead_letter_description: Optional[str] = None
    delivery_count: int = 0
    content_type: Optional[str] = None
    size_bytes: int = 0
    application_properties: Optional[str] = None
    failure_category: FailureCategory = FailureCategory.UNKNOWN
    category_confidence: float = 0.0
    status: DlqStatus = DlqStatus.ACTIVE
    replayed_at: Optional[datetime] = None
    replay_success: Optional[bool] = None
    resolved_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    user_notes: Optional[str] = None
    correlation_id: Optional[str] = None
    session_id: Optional[str] = None
    id: Optional[int] = None

    def __post_init__(self) -> None:
        """Validate DlqRecord after initialization"""
        if self.detected_at is None:
            self.detected_at = utc_now()

        if not self.entity_name:
            raise ValueError("entity_name must be non-empty")

        if not 0.0 <= self.category_confidence <= 1.0:
            raise ValueError("category_confidence must be within [0, 1]")

        if self.delivery_count < 0:
            raise ValueError("delivery_count must be non-negative")

    @property
    def dedup_key(self) -> tuple:
        """Unique key (namespace, entity, sequence number)"""
        return (self.namespace_id, self.entity_name, self.sequence_number)

    @property
    def is_active(self) -> bool:
        return self.status == DlqStatus.ACTIVE

    def mark_resolved(self, when: Optional[datetime] = None) -> None:
        """Message is no longer in the DLQ"""
        when = when or utc_now()
        self.status = DlqStatus.REPLAYED
        self.replayed_at = when
        self.resolved_at = when

    def reactivate(self) -> None:
        """Message is back in the DLQ after a replay"""
        self.status = DlqStatus.ACTIVE
        self.replayed_at = None
        self.replay_success = None
        self.resolved_at = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert DlqRecord to a camelCase dictionary (API and JSON export)"""
        return {
            "id": self.id,
            "messageId": self.message_id,
            "sequenceNumber": self.sequence_number,
            "bodyHash": self.body_hash,
            "bodyPreview": self.body_preview,
            "namespaceId": self.namespace_id,
            "entityName": self.entity_name,
            "entityType": self.entity_kind.value,
            "topicName": self.topic_name,
            "enqueuedTimeUtc": _iso(self.enqueued_at),
            "deadLetterTimeUtc": _iso(self.dead_lettered_at),
            "detectedAtUtc": _iso(self.detected_at),
            "deadLetterReason": self.dead_letter_reason,
            "deadLetterErrorDescription": self.dead_letter_description,
            "deliveryCount": self.delivery_count,
            "contentType": self.content_type,
            "messageSize": self.size_bytes,
            "applicationProperties": self.application_properties,
            "failureCategory": self.failure_category.value,
            "categoryConfidence": self.category_confidence,
            "status": self.status.value,
            "replayedAt": _iso(self.replayed_at),
            "replaySuccess": self.replay_success,
            "resolvedAt": _iso(self.resolved_at),
            "archivedAt": _iso(self.archived_at),
            "userNotes": self.user_notes,
            "correlationId": self.correlation_id,
            "sessionId": self.session_id,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
