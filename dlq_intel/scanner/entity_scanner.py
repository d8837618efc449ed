"""
Entity Scanner
Peeks dead-letter queues across a namespace, dedups against the history store,
classifies new messages and persists them
"""

import asyncio
import hashlib
import json
import time
from typing import Dict, List, Optional

import structlog

from dlq_intel.broker import (
    BrokerClient,
    BrokerClientCache,
    EntityInfo,
    NamespaceDirectory,
    PeekedMessage,
)
from dlq_intel.models import DlqRecord, DlqStatus, EntityKind, utc_now
from dlq_intel.observability.metrics import (
    increment_records_detected,
    increment_scan_errors,
    observe_scan_duration,
)
from dlq_intel.observability.logging import scan_log_context
from dlq_intel.observability.tracing import ATTR_DETECTED, trace_namespace_scan
from dlq_intel.scanner.categorizer import categorize
from dlq_intel.store import HistoryStore

logger = structlog.get_logger(__name__)

DEFAULT_PEEK_BATCH_SIZE = 100
DEFAULT_BODY_PREVIEW_LENGTH = 500


def compute_body_hash(body: Optional[bytes]) -> str:
    """SHA-256 hex digest of the body, "empty" for no body"""
    if not body:
        return "empty"
    return hashlib.sha256(body).hexdigest()


def body_bytes(body) -> bytes:
    if body is None:
        return b""
    if isinstance(body, str):
        return body.encode("utf-8")
    return bytes(body)


def serialize_properties(properties: Optional[Dict]) -> Optional[str]:
    """JSON-encode an application property bag, None when empty"""
    if not properties:
        return None
    try:
        return json.dumps(properties, default=str)
    except (TypeError, ValueError) as e:
        logger.debug("Application properties not serializable", error=str(e))
        return None


class EntityScanner:
    """
    Scans every queue and subscription of a namespace for dead-lettered messages

    Entities are scanned sequentially; a failing entity is logged and skipped.
    Scans of the same namespace are serialized.
    """

    def __init__(
        self,
        store: HistoryStore,
        directory: NamespaceDirectory,
        client_cache: BrokerClientCache,
        peek_batch_size: int = DEFAULT_PEEK_BATCH_SIZE,
        body_preview_length: int = DEFAULT_BODY_PREVIEW_LENGTH,
    ):
        """
        Initialize scanner

        Args:
            store: History store receiving new records
            directory: Namespace directory
            client_cache: Per-namespace broker clients
            peek_batch_size: Messages peeked per entity
            body_preview_length: Characters of body kept in the preview
        """
        self.store = store
        self.directory = directory
        self.client_cache = client_cache
        self.peek_batch_size = peek_batch_size
        self.body_preview_length = body_preview_length
        self._namespace_locks: Dict[str, asyncio.Lock] = {}

    async def scan_namespace(self, namespace_id: str) -> int:
        """
        Scan all dead-letter queues of a namespace

        Never raises for broker or store failures; those are logged.

        Args:
            namespace_id: Namespace to scan

        Returns:
            Number of newly detected records
        """
        lock = self._namespace_locks.setdefault(namespace_id, asyncio.Lock())
        async with lock:
            start_time = time.monotonic()
            with scan_log_context(namespace_id), trace_namespace_scan(namespace_id) as span:
                try:
                    detected = await self._scan(namespace_id)
                finally:
                    observe_scan_duration(namespace_id, time.monotonic() - start_time)
                span.set_attribute(ATTR_DETECTED, detected)
                return detected

    async def _scan(self, namespace_id: str) -> int:
        try:
            connection = await self.directory.resolve(namespace_id)
            client = await self.client_cache.get_or_create(connection)
        except Exception as e:
            increment_scan_errors(namespace_id, scope="namespace")
            logger.error("Namespace scan failed", namespace_id=namespace_id, error=str(e))
            return 0

        detected = 0

        try:
            queues = await client.list_queues()
        except Exception as e:
            increment_scan_errors(namespace_id, scope="namespace")
            logger.error("Failed to list queues", namespace_id=namespace_id, error=str(e))
            queues = []

        for queue in queues:
            detected += await self._scan_entity_safely(namespace_id, client, queue)

        try:
            topics = await client.list_topics()
        except Exception as e:
            increment_scan_errors(namespace_id, scope="namespace")
            logger.error("Failed to list topics", namespace_id=namespace_id, error=str(e))
            topics = []

        for topic in topics:
            try:
                subscriptions = await client.list_subscriptions(topic)
            except Exception as e:
                increment_scan_errors(namespace_id, scope="entity")
                logger.warning(
                    "Failed to list subscriptions",
                    namespace_id=namespace_id,
                    topic=topic,
                    error=str(e),
                )
                continue

            for subscription in subscriptions:
                detected += await self._scan_entity_safely(namespace_id, client, subscription)

        if detected:
            increment_records_detected(namespace_id, detected)
        logger.info("Namespace scan completed", namespace_id=namespace_id, new_records=detected)
        return detected

    async def _scan_entity_safely(
        self, namespace_id: str, client: BrokerClient, entity: EntityInfo
    ) -> int:
        try:
            if entity.dead_letter_count <= 0:
                await self._resolve_missing(namespace_id, entity.full_name, None)
                return 0
            return await self.scan_entity(namespace_id, client, entity)
        except Exception as e:
            increment_scan_errors(namespace_id, scope="entity")
            logger.warning(
                "Entity scan failed",
                namespace_id=namespace_id,
                entity=entity.full_name,
                error=str(e),
            )
            return 0

    async def scan_entity(self, namespace_id: str, client: BrokerClient, entity: EntityInfo) -> int:
        """
        Peek one entity's DLQ and persist unseen messages

        Args:
            namespace_id: Owning namespace
            client: Broker client for the namespace
            entity: Queue or subscription to scan

        Returns:
            Number of newly detected records
        """
        if entity.is_subscription:
            messages = await client.peek_dead_letters(
                entity.topic_name, entity.name, self.peek_batch_size
            )
        else:
            messages = await client.peek_dead_letters(entity.name, None, self.peek_batch_size)

        detected = 0
        for message in messages:
            if await self._process_message(namespace_id, entity, message):
                detected += 1

        # A short batch is the whole DLQ, so anything missing from it has left
        if len(messages) < self.peek_batch_size:
            await self._resolve_missing(
                namespace_id, entity.full_name, [m.sequence_number for m in messages]
            )

        if detected:
            logger.info(
                "New DLQ messages detected",
                namespace_id=namespace_id,
                entity=entity.full_name,
                count=detected,
            )
        return detected

    async def _process_message(
        self, namespace_id: str, entity: EntityInfo, message: PeekedMessage
    ) -> bool:
        existing = await self.store.get_record_by_key(
            namespace_id, entity.full_name, message.sequence_number
        )
        if existing is not None:
            if existing.status in (DlqStatus.REPLAYED, DlqStatus.REPLAY_FAILED):
                existing.reactivate()
                await self.store.save_record(existing)
                logger.info(
                    "DLQ record reactivated",
                    record_id=existing.id,
                    entity=entity.full_name,
                    sequence_number=message.sequence_number,
                )
            return False

        record = self.build_record(namespace_id, entity, message)
        return await self.store.insert_record_if_absent(record) is not None

    def build_record(
        self, namespace_id: str, entity: EntityInfo, message: PeekedMessage
    ) -> DlqRecord:
        """Turn a peeked message into a classified DlqRecord"""
        raw = body_bytes(message.body)
        category, confidence = categorize(
            message.dead_letter_reason, message.dead_letter_description, message.delivery_count
        )

        return DlqRecord(
            message_id=message.message_id,
            sequence_number=message.sequence_number,
            body_hash=compute_body_hash(raw),
            body_preview=raw.decode("utf-8", errors="replace")[: self.body_preview_length] or None,
            namespace_id=namespace_id,
            entity_name=entity.full_name,
            entity_kind=EntityKind.SUBSCRIPTION if entity.is_subscription else EntityKind.QUEUE,
            topic_name=entity.topic_name,
            enqueued_at=message.enqueued_at,
            dead_lettered_at=message.dead_lettered_at or message.enqueued_at,
            detected_at=utc_now(),
            dead_letter_reason=message.dead_letter_reason,
            dead_letter_description=message.dead_letter_description,
            delivery_count=message.delivery_count,
            content_type=message.content_type,
            size_bytes=len(raw),
            application_properties=serialize_properties(message.application_properties),
            failure_category=category,
            category_confidence=confidence,
            correlation_id=message.correlation_id,
            session_id=message.session_id,
        )

    async def _resolve_missing(
        self, namespace_id: str, entity_name: str, present: Optional[List[int]]
    ) -> None:
        resolved = await self.store.resolve_missing_records(
            namespace_id, entity_name, present, utc_now()
        )
        if resolved:
            logger.info(
                "DLQ records resolved",
                namespace_id=namespace_id,
                entity=entity_name,
                count=resolved,
            )
