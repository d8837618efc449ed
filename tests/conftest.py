"""
Pytest Fixtures and Test Configuration
Provides an in-memory history store, a scripted fake broker and record factories
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set

import pytest

from dlq_intel.broker import (
    BrokerClient,
    BrokerClientCache,
    EntityInfo,
    PeekedMessage,
    ReplayItemResult,
    ReplaySource,
    ReplayTarget,
    StaticNamespaceDirectory,
)
from dlq_intel.config import NamespaceSettings
from dlq_intel.models import DlqRecord, EntityKind, FailureCategory
from dlq_intel.store import InMemoryHistoryStore

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Fake Broker
# ============================================================================


class FakeBrokerClient(BrokerClient):
    """
    Scripted broker client

    Dead letters live in self.queues (queue name -> messages) and
    self.subscriptions (topic -> subscription -> messages). Every call is
    recorded for assertions.
    """

    def __init__(self):
        self.queues: Dict[str, List[PeekedMessage]] = {}
        self.subscriptions: Dict[str, Dict[str, List[PeekedMessage]]] = {}
        self.peek_calls: List[tuple] = []
        self.replay_calls: List[tuple] = []
        self.failing_entities: Set[str] = set()
        self.failing_sequences: Dict[int, str] = {}
        self.missing_sequences: Set[int] = set()
        self.replay_error: Optional[Exception] = None
        self.closed = False

    def add_queue_message(self, queue: str, message: PeekedMessage) -> None:
        self.queues.setdefault(queue, []).append(message)

    def add_subscription_message(self, topic: str, subscription: str, message: PeekedMessage) -> None:
        self.subscriptions.setdefault(topic, {}).setdefault(subscription, []).append(message)

    async def list_queues(self) -> List[EntityInfo]:
        return [EntityInfo(name, len(messages)) for name, messages in self.queues.items()]

    async def list_topics(self) -> List[str]:
        return list(self.subscriptions)

    async def list_subscriptions(self, topic_name: str) -> List[EntityInfo]:
        return [
            EntityInfo(name, len(messages), topic_name=topic_name)
            for name, messages in self.subscriptions.get(topic_name, {}).items()
        ]

    async def peek_dead_letters(
        self,
        entity_name: str,
        subscription_name: Optional[str],
        max_messages: int,
        from_sequence_number: Optional[int] = None,
    ) -> List[PeekedMessage]:
        self.peek_calls.append((entity_name, subscription_name, max_messages))
        key = entity_name if subscription_name is None else subscription_name
        if key in self.failing_entities:
            raise ConnectionError(f"peek failed for {key}")
        return list(self._messages(entity_name, subscription_name)[:max_messages])

    async def replay_messages(
        self, target: ReplayTarget, sources: Sequence[ReplaySource]
    ) -> List[ReplayItemResult]:
        self.replay_calls.append((target, list(sources)))
        if self.replay_error is not None:
            raise self.replay_error

        results = []
        for source in sources:
            if source.sequence_number in self.missing_sequences:
                continue
            error = self.failing_sequences.get(source.sequence_number)
            results.append(
                ReplayItemResult(
                    entity_name=source.entity_name,
                    sequence_number=source.sequence_number,
                    success=error is None,
                    error=error,
                )
            )
        return results

    async def close(self) -> None:
        self.closed = True

    def _messages(self, entity_name: str, subscription_name: Optional[str]) -> List[PeekedMessage]:
        if subscription_name is None:
            return self.queues.get(entity_name, [])
        return self.subscriptions.get(entity_name, {}).get(subscription_name, [])


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def make_message() -> Callable[..., PeekedMessage]:
    """Factory for peeked dead-letter messages"""

    def factory(sequence_number: int, **overrides) -> PeekedMessage:
        fields = dict(
            message_id=f"msg-{sequence_number}",
            sequence_number=sequence_number,
            enqueued_at=BASE_TIME,
            body=f'{{"orderId": {sequence_number}}}',
            dead_letter_reason="MaxDeliveryCountExceeded",
            dead_letter_description="Message could not be consumed after 10 delivery attempts",
            delivery_count=10,
            content_type="application/json",
        )
        fields.update(overrides)
        return PeekedMessage(**fields)

    return factory


@pytest.fixture
def make_record() -> Callable[..., DlqRecord]:
    """Factory for unsaved DLQ records with increasing sequence numbers and detection times"""
    sequence = itertools.count(1)

    def factory(**overrides) -> DlqRecord:
        seq = next(sequence)
        fields = dict(
            message_id=f"msg-{seq}",
            sequence_number=seq,
            namespace_id="ns-1",
            entity_name="orders",
            entity_kind=EntityKind.QUEUE,
            enqueued_at=BASE_TIME,
            detected_at=BASE_TIME + timedelta(minutes=seq),
            dead_letter_reason="ProcessingFailed",
            failure_category=FailureCategory.PROCESSING_ERROR,
            category_confidence=0.5,
        )
        fields.update(overrides)
        return DlqRecord(**fields)

    return factory


# ============================================================================
# Store, Broker and Directory
# ============================================================================


@pytest.fixture
async def store():
    """Connected in-memory history store"""
    history_store = InMemoryHistoryStore()
    await history_store.connect()
    yield history_store
    await history_store.disconnect()


@pytest.fixture
def seed(store):
    """Insert records into the store and return the stored copies"""

    async def insert(*records: DlqRecord) -> List[DlqRecord]:
        return [await store.insert_record_if_absent(record) for record in records]

    return insert


@pytest.fixture
def broker() -> FakeBrokerClient:
    return FakeBrokerClient()


@pytest.fixture
def namespaces() -> List[NamespaceSettings]:
    return [
        NamespaceSettings(id="ns-1", name="orders-prod", connection_string="Endpoint=sb://ns-1/"),
    ]


@pytest.fixture
def directory(namespaces) -> StaticNamespaceDirectory:
    return StaticNamespaceDirectory(namespaces)


@pytest.fixture
def client_cache(broker) -> BrokerClientCache:
    return BrokerClientCache(lambda connection: broker)
