"""
Broker Collaborator Interfaces
Abstract broker client and namespace directory consumed by the scanner and replay executor
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from dlq_intel.errors import ErrorCode, ExternalServiceError
from dlq_intel.models.dlq_record import subscription_entity_name


class BrokerError(ExternalServiceError):
    """Broker call failed"""

    def __init__(self, message: str, code: str = ErrorCode.BROKER_FAILURE, details=None):
        super().__init__(message, code, details)


class NamespaceResolutionError(ExternalServiceError):
    """Namespace id could not be resolved to usable connection data"""

    def __init__(self, message: str, code: str = ErrorCode.NAMESPACE_UNAVAILABLE, details=None):
        super().__init__(message, code, details)


@dataclass
class EntityInfo:
    """
    Queue or subscription with its dead-letter count

    Attributes:
        name: Queue name, or subscription name for subscriptions
        dead_letter_count: Messages currently in the entity's DLQ
        topic_name: Parent topic (subscriptions only)
    """

    name: str
    dead_letter_count: int
    topic_name: Optional[str] = None

    @property
    def is_subscription(self) -> bool:
        return self.topic_name is not None

    @property
    def full_name(self) -> str:
        if self.topic_name is not None:
            return subscription_entity_name(self.topic_name, self.name)
        return self.name


@dataclass
class PeekedMessage:
    """Dead-lettered message returned by a non-destructive peek"""

    message_id: str
    sequence_number: int
    enqueued_at: datetime
    body: Union[bytes, str, None] = None
    dead_lettered_at: Optional[datetime] = None
    dead_letter_reason: Optional[str] = None
    dead_letter_description: Optional[str] = None
    delivery_count: int = 0
    content_type: Optional[str] = None
    correlation_id: Optional[str] = None
    session_id: Optional[str] = None
    application_properties: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReplayTarget:
    """Destination of a replay group"""

    entity_name: str
    subscription_name: Optional[str] = None

    @property
    def path(self) -> str:
        if self.subscription_name:
            return subscription_entity_name(self.entity_name, self.subscription_name)
        return self.entity_name


@dataclass(frozen=True)
class ReplaySource:
    """Dead-lettered message to replay, addressed by source entity and sequence number"""

    entity_name: str
    sequence_number: int


@dataclass
class ReplayItemResult:
    """Per-message outcome of a batched replay"""

    entity_name: str
    sequence_number: int
    success: bool
    error: Optional[str] = None


class BrokerClient(ABC):
    """
    Client for one broker namespace

    Implementations carry their own retry/backoff policy.
    """

    @abstractmethod
    async def list_queues(self) -> List[EntityInfo]:
        """List queues with their dead-letter counts"""
        pass

    @abstractmethod
    async def list_topics(self) -> List[str]:
        """List topic names"""
        pass

    @abstractmethod
    async def list_subscriptions(self, topic_name: str) -> List[EntityInfo]:
        """List subscriptions of a topic with their dead-letter counts"""
        pass

    @abstractmethod
    async def peek_dead_letters(
        self,
        entity_name: str,
        subscription_name: Optional[str],
        max_messages: int,
        from_sequence_number: Optional[int] = None,
    ) -> List[PeekedMessage]:
        """
        Non-destructive read of an entity's dead-letter queue

        Args:
            entity_name: Queue or topic name
            subscription_name: Subscription name (topics only)
            max_messages: Upper bound on messages returned
            from_sequence_number: Resume cursor

        Returns:
            Peeked messages in sequence order

        Raises:
            BrokerError: If the peek fails
        """
        pass

    @abstractmethod
    async def replay_messages(
        self,
        target: ReplayTarget,
        sources: Sequence[ReplaySource],
    ) -> List[ReplayItemResult]:
        """
        Remove messages from their DLQ and resubmit them to the target

        One call covers the whole destination group over a single receiver.

        Args:
            target: Destination entity
            sources: Messages to replay

        Returns:
            Per-message results (messages no longer in the DLQ may be absent)

        Raises:
            BrokerError: If the batch as a whole cannot be processed
        """
        pass

    async def close(self) -> None:
        """Release connections"""
        pass


@dataclass
class NamespaceInfo:
    """Namespace known to the directory"""

    id: str
    name: str
    active: bool = True


@dataclass
class NamespaceConnection:
    """Decrypted connection data for a namespace"""

    namespace_id: str
    name: str
    connection_string: str


class NamespaceDirectory(ABC):
    """Resolves namespace ids to connection data"""

    @abstractmethod
    async def list_active(self) -> List[NamespaceInfo]:
        """Namespaces that should be scanned"""
        pass

    @abstractmethod
    async def resolve(self, namespace_id: str) -> NamespaceConnection:
        """
        Resolve a namespace to decrypted connection data

        Raises:
            NamespaceResolutionError: If the namespace is unknown or unusable
        """
        pass
