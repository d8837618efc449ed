"""
Base History Store Interface
Abstract base class for the durable store of DLQ records, replay history and rules
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

import structlog

from dlq_intel.errors import ErrorCode, InternalError
from dlq_intel.models import (
    AutoReplayRule,
    DlqRecord,
    DlqStatus,
    FailureCategory,
    ReplayHistoryRecord,
    ReplayOutcome,
)

logger = structlog.get_logger(__name__)


class StoreError(InternalError):
    """Base exception for store errors"""

    def __init__(self, message: str, code: str = ErrorCode.STORE_FAILURE, details=None):
        super().__init__(message, code, details)


@dataclass(frozen=True)
class RuleCounterDelta:
    """Counter increments a committed replay batch applies to its rule"""

    matches: int
    successes: int
    last_replayed_at: Optional[datetime]

    @classmethod
    def from_history(cls, history: Iterable[ReplayHistoryRecord]) -> "RuleCounterDelta":
        entries = list(history)
        return cls(
            matches=len(entries),
            successes=sum(1 for h in entries if h.outcome == ReplayOutcome.SUCCESS),
            last_replayed_at=max((h.replayed_at for h in entries), default=None),
        )


@dataclass
class RecordFilter:
    """
    Filter over DLQ records

    Attributes:
        namespace_id: Exact namespace match
        entity_name: Case-sensitive substring of the entity name
        detected_from: Inclusive lower bound on detected_at
        detected_to: Inclusive upper bound on detected_at
        status: Exact status match
        category: Exact failure category match
    """

    namespace_id: Optional[str] = None
    entity_name: Optional[str] = None
    detected_from: Optional[datetime] = None
    detected_to: Optional[datetime] = None
    status: Optional[DlqStatus] = None
    category: Optional[FailureCategory] = None

    def matches(self, record: DlqRecord) -> bool:
        """Check a record against the filter"""
        if self.namespace_id is not None and record.namespace_id != self.namespace_id:
            return False
        if self.entity_name and self.entity_name not in record.entity_name:
            return False
        if self.detected_from is not None and record.detected_at < self.detected_from:
            return False
        if self.detected_to is not None and record.detected_at > self.detected_to:
            return False
        if self.status is not None and record.status != self.status:
            return False
        if self.category is not None and record.failure_category != self.category:
            return False
        return True


class HistoryStore(ABC):
    """
    Abstract base class for history stores

    All stores must guarantee:
    - insert_record_if_absent() is atomic on (namespace, entity, sequence number)
    - commit_replay_batch() persists record updates, history and rule counters together
    - rule names are unique
    """

    def __init__(self, backend: str):
        """
        Initialize store

        Args:
            backend: Backend name used in logs and health checks
        """
        self.backend = backend
        self.is_connected = False

        logger.info("History store initialized", backend=backend)

    @abstractmethod
    async def connect(self) -> None:
        """
        Open the store

        Raises:
            StoreError: If connection fails
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the store"""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the store is reachable

        Returns:
            True if healthy, False otherwise
        """
        pass

    # DLQ records

    @abstractmethod
    async def insert_record_if_absent(self, record: DlqRecord) -> Optional[DlqRecord]:
        """
        Insert a record unless its dedup key already exists

        Args:
            record: Record without an id

        Returns:
            Stored record with its id, or None if the key was already present
        """
        pass

    @abstractmethod
    async def get_record(self, record_id: int) -> Optional[DlqRecord]:
        pass

    @abstractmethod
    async def get_record_by_key(
        self, namespace_id: str, entity_name: str, sequence_number: int
    ) -> Optional[DlqRecord]:
        pass

    @abstractmethod
    async def save_record(self, record: DlqRecord) -> DlqRecord:
        """
        Overwrite an existing record (last writer wins)

        Raises:
            StoreError: If the record has no id or does not exist
        """
        pass

    @abstractmethod
    async def list_records(
        self,
        record_filter: RecordFilter,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[DlqRecord], int]:
        """
        Filtered records, most recently detected first

        Args:
            record_filter: Filter to apply
            offset: Rows to skip
            limit: Maximum rows (None for all)

        Returns:
            Tuple of (page of records, total matching count)
        """
        pass

    @abstractmethod
    async def list_active_records(
        self,
        namespace_id: Optional[str] = None,
        newest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[DlqRecord]:
        """Active records ordered by detected_at"""
        pass

    @abstractmethod
    async def update_notes(self, record_id: int, notes: Optional[str]) -> Optional[DlqRecord]:
        """
        Overwrite a record's user notes

        Returns:
            Updated record, or None if not found
        """
        pass

    @abstractmethod
    async def resolve_missing_records(
        self,
        namespace_id: str,
        entity_name: str,
        present_sequence_numbers: Optional[Iterable[int]],
        resolved_at: datetime,
    ) -> int:
        """
        Mark Active records of an entity as resolved when they left the DLQ

        Args:
            namespace_id: Namespace of the entity
            entity_name: Fully qualified entity name
            present_sequence_numbers: Sequence numbers still in the DLQ (None means none left)
            resolved_at: Resolution time

        Returns:
            Number of records resolved
        """
        pass

    # Replay history

    @abstractmethod
    async def get_replay_history(self, record_id: int) -> List[ReplayHistoryRecord]:
        """Replay attempts of a record, oldest first"""
        pass

    @abstractmethod
    async def count_rule_replays(
        self, rule_id: int, window_start: datetime, window_end: datetime
    ) -> int:
        """Replay attempts made under a rule within [window_start, window_end]"""
        pass

    @abstractmethod
    async def commit_replay_batch(
        self,
        records: List[DlqRecord],
        history: List[ReplayHistoryRecord],
        rule_id: int,
    ) -> None:
        """
        Persist replay outcomes atomically

        The rule's counters are incremented from the history entries
        (one match per entry, one success per successful entry); the rest
        of the stored rule is left untouched.

        Args:
            records: Updated records
            history: New history entries
            rule_id: Rule the batch ran under

        Raises:
            StoreError: If the batch cannot be persisted
        """
        pass

    # Rules

    @abstractmethod
    async def list_rules(self, enabled_only: bool = False) -> List[AutoReplayRule]:
        """Rules, newest first"""
        pass

    @abstractmethod
    async def get_rule(self, rule_id: int) -> Optional[AutoReplayRule]:
        pass

    @abstractmethod
    async def get_rule_by_name(self, name: str) -> Optional[AutoReplayRule]:
        pass

    @abstractmethod
    async def create_rule(self, rule: AutoReplayRule) -> AutoReplayRule:
        """
        Insert a rule

        Raises:
            ConflictError: If the name is already taken
        """
        pass

    @abstractmethod
    async def update_rule(self, rule: AutoReplayRule) -> AutoReplayRule:
        """
        Overwrite a rule

        Raises:
            ConflictError: If the new name is taken by another rule
            StoreError: If the rule does not exist
        """
        pass

    @abstractmethod
    async def delete_rule(self, rule_id: int) -> bool:
        """Returns True if a rule was deleted"""
        pass

    async def ensure_connected(self) -> None:
        """
        Ensure store is connected, reconnect if needed

        Raises:
            StoreError: If connection cannot be established
        """
        if not self.is_connected:
            logger.info("Connecting history store", backend=self.backend)
            await self.connect()

    async def __aenter__(self):
        """Async context manager entry"""
        await self.ensure_connected()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.disconnect()
