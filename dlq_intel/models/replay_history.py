"""
ReplayHistoryRecord Data Model - append-only audit of replay attempts
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ReplayStrategy(str, Enum):
    """Where a replayed message was sent"""

    ORIGINAL_ENTITY = "original-entity"
    ALTERNATE_ENTITY = "alternate-entity"


class ReplayOutcome(str, Enum):
    """Result of one replay attempt"""

    SUCCESS = "Success"
    FAILED = "Failed"


@dataclass(frozen=True)
class ReplayHistoryRecord:
    """
    One replay attempt for a DLQ record

    Immutable once written.

    Attributes:
        dlq_record_id: Replayed DLQ record
        replayed_at: Attempt time
        replayed_by: Actor (user id or "rule:<name>")
        strategy: Original or alternate entity
        replayed_to: Destination entity
        outcome: Success or Failed
        rule_id: Originating rule, if any
        new_dead_letter_reason: Reason if the message dead-lettered again
        error_details: Failure detail
        id: Store-assigned identifier
    """

    dlq_record_id: int
    replayed_at: datetime
    replayed_by: str
    strategy: ReplayStrategy
    replayed_to: str
    outcome: ReplayOutcome
    rule_id: Optional[int] = None
    new_dead_letter_reason: Optional[str] = None
    error_details: Optional[str] = None
    id: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == ReplayOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "dlqRecordId": self.dlq_record_id,
            "ruleId": self.rule_id,
            "replayedAt": self.replayed_at.isoformat(),
            "replayedBy": self.replayed_by,
            "replayStrategy": self.strategy.value,
            "replayedToEntity": self.replayed_to,
            "outcomeStatus": self.outcome.value,
            "newDeadLetterReason": self.new_dead_letter_reason,
            "errorDetails": self.error_details,
        }
