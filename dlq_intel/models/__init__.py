"""
Domain models: DLQ records, replay history and auto-replay rules
"""

from dlq_intel.models.dlq_record import (
    RECOVERABLE_CATEGORIES,
    DlqRecord,
    DlqStatus,
    EntityKind,
    FailureCategory,
    subscription_entity_name,
    utc_now,
)
from dlq_intel.models.replay_history import ReplayHistoryRecord, ReplayOutcome, ReplayStrategy
from dlq_intel.models.rule import (
    AutoReplayRule,
    RuleAction,
    RuleCondition,
    RuleField,
    RuleFormatError,
    RuleOperator,
    parse_action,
    parse_conditions,
    serialize_action,
    serialize_conditions,
)

__all__ = [
    "RECOVERABLE_CATEGORIES",
    "DlqRecord",
    "DlqStatus",
    "EntityKind",
    "FailureCategory",
    "subscription_entity_name",
    "utc_now",
    "ReplayHistoryRecord",
    "ReplayOutcome",
    "ReplayStrategy",
    "AutoReplayRule",
    "RuleAction",
    "RuleCondition",
    "RuleField",
    "RuleFormatError",
    "RuleOperator",
    "parse_action",
    "parse_conditions",
    "serialize_action",
    "serialize_conditions",
]
