"""
Auto-Replay Rule Data Model
Rules are a named condition set plus an action; conditions and action are
stored as versioned JSON blobs and parsed defensively on read.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from dlq_intel.models.dlq_record import utc_now

# Version written into every serialized condition/action blob
RULE_FORMAT_VERSION = 1

DEFAULT_MAX_REPLAYS_PER_HOUR = 100


class RuleFormatError(ValueError):
    """Serialized rule data cannot be parsed"""

    pass


class _NamedEnum(str, Enum):
    @classmethod
    def parse(cls, name: str):
        """Case-insensitive lookup by value"""
        if isinstance(name, cls):
            return name
        if not isinstance(name, str):
            raise RuleFormatError(f"Invalid {cls.__name__}: {name!r}")
        for member in cls:
            if member.value.casefold() == name.strip().casefold():
                return member
        raise RuleFormatError(f"Unknown {cls.__name__}: {name!r}")


def _parse_flag(data: Dict[str, Any], key: str, default: bool) -> bool:
    """Read a JSON boolean; strings such as "false" are rejected rather than coerced"""
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise RuleFormatError(f"{key} must be a boolean, got {value!r}")
    return value


class RuleField(_NamedEnum):
    """Record fields a condition can test"""

    DEAD_LETTER_REASON = "DeadLetterReason"
    DEAD_LETTER_ERROR_DESCRIPTION = "DeadLetterErrorDescription"
    FAILURE_CATEGORY = "FailureCategory"
    ENTITY_NAME = "EntityName"
    DELIVERY_COUNT = "DeliveryCount"
    CONTENT_TYPE = "ContentType"
    TOPIC_NAME = "TopicName"
    CORRELATION_ID = "CorrelationId"
    STATUS = "Status"
    BODY_PREVIEW = "BodyPreview"
    APPLICATION_PROPERTY = "ApplicationProperty"


class RuleOperator(_NamedEnum):
    """Comparison operators"""

    CONTAINS = "Contains"
    NOT_CONTAINS = "NotContains"
    EQUALS = "Equals"
    NOT_EQUALS = "NotEquals"
    STARTS_WITH = "StartsWith"
    ENDS_WITH = "EndsWith"
    REGEX = "Regex"
    GREATER_THAN = "GreaterThan"
    LESS_THAN = "LessThan"
    IN = "In"


@dataclass(frozen=True)
class RuleCondition:
    """
    Single predicate over a DLQ record

    Attributes:
        field: Record field to test
        operator: Comparison operator
        value: Operand (comma-separated set for In)
        case_sensitive: Whether string comparisons honor case
        property_key: Key into the application property bag (ApplicationProperty only)
    """

    field: RuleField
    operator: RuleOperator
    value: str = ""
    case_sensitive: bool = False
    property_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.field == RuleField.APPLICATION_PROPERTY and not self.property_key:
            raise RuleFormatError("ApplicationProperty conditions require a propertyKey")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleCondition":
        if not isinstance(data, dict):
            raise RuleFormatError("Condition must be an object")
        value = data.get("value", "")
        return cls(
            field=RuleField.parse(data.get("field")),
            operator=RuleOperator.parse(data.get("operator")),
            value="" if value is None else str(value),
            case_sensitive=_parse_flag(data, "caseSensitive", False),
            property_key=data.get("propertyKey"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field.value,
            "operator": self.operator.value,
            "value": self.value,
            "caseSensitive": self.case_sensitive,
            "propertyKey": self.property_key,
        }


@dataclass(frozen=True)
class RuleAction:
    """What to do with matched messages"""

    auto_replay: bool = True
    delay_seconds: int = 60
    max_retries: int = 3
    exponential_backoff: bool = False
    target_entity: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleAction":
        if not isinstance(data, dict):
            raise RuleFormatError("Action must be an object")
        try:
            return cls(
                auto_replay=_parse_flag(data, "autoReplay", True),
                delay_seconds=int(data.get("delaySeconds", 60)),
                max_retries=int(data.get("maxRetries", 3)),
                exponential_backoff=_parse_flag(data, "exponentialBackoff", False),
                target_entity=data.get("targetEntity") or None,
            )
        except (TypeError, ValueError) as e:
            raise RuleFormatError(f"Invalid action: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "autoReplay": self.auto_replay,
            "delaySeconds": self.delay_seconds,
            "maxRetries": self.max_retries,
            "exponentialBackoff": self.exponential_backoff,
            "targetEntity": self.target_entity,
        }


def serialize_conditions(conditions: List[RuleCondition]) -> str:
    """Serialize conditions to a versioned JSON blob"""
    return json.dumps(
        {"version": RULE_FORMAT_VERSION, "conditions": [c.to_dict() for c in conditions]}
    )


def serialize_action(action: RuleAction) -> str:
    """Serialize an action to a versioned JSON blob"""
    return json.dumps({"version": RULE_FORMAT_VERSION, "action": action.to_dict()})


def _load_versioned(blob: str, key: str) -> Any:
    try:
        data = json.loads(blob)
    except (TypeError, json.JSONDecodeError) as e:
        raise RuleFormatError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise RuleFormatError("Serialized rule data must be an object")

    version = data.get("version")
    if version != RULE_FORMAT_VERSION:
        raise RuleFormatError(f"Unsupported rule format version: {version!r}")

    if key not in data:
        raise RuleFormatError(f"Missing '{key}'")
    return data[key]


def parse_conditions(blob: str) -> List[RuleCondition]:
    """
    Parse a serialized condition list

    Raises:
        RuleFormatError: If the blob is malformed or of an unknown version
    """
    items = _load_versioned(blob, "conditions")
    if not isinstance(items, list):
        raise RuleFormatError("'conditions' must be a list")
    return [RuleCondition.from_dict(item) for item in items]


def parse_action(blob: str) -> RuleAction:
    """
    Parse a serialized action

    Raises:
        RuleFormatError: If the blob is malformed or of an unknown version
    """
    return RuleAction.from_dict(_load_versioned(blob, "action"))


@dataclass
class AutoReplayRule:
    """
    User-defined replay policy

    Attributes:
        name: Unique rule name
        conditions_json: Versioned serialized conditions
        action_json: Versioned serialized action
        description: Free text
        enabled: Disabled rules never match
        match_count: Replay attempts made under this rule
        success_count: Successful replays under this rule
        max_replays_per_hour: Rate limit for replay-all
        created_at: Creation time
        updated_at: Last modification time
        id: Store-assigned identifier
    """

    name: str
    conditions_json: str
    action_json: str
    description: Optional[str] = None
    enabled: bool = True
    match_count: int = 0
    success_count: int = 0
    max_replays_per_hour: int = DEFAULT_MAX_REPLAYS_PER_HOUR
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self) -> None:
        """Validate AutoReplayRule after initialization"""
        if not self.name or len(self.name) > 256:
            raise ValueError("name must be between 1 and 256 characters")

        if self.description is not None and len(self.description) > 1024:
            raise ValueError("description must be at most 1024 characters")

        if not 1 <= self.max_replays_per_hour <= 10000:
            raise ValueError("max_replays_per_hour must be between 1 and 10000")

    @classmethod
    def create(
        cls,
        name: str,
        conditions: List[RuleCondition],
        action: RuleAction,
        description: Optional[str] = None,
        enabled: bool = True,
        max_replays_per_hour: int = DEFAULT_MAX_REPLAYS_PER_HOUR,
    ) -> "AutoReplayRule":
        """
        Factory method building a rule from parsed conditions and action

        Args:
            name: Unique rule name
            conditions: Conditions, all of which must match
            action: Replay action
            description: Optional description
            enabled: Initial enabled flag
            max_replays_per_hour: Rate limit

        Returns:
            AutoReplayRule instance (not yet persisted)
        """
        return cls(
            name=name,
            description=description,
            enabled=enabled,
            conditions_json=serialize_conditions(conditions),
            action_json=serialize_action(action),
            max_replays_per_hour=max_replays_per_hour,
        )

    def conditions(self) -> List[RuleCondition]:
        return parse_conditions(self.conditions_json)

    def action(self) -> RuleAction:
        return parse_action(self.action_json)

    @property
    def success_rate(self) -> float:
        """Successful replays as a percentage of attempts"""
        if self.match_count == 0:
            return 0.0
        return round(self.success_count / self.match_count * 100, 1)
