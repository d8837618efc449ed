"""
Rule Engine
Evaluates rule conditions against DLQ records. Pure and stateless per call.
"""

import asyncio
import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import regex
import structlog

from dlq_intel.models import (
    AutoReplayRule,
    DlqRecord,
    FailureCategory,
    RuleAction,
    RuleCondition,
    RuleField,
    RuleFormatError,
    RuleOperator,
)
from dlq_intel.observability.metrics import increment_malformed_rules

logger = structlog.get_logger(__name__)

DEFAULT_REGEX_TIMEOUT_SECONDS = 1.0


@dataclass
class RuleMatchResult:
    """
    Outcome of evaluating one record against a condition set

    Attributes:
        record_id: Evaluated record
        message_id: Broker message id
        entity_name: Entity of the record
        is_match: Whether every condition matched
        reason: Human-readable explanation
        dead_letter_reason: Record's dead-letter reason
        failure_category: Record's failure category
    """

    record_id: Optional[int]
    message_id: str
    entity_name: str
    is_match: bool
    reason: str
    dead_letter_reason: Optional[str] = None
    failure_category: FailureCategory = FailureCategory.UNKNOWN

    def to_dict(self) -> Dict:
        return {
            "dlqRecordId": self.record_id,
            "messageId": self.message_id,
            "entityName": self.entity_name,
            "isMatch": self.is_match,
            "matchReason": self.reason,
            "deadLetterReason": self.dead_letter_reason,
            "failureCategory": self.failure_category.value,
        }


def _optional_str(value) -> Optional[str]:
    return None if value is None else str(value)


FIELD_EXTRACTORS: Dict[RuleField, Callable[[DlqRecord], Optional[str]]] = {
    RuleField.DEAD_LETTER_REASON: lambda r: r.dead_letter_reason,
    RuleField.DEAD_LETTER_ERROR_DESCRIPTION: lambda r: r.dead_letter_description,
    RuleField.FAILURE_CATEGORY: lambda r: r.failure_category.value,
    RuleField.ENTITY_NAME: lambda r: r.entity_name,
    RuleField.DELIVERY_COUNT: lambda r: str(r.delivery_count),
    RuleField.CONTENT_TYPE: lambda r: r.content_type,
    RuleField.TOPIC_NAME: lambda r: r.topic_name,
    RuleField.CORRELATION_ID: lambda r: r.correlation_id,
    RuleField.STATUS: lambda r: r.status.value,
    RuleField.BODY_PREVIEW: lambda r: r.body_preview,
}


def extract_application_property(record: DlqRecord, key: Optional[str]) -> Optional[str]:
    """
    Read one key from the record's serialized property bag

    Strings are returned as-is, other JSON values as their JSON text.
    A missing key or an unparsable bag yields None.
    """
    if not key or not record.application_properties:
        return None
    try:
        properties = json.loads(record.application_properties)
    except (TypeError, json.JSONDecodeError):
        return None
    if not isinstance(properties, dict) or key not in properties:
        return None

    value = properties[key]
    if isinstance(value, str):
        return value
    return json.dumps(value)


def extract_field(record: DlqRecord, field: RuleField, property_key: Optional[str] = None) -> Optional[str]:
    """String projection of a record field"""
    if field == RuleField.APPLICATION_PROPERTY:
        return extract_application_property(record, property_key)
    return _optional_str(FIELD_EXTRACTORS[field](record))


def _fold(value: str, case_sensitive: bool) -> str:
    return value if case_sensitive else value.casefold()


def _to_number(value: str) -> Optional[float]:
    try:
        return float(value.strip())
    except ValueError:
        return None


def _compare(actual: str, expected: str, case_sensitive: bool) -> int:
    """Numeric comparison when both sides parse, else ordinal string comparison"""
    left, right = _to_number(actual), _to_number(expected)
    if left is None or right is None:
        left, right = _fold(actual, case_sensitive), _fold(expected, case_sensitive)
    return (left > right) - (left < right)


@lru_cache(maxsize=256)
def _compile(pattern: str, case_sensitive: bool):
    flags = 0 if case_sensitive else regex.IGNORECASE
    return regex.compile(pattern, flags)


def _op_contains(actual, expected, cs, engine) -> bool:
    return actual is not None and _fold(expected, cs) in _fold(actual, cs)


def _op_not_contains(actual, expected, cs, engine) -> bool:
    return actual is None or _fold(expected, cs) not in _fold(actual, cs)


def _op_equals(actual, expected, cs, engine) -> bool:
    return actual is not None and _fold(actual, cs) == _fold(expected, cs)


def _op_not_equals(actual, expected, cs, engine) -> bool:
    return not _op_equals(actual, expected, cs, engine)


def _op_starts_with(actual, expected, cs, engine) -> bool:
    return actual is not None and _fold(actual, cs).startswith(_fold(expected, cs))


def _op_ends_with(actual, expected, cs, engine) -> bool:
    return actual is not None and _fold(actual, cs).endswith(_fold(expected, cs))


def _op_regex(actual, expected, cs, engine) -> bool:
    if actual is None:
        return False
    try:
        return _compile(expected, cs).search(actual, timeout=engine.regex_timeout_seconds) is not None
    except regex.error as e:
        logger.debug("Invalid regex pattern", pattern=expected, error=str(e))
        return False
    except TimeoutError:
        logger.warning("Regex evaluation timed out", pattern=expected)
        return False


def _op_greater_than(actual, expected, cs, engine) -> bool:
    return actual is not None and _compare(actual, expected, cs) > 0


def _op_less_than(actual, expected, cs, engine) -> bool:
    return actual is not None and _compare(actual, expected, cs) < 0


def _op_in(actual, expected, cs, engine) -> bool:
    if actual is None:
        return False
    members = {_fold(item.strip(), cs) for item in expected.split(",") if item.strip()}
    return _fold(actual, cs) in members


OPERATORS: Dict[RuleOperator, Callable[..., bool]] = {
    RuleOperator.CONTAINS: _op_contains,
    RuleOperator.NOT_CONTAINS: _op_not_contains,
    RuleOperator.EQUALS: _op_equals,
    RuleOperator.NOT_EQUALS: _op_not_equals,
    RuleOperator.STARTS_WITH: _op_starts_with,
    RuleOperator.ENDS_WITH: _op_ends_with,
    RuleOperator.REGEX: _op_regex,
    RuleOperator.GREATER_THAN: _op_greater_than,
    RuleOperator.LESS_THAN: _op_less_than,
    RuleOperator.IN: _op_in,
}


class RuleEngine:
    """
    Evaluates conditions with AND semantics

    Evaluation short-circuits on the first failing condition and explains it.
    """

    def __init__(self, regex_timeout_seconds: float = DEFAULT_REGEX_TIMEOUT_SECONDS):
        """
        Initialize rule engine

        Args:
            regex_timeout_seconds: Upper bound on a single regex match
        """
        self.regex_timeout_seconds = regex_timeout_seconds

    def evaluate_condition(self, record: DlqRecord, condition: RuleCondition) -> bool:
        actual = extract_field(record, condition.field, condition.property_key)
        operator = OPERATORS.get(condition.operator)
        if operator is None:
            return False
        return operator(actual, condition.value, condition.case_sensitive, self)

    def evaluate(self, record: DlqRecord, conditions: Sequence[RuleCondition]) -> RuleMatchResult:
        """
        Evaluate all conditions against one record

        Args:
            record: Record to test
            conditions: Conditions, all of which must match

        Returns:
            RuleMatchResult citing the first failing condition, if any
        """
        for condition in conditions:
            if not self.evaluate_condition(record, condition):
                return self._result(
                    record,
                    False,
                    f"Condition failed: {condition.field.value} "
                    f"{condition.operator.value} '{condition.value}'",
                )

        return self._result(record, True, f"All {len(conditions)} condition(s) matched")

    async def evaluate_batch(
        self,
        records: Iterable[DlqRecord],
        conditions: Sequence[RuleCondition],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[RuleMatchResult]:
        """
        Evaluate conditions against many records

        Cancellation is checked before each record.

        Raises:
            asyncio.CancelledError: If cancel_event is set during evaluation
        """
        results = []
        for record in records:
            if cancel_event is not None and cancel_event.is_set():
                raise asyncio.CancelledError("Rule evaluation cancelled")
            results.append(self.evaluate(record, conditions))
        return results

    def find_matching_rules(
        self, record: DlqRecord, rules: Iterable[AutoReplayRule]
    ) -> List[Tuple[AutoReplayRule, RuleAction]]:
        """
        Find every enabled rule whose conditions match a record

        Rules with malformed stored data are skipped and logged.

        Returns:
            List of (rule, action) pairs
        """
        matches = []
        for rule in rules:
            if not rule.enabled:
                continue

            try:
                conditions = rule.conditions()
                action = rule.action()
            except RuleFormatError as e:
                increment_malformed_rules()
                logger.warning(
                    "Skipping rule with malformed data",
                    rule_id=rule.id,
                    rule=rule.name,
                    error=str(e),
                )
                continue

            if self.evaluate(record, conditions).is_match:
                matches.append((rule, action))

        return matches

    @staticmethod
    def _result(record: DlqRecord, is_match: bool, reason: str) -> RuleMatchResult:
        return RuleMatchResult(
            record_id=record.id,
            message_id=record.message_id,
            entity_name=record.entity_name,
            is_match=is_match,
            reason=reason,
            dead_letter_reason=record.dead_letter_reason,
            failure_category=record.failure_category,
        )
