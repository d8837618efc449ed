"""
Rule Service
CRUD for auto-replay rules and the interactive rule test workflow
"""

import asyncio
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence

import structlog

from dlq_intel.errors import ConflictError, ErrorCode, NotFoundError, ValidationError
from dlq_intel.models import (
    RECOVERABLE_CATEGORIES,
    AutoReplayRule,
    DlqRecord,
    RuleAction,
    RuleCondition,
    RuleFormatError,
    serialize_action,
    serialize_conditions,
    utc_now,
)
from dlq_intel.models.rule import DEFAULT_MAX_REPLAYS_PER_HOUR
from dlq_intel.rules.engine import RuleEngine, RuleMatchResult
from dlq_intel.store import HistoryStore

logger = structlog.get_logger(__name__)

DEFAULT_TEST_MAX_MESSAGES = 100
TEST_MAX_MESSAGES_CEILING = 1000
TEST_SAMPLE_SIZE = 10


@dataclass
class RuleDraft:
    """User-supplied rule fields for create and update"""

    name: str
    conditions: List[RuleCondition]
    action: RuleAction = field(default_factory=RuleAction)
    description: Optional[str] = None
    enabled: bool = True
    max_replays_per_hour: int = DEFAULT_MAX_REPLAYS_PER_HOUR


@dataclass
class RuleView:
    """
    Rule with parsed conditions/action and its live pending match count

    conditions and action are None when the stored data is malformed.
    """

    rule: AutoReplayRule
    conditions: Optional[List[RuleCondition]]
    action: Optional[RuleAction]
    pending_match_count: int = 0


@dataclass
class RuleTestResult:
    """Outcome of testing conditions against current Active records"""

    total_tested: int
    matched_count: int
    estimated_success_rate: float
    sample_matches: List[RuleMatchResult]


def estimate_success_rate(matches: Sequence[RuleMatchResult]) -> float:
    """Fraction of matches in categories that usually recover on replay"""
    if not matches:
        return 0.0
    recoverable = sum(1 for m in matches if m.failure_category in RECOVERABLE_CATEGORIES)
    return round(recoverable / len(matches), 3)


class RuleService:
    """Rule management on top of the history store"""

    def __init__(
        self,
        store: HistoryStore,
        engine: RuleEngine,
        test_sample_size: int = TEST_SAMPLE_SIZE,
        test_max_messages_ceiling: int = TEST_MAX_MESSAGES_CEILING,
    ):
        self.store = store
        self.engine = engine
        self.test_sample_size = test_sample_size
        self.test_max_messages_ceiling = test_max_messages_ceiling

    async def list_rules(self, enabled_only: bool = False) -> List[RuleView]:
        """Rules newest first, each with its pending match count"""
        rules = await self.store.list_rules(enabled_only=enabled_only)
        active = await self.store.list_active_records()
        return [self._view(rule, active) for rule in rules]

    async def get_rule(self, rule_id: int) -> RuleView:
        rule = await self._require_rule(rule_id)
        active = await self.store.list_active_records()
        return self._view(rule, active)

    async def create_rule(self, draft: RuleDraft) -> RuleView:
        """
        Create a rule

        Raises:
            ConflictError: If the name is already taken
            ValidationError: If field limits are violated
        """
        if await self.store.get_rule_by_name(draft.name) is not None:
            raise ConflictError(
                f"A rule named '{draft.name}' already exists", code=ErrorCode.RULE_ALREADY_EXISTS
            )

        try:
            rule = AutoReplayRule.create(
                name=draft.name,
                description=draft.description,
                conditions=draft.conditions,
                action=draft.action,
                enabled=draft.enabled,
                max_replays_per_hour=draft.max_replays_per_hour,
            )
        except ValueError as e:
            raise ValidationError(str(e), code=ErrorCode.RULE_VALIDATION_FAILED) from e

        created = await self.store.create_rule(rule)
        logger.info("Rule created", rule_id=created.id, rule=created.name)
        return await self.get_rule(created.id)

    async def update_rule(self, rule_id: int, draft: RuleDraft) -> RuleView:
        """
        Replace a rule's definition, preserving counters and creation time

        Raises:
            NotFoundError: If the rule does not exist
            ConflictError: If the new name belongs to another rule
            ValidationError: If field limits are violated
        """
        existing = await self._require_rule(rule_id)

        other = await self.store.get_rule_by_name(draft.name)
        if other is not None and other.id != rule_id:
            raise ConflictError(
                f"A rule named '{draft.name}' already exists", code=ErrorCode.RULE_ALREADY_EXISTS
            )

        try:
            updated = replace(
                existing,
                name=draft.name,
                description=draft.description,
                enabled=draft.enabled,
                conditions_json=serialize_conditions(draft.conditions),
                action_json=serialize_action(draft.action),
                max_replays_per_hour=draft.max_replays_per_hour,
                updated_at=utc_now(),
            )
        except ValueError as e:
            raise ValidationError(str(e), code=ErrorCode.RULE_VALIDATION_FAILED) from e

        await self.store.update_rule(updated)
        logger.info("Rule updated", rule_id=rule_id, rule=updated.name)
        return await self.get_rule(rule_id)

    async def delete_rule(self, rule_id: int) -> None:
        if not await self.store.delete_rule(rule_id):
            raise NotFoundError(f"Rule {rule_id} not found", code=ErrorCode.RULE_NOT_FOUND)
        logger.info("Rule deleted", rule_id=rule_id)

    async def toggle_rule(self, rule_id: int) -> RuleView:
        """Flip a rule's enabled flag"""
        rule = await self._require_rule(rule_id)
        toggled = replace(rule, enabled=not rule.enabled, updated_at=utc_now())
        await self.store.update_rule(toggled)
        logger.info("Rule toggled", rule_id=rule_id, enabled=toggled.enabled)
        return await self.get_rule(rule_id)

    async def test_rule(
        self,
        rule_id: Optional[int] = None,
        conditions: Optional[List[RuleCondition]] = None,
        namespace_id: Optional[str] = None,
        max_messages: int = DEFAULT_TEST_MAX_MESSAGES,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RuleTestResult:
        """
        Evaluate stored or ad-hoc conditions against the most recent Active records

        Args:
            rule_id: Stored rule to test (takes precedence over conditions)
            conditions: Ad-hoc conditions
            namespace_id: Restrict to one namespace
            max_messages: Records to test, clamped to the configured ceiling
            cancel_event: Cooperative cancellation, checked per record

        Raises:
            ValidationError: If neither rule_id nor conditions is given, or the rule is malformed
            NotFoundError: If rule_id is unknown
        """
        if rule_id is not None:
            rule = await self._require_rule(rule_id)
            try:
                conditions = rule.conditions()
            except RuleFormatError as e:
                raise ValidationError(
                    f"Rule '{rule.name}' has malformed conditions: {e}",
                    code=ErrorCode.RULE_VALIDATION_FAILED,
                ) from e
        elif not conditions:
            raise ValidationError(
                "Either ruleId or conditions must be provided",
                code=ErrorCode.RULE_VALIDATION_FAILED,
            )

        limit = max(1, min(max_messages, self.test_max_messages_ceiling))
        records = await self.store.list_active_records(
            namespace_id=namespace_id, newest_first=True, limit=limit
        )

        results = await self.engine.evaluate_batch(records, conditions, cancel_event)
        matches = [r for r in results if r.is_match]

        logger.info(
            "Rule test evaluated",
            rule_id=rule_id,
            tested=len(records),
            matched=len(matches),
        )

        return RuleTestResult(
            total_tested=len(records),
            matched_count=len(matches),
            estimated_success_rate=estimate_success_rate(matches),
            sample_matches=matches[: self.test_sample_size],
        )

    async def _require_rule(self, rule_id: int) -> AutoReplayRule:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found", code=ErrorCode.RULE_NOT_FOUND)
        return rule

    def _view(self, rule: AutoReplayRule, active: Sequence[DlqRecord]) -> RuleView:
        try:
            conditions = rule.conditions()
            action = rule.action()
        except RuleFormatError as e:
            logger.warning("Rule has malformed data", rule_id=rule.id, error=str(e))
            return RuleView(rule=rule, conditions=None, action=None)

        pending = sum(1 for record in active if self.engine.evaluate(record, conditions).is_match)
        return RuleView(rule=rule, conditions=conditions, action=action, pending_match_count=pending)
