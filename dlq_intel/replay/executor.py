"""
Replay Executor
Replays every Active record matched by a rule, rate-limited per rule and batched
per destination, recording per-message outcomes
"""

import asyncio
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from dlq_intel.broker import (
    BrokerClientCache,
    NamespaceDirectory,
    ReplayItemResult,
    ReplaySource,
    ReplayTarget,
)
from dlq_intel.errors import ErrorCode, NotFoundError, ValidationError
from dlq_intel.models import (
    AutoReplayRule,
    DlqRecord,
    DlqStatus,
    EntityKind,
    ReplayHistoryRecord,
    ReplayOutcome,
    ReplayStrategy,
    RuleAction,
    RuleFormatError,
    utc_now,
)
from dlq_intel.observability.logging import log_replay_outcome, replay_log_context
from dlq_intel.observability.metrics import increment_replay_outcome, increment_replay_skipped
from dlq_intel.observability.tracing import ATTR_FAILED, trace_replay_group
from dlq_intel.replay.rate_limit import DEFAULT_WINDOW, ReplayRateLimiter, current_budget
from dlq_intel.rules.engine import RuleEngine
from dlq_intel.store import HistoryStore

logger = structlog.get_logger(__name__)

MESSAGE_NOT_FOUND = "Message not found in DLQ"


class ReplayItemOutcome(str, Enum):
    """Per-message result of a replay-all run"""

    SUCCESS = "Success"
    FAILED = "Failed"
    SKIPPED = "Skipped"


@dataclass
class ReplayMessageResult:
    """Outcome for one matched record"""

    record_id: int
    message_id: str
    entity_name: str
    outcome: ReplayItemOutcome
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dlqRecordId": self.record_id,
            "messageId": self.message_id,
            "entityName": self.entity_name,
            "outcome": self.outcome.value,
            "error": self.error,
        }


@dataclass
class ReplayAllResult:
    """Structured summary of a replay-all run"""

    rule_id: int
    results: List[ReplayMessageResult] = field(default_factory=list)

    def _count(self, outcome: ReplayItemOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def total_matched(self) -> int:
        return len(self.results)

    @property
    def replayed(self) -> int:
        return self._count(ReplayItemOutcome.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(ReplayItemOutcome.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(ReplayItemOutcome.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "totalMatched": self.total_matched,
            "replayed": self.replayed,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass(frozen=True)
class DestinationKey:
    """Replay group key: one broker call per distinct destination"""

    namespace_id: str
    entity_name: str
    subscription_name: Optional[str] = None

    @property
    def target(self) -> ReplayTarget:
        return ReplayTarget(self.entity_name, self.subscription_name)


def resolve_destination(record: DlqRecord, action: RuleAction) -> DestinationKey:
    """
    Destination of a record under a rule's action

    The action's target override wins; subscriptions replay to their topic;
    queues replay to themselves.
    """
    if action.target_entity:
        return DestinationKey(record.namespace_id, action.target_entity)

    if record.entity_kind == EntityKind.SUBSCRIPTION and record.topic_name:
        prefix = f"{record.topic_name}/subscriptions/"
        subscription = re.sub(f"^{re.escape(prefix)}", "", record.entity_name, flags=re.IGNORECASE)
        return DestinationKey(record.namespace_id, record.topic_name, subscription)

    return DestinationKey(record.namespace_id, record.entity_name)


class ReplayExecutor:
    """
    Executes replay-all for a rule

    Failures are captured per message and never abort the batch; only
    cooperative cancellation escapes, after outcomes so far are persisted.
    """

    def __init__(
        self,
        store: HistoryStore,
        engine: RuleEngine,
        directory: NamespaceDirectory,
        client_cache: BrokerClientCache,
        rate_limiter: ReplayRateLimiter,
        window: timedelta = DEFAULT_WINDOW,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize replay executor

        Args:
            store: History store
            engine: Rule engine used to select matches
            directory: Namespace credential directory
            client_cache: Per-namespace broker clients
            rate_limiter: Per-rule replay counter
            window: Rate limit window
            clock: Current UTC time
        """
        self.store = store
        self.engine = engine
        self.directory = directory
        self.client_cache = client_cache
        self.rate_limiter = rate_limiter
        self.window = window
        self._clock = clock

    async def replay_all(
        self,
        rule_id: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ReplayAllResult:
        """
        Replay every Active record matching a rule

        Args:
            rule_id: Rule to execute
            cancel_event: Cooperative cancellation, checked per record and between groups

        Returns:
            ReplayAllResult with per-message outcomes

        Raises:
            NotFoundError: If the rule does not exist
            ValidationError: If the rule is disabled or its stored data is malformed
            asyncio.CancelledError: If cancel_event is set
        """
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found", code=ErrorCode.RULE_NOT_FOUND)
        if not rule.enabled:
            raise ValidationError(
                f"Rule '{rule.name}' is disabled", code=ErrorCode.RULE_DISABLED
            )

        try:
            conditions = rule.conditions()
            action = rule.action()
        except RuleFormatError as e:
            raise ValidationError(
                f"Rule '{rule.name}' has malformed data: {e}", code=ErrorCode.RULE_VALIDATION_FAILED
            ) from e

        active = await self.store.list_active_records()
        evaluations = await self.engine.evaluate_batch(active, conditions, cancel_event)
        matched = [record for record, ev in zip(active, evaluations) if ev.is_match]

        result = ReplayAllResult(rule_id=rule.id)
        if not matched:
            logger.info("Replay-all matched nothing", rule_id=rule.id, rule=rule.name)
            return result

        budget = await current_budget(
            self.rate_limiter, rule.id, rule.max_replays_per_hour, self._clock(), self.window
        )
        if budget.exhausted:
            reason = f"Rule '{rule.name}' has exceeded its hourly replay limit"
            result.results = [self._skipped(record, reason) for record in matched]
            increment_replay_skipped(rule.name, len(matched))
            logger.info(
                "Replay-all rate limited",
                rule_id=rule.id,
                rule=rule.name,
                used=budget.used,
                limit=budget.limit,
                skipped=len(matched),
            )
            return result

        groups: Dict[DestinationKey, List[DlqRecord]] = {}
        for record in matched:
            groups.setdefault(resolve_destination(record, action), []).append(record)

        logger.info(
            "Replay-all started",
            rule_id=rule.id,
            rule=rule.name,
            matched=len(matched),
            budget_remaining=budget.remaining,
            groups=len(groups),
        )

        strategy = (
            ReplayStrategy.ALTERNATE_ENTITY if action.target_entity else ReplayStrategy.ORIGINAL_ENTITY
        )
        updated_records: List[DlqRecord] = []
        history: List[ReplayHistoryRecord] = []

        with replay_log_context(rule.id, rule.name):
            try:
                for key, records in groups.items():
                    if cancel_event is not None and cancel_event.is_set():
                        raise asyncio.CancelledError("Replay-all cancelled")

                    outcomes = await self._replay_group(key, records)
                    replayed_at = self._clock()

                    for record, (success, error) in zip(records, outcomes):
                        updated, entry, message_result = self._apply(
                            rule, record, key, strategy, success, error, replayed_at
                        )
                        updated_records.append(updated)
                        history.append(entry)
                        result.results.append(message_result)
            finally:
                if history:
                    await self.store.commit_replay_batch(updated_records, history, rule.id)

        logger.info(
            "Replay-all completed",
            rule_id=rule.id,
            rule=rule.name,
            replayed=result.replayed,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result

    async def _replay_group(
        self, key: DestinationKey, records: List[DlqRecord]
    ) -> List[Tuple[bool, Optional[str]]]:
        """Replay one destination group; returns (success, error) per record in order"""
        with trace_replay_group(key.namespace_id, key.target.path, len(records)) as span:
            outcomes = await self._call_broker(key, records)
            span.set_attribute(ATTR_FAILED, sum(1 for success, _ in outcomes if not success))
            return outcomes

    async def _call_broker(
        self, key: DestinationKey, records: List[DlqRecord]
    ) -> List[Tuple[bool, Optional[str]]]:
        try:
            connection = await self.directory.resolve(key.namespace_id)
            client = await self.client_cache.get_or_create(connection)
        except Exception as e:
            logger.warning(
                "Namespace resolution failed for replay group",
                namespace_id=key.namespace_id,
                destination=key.target.path,
                error=str(e),
            )
            return [(False, str(e))] * len(records)

        sources = [ReplaySource(r.entity_name, r.sequence_number) for r in records]
        try:
            items = await client.replay_messages(key.target, sources)
        except Exception as e:
            logger.warning(
                "Replay group failed",
                namespace_id=key.namespace_id,
                destination=key.target.path,
                error=str(e),
            )
            return [(False, str(e))] * len(records)

        by_source: Dict[Tuple[str, int], ReplayItemResult] = {
            (item.entity_name, item.sequence_number): item for item in items
        }
        outcomes = []
        for record in records:
            item = by_source.get((record.entity_name, record.sequence_number))
            if item is None:
                outcomes.append((False, MESSAGE_NOT_FOUND))
            elif item.success:
                outcomes.append((True, None))
            else:
                outcomes.append((False, item.error or "Replay failed"))
        return outcomes

    def _apply(
        self,
        rule: AutoReplayRule,
        record: DlqRecord,
        key: DestinationKey,
        strategy: ReplayStrategy,
        success: bool,
        error: Optional[str],
        replayed_at: datetime,
    ) -> Tuple[DlqRecord, ReplayHistoryRecord, ReplayMessageResult]:
        updated = replace(
            record,
            status=DlqStatus.REPLAYED if success else DlqStatus.REPLAY_FAILED,
            replayed_at=replayed_at if success else record.replayed_at,
            replay_success=success,
        )

        entry = ReplayHistoryRecord(
            dlq_record_id=record.id,
            rule_id=rule.id,
            replayed_at=replayed_at,
            replayed_by=f"rule:{rule.name}",
            strategy=strategy,
            replayed_to=key.entity_name,
            outcome=ReplayOutcome.SUCCESS if success else ReplayOutcome.FAILED,
            error_details=error,
        )

        outcome = ReplayItemOutcome.SUCCESS if success else ReplayItemOutcome.FAILED
        increment_replay_outcome(outcome.value)
        log_replay_outcome(logger, record.id, key.entity_name, outcome.value, error)

        return (
            updated,
            entry,
            ReplayMessageResult(
                record_id=record.id,
                message_id=record.message_id,
                entity_name=record.entity_name,
                outcome=outcome,
                error=error,
            ),
        )

    @staticmethod
    def _skipped(record: DlqRecord, reason: str) -> ReplayMessageResult:
        increment_replay_outcome(ReplayItemOutcome.SKIPPED.value)
        return ReplayMessageResult(
            record_id=record.id,
            message_id=record.message_id,
            entity_name=record.entity_name,
            outcome=ReplayItemOutcome.SKIPPED,
            error=reason,
        )
