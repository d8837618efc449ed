"""
API request models and response serializers

Request bodies are camelCase JSON validated by pydantic; responses are
rendered from domain objects into camelCase dictionaries.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dlq_intel.errors import ErrorCode, ValidationError
from dlq_intel.history import DlqSummary, PagedResult, RecordDetail
from dlq_intel.models import RuleAction, RuleCondition, RuleFormatError
from dlq_intel.models.rule import DEFAULT_MAX_REPLAYS_PER_HOUR
from dlq_intel.rules import RuleDraft, RuleTestResult, RuleView


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConditionModel(CamelModel):
    """Rule condition as sent by clients"""

    field: str = Field(..., description="Record field, e.g. DeadLetterReason")
    operator: str = Field(..., description="Operator, e.g. Contains")
    value: Any = Field(default="", description="Operand; comma-separated set for In")
    case_sensitive: bool = False
    property_key: Optional[str] = None

    def to_condition(self) -> RuleCondition:
        try:
            return RuleCondition.from_dict(self.model_dump(by_alias=True))
        except RuleFormatError as e:
            raise ValidationError(str(e), code=ErrorCode.RULE_VALIDATION_FAILED) from e


class ActionModel(CamelModel):
    """Rule action as sent by clients"""

    auto_replay: bool = True
    delay_seconds: int = Field(default=60, ge=0)
    max_retries: int = Field(default=3, ge=0)
    exponential_backoff: bool = False
    target_entity: Optional[str] = None

    def to_action(self) -> RuleAction:
        return RuleAction(
            auto_replay=self.auto_replay,
            delay_seconds=self.delay_seconds,
            max_retries=self.max_retries,
            exponential_backoff=self.exponential_backoff,
            target_entity=self.target_entity or None,
        )


class RuleRequest(CamelModel):
    """Create or update payload for an auto-replay rule"""

    name: str
    description: Optional[str] = None
    enabled: bool = True
    conditions: List[ConditionModel] = Field(..., min_length=1)
    action: ActionModel = Field(default_factory=ActionModel)
    max_replays_per_hour: int = DEFAULT_MAX_REPLAYS_PER_HOUR

    def to_draft(self) -> RuleDraft:
        return RuleDraft(
            name=self.name,
            description=self.description,
            enabled=self.enabled,
            conditions=[c.to_condition() for c in self.conditions],
            action=self.action.to_action(),
            max_replays_per_hour=self.max_replays_per_hour,
        )


class RuleTestRequest(CamelModel):
    """Stored rule id or ad-hoc conditions to evaluate"""

    rule_id: Optional[int] = None
    conditions: Optional[List[ConditionModel]] = None
    namespace_id: Optional[str] = None
    max_messages: int = Field(default=100, ge=1, le=1000)


class NotesRequest(CamelModel):
    notes: Optional[str] = Field(default=None, max_length=4000)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def page_to_dict(page: PagedResult) -> Dict[str, Any]:
    return {
        "items": [record.to_dict() for record in page.items],
        "totalCount": page.total_count,
        "page": page.page,
        "pageSize": page.page_size,
        "hasNextPage": page.has_next_page,
        "hasPreviousPage": page.has_previous_page,
    }


def detail_to_dict(detail: RecordDetail) -> Dict[str, Any]:
    body = detail.record.to_dict()
    body["replayHistory"] = [entry.to_dict() for entry in detail.replay_history]
    return body


def summary_to_dict(summary: DlqSummary) -> Dict[str, Any]:
    return {
        "totalCount": summary.total_count,
        "activeCount": summary.active_count,
        "replayedCount": summary.replayed_count,
        "replayFailedCount": summary.replay_failed_count,
        "archivedCount": summary.archived_count,
        "byCategory": summary.by_category,
        "byEntity": [{"entityName": name, "count": count} for name, count in summary.by_entity],
        "oldestDetectedAtUtc": _iso(summary.oldest_detected_at),
        "newestDetectedAtUtc": _iso(summary.newest_detected_at),
        "dailyTrend": [
            {
                "date": day.day.isoformat(),
                "newCount": day.new_count,
                "resolvedCount": day.resolved_count,
            }
            for day in summary.daily_trend
        ],
    }


def rule_to_dict(view: RuleView) -> Dict[str, Any]:
    rule = view.rule
    return {
        "id": rule.id,
        "name": rule.name,
        "description": rule.description,
        "enabled": rule.enabled,
        "conditions": (
            [c.to_dict() for c in view.conditions] if view.conditions is not None else None
        ),
        "action": view.action.to_dict() if view.action is not None else None,
        "malformed": view.conditions is None,
        "matchCount": rule.match_count,
        "successCount": rule.success_count,
        "successRate": rule.success_rate,
        "maxReplaysPerHour": rule.max_replays_per_hour,
        "pendingMatchCount": view.pending_match_count,
        "createdAt": _iso(rule.created_at),
        "updatedAt": _iso(rule.updated_at),
    }


def rule_test_to_dict(result: RuleTestResult) -> Dict[str, Any]:
    return {
        "totalTested": result.total_tested,
        "matchedCount": result.matched_count,
        "estimatedSuccessRate": result.estimated_success_rate,
        "sampleMatches": [match.to_dict() for match in result.sample_matches],
    }
