"""
Built-in Rule Templates
Pre-built condition/action bundles for common recovery scenarios
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from dlq_intel.models import FailureCategory, RuleAction, RuleCondition, RuleField, RuleOperator


@dataclass(frozen=True)
class RuleTemplate:
    """Catalog entry a rule can be created from"""

    id: str
    name: str
    description: str
    category: FailureCategory
    conditions: Tuple[RuleCondition, ...]
    action: RuleAction
    usage_count: int
    rating: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "action": self.action.to_dict(),
            "usageCount": self.usage_count,
            "rating": self.rating,
        }


def _category_is(category: FailureCategory) -> RuleCondition:
    return RuleCondition(RuleField.FAILURE_CATEGORY, RuleOperator.EQUALS, category.value)


BUILT_IN_TEMPLATES: Tuple[RuleTemplate, ...] = (
    RuleTemplate(
        id="database-timeouts",
        name="Database Timeouts",
        description=(
            "Auto-replay messages that failed due to database connection timeouts. These are "
            "typically transient failures that resolve when the database recovers."
        ),
        category=FailureCategory.TRANSIENT,
        conditions=(
            RuleCondition(RuleField.DEAD_LETTER_REASON, RuleOperator.CONTAINS, "timeout"),
            RuleCondition(RuleField.DEAD_LETTER_ERROR_DESCRIPTION, RuleOperator.CONTAINS, "database"),
        ),
        action=RuleAction(delay_seconds=300, max_retries=3, exponential_backoff=True),
        usage_count=47,
        rating=4.8,
    ),
    RuleTemplate(
        id="payment-gateway-timeouts",
        name="Payment Gateway Timeouts",
        description=(
            "Auto-replay messages that failed due to payment gateway timeouts. Adds longer "
            "delay to allow gateway recovery."
        ),
        category=FailureCategory.TRANSIENT,
        conditions=(
            RuleCondition(RuleField.DEAD_LETTER_ERROR_DESCRIPTION, RuleOperator.CONTAINS, "payment"),
            RuleCondition(RuleField.DEAD_LETTER_ERROR_DESCRIPTION, RuleOperator.CONTAINS, "timeout"),
        ),
        action=RuleAction(delay_seconds=120, max_retries=3, exponential_backoff=True),
        usage_count=23,
        rating=4.5,
    ),
    RuleTemplate(
        id="max-delivery-exceeded",
        name="Max Delivery Exceeded",
        description=(
            "Replay messages that exceeded max delivery count. Often caused by transient "
            "processing failures that resolve on retry."
        ),
        category=FailureCategory.MAX_DELIVERY,
        conditions=(_category_is(FailureCategory.MAX_DELIVERY),),
        action=RuleAction(delay_seconds=60, max_retries=1),
        usage_count=85,
        rating=4.2,
    ),
    RuleTemplate(
        id="expired-messages",
        name="Expired Messages",
        description=(
            "Re-send messages that expired (TTL exceeded) before being processed. Useful for "
            "non-time-sensitive workloads."
        ),
        category=FailureCategory.EXPIRED,
        conditions=(_category_is(FailureCategory.EXPIRED),),
        action=RuleAction(delay_seconds=30, max_retries=1),
        usage_count=31,
        rating=3.9,
    ),
    RuleTemplate(
        id="transient-network-errors",
        name="Transient Network Errors",
        description=(
            "Auto-replay messages that failed due to transient network errors including "
            "connection resets and DNS failures."
        ),
        category=FailureCategory.TRANSIENT,
        conditions=(_category_is(FailureCategory.TRANSIENT),),
        action=RuleAction(delay_seconds=180, max_retries=3, exponential_backoff=True),
        usage_count=62,
        rating=4.6,
    ),
    RuleTemplate(
        id="resource-not-found",
        name="Resource Not Found Retries",
        description=(
            "Retry messages that failed because a resource was not yet available (eventual "
            "consistency scenarios)."
        ),
        category=FailureCategory.RESOURCE_NOT_FOUND,
        conditions=(
            _category_is(FailureCategory.RESOURCE_NOT_FOUND),
            RuleCondition(RuleField.DELIVERY_COUNT, RuleOperator.LESS_THAN, "5"),
        ),
        action=RuleAction(delay_seconds=600, max_retries=2),
        usage_count=18,
        rating=3.7,
    ),
    RuleTemplate(
        id="quota-exceeded",
        name="Quota/Throttling Recovery",
        description=(
            "Replay messages that failed due to rate limiting or quota exceeded errors, with "
            "longer delays."
        ),
        category=FailureCategory.QUOTA_EXCEEDED,
        conditions=(_category_is(FailureCategory.QUOTA_EXCEEDED),),
        action=RuleAction(delay_seconds=900, max_retries=2, exponential_backoff=True),
        usage_count=14,
        rating=4.1,
    ),
)


def list_templates() -> List[RuleTemplate]:
    return list(BUILT_IN_TEMPLATES)


def get_template(template_id: str) -> Optional[RuleTemplate]:
    for template in BUILT_IN_TEMPLATES:
        if template.id == template_id:
            return template
    return None
