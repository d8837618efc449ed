"""
Failure Categorizer
Keyword heuristics classifying why a message was dead-lettered
"""

from typing import Optional, Tuple

from dlq_intel.models import FailureCategory

# Ordered most specific first; the first rule with a matching keyword wins.
CATEGORY_RULES: Tuple[Tuple[FailureCategory, float, Tuple[str, ...]], ...] = (
    (FailureCategory.MAX_DELIVERY, 0.95, ("maxdeliverycount",)),
    (FailureCategory.EXPIRED, 0.90, ("ttlexpiredexception", "ttl", "expired")),
    (
        FailureCategory.TRANSIENT,
        0.80,
        (
            "timeout",
            "timed out",
            "database",
            "sqlexception",
            "connection refused",
            "connection reset",
            "service unavailable",
            "transient",
        ),
    ),
    (
        FailureCategory.DATA_QUALITY,
        0.80,
        ("schema", "validation", "deserializ", "json", "format", "parsing"),
    ),
    (
        FailureCategory.AUTHORIZATION,
        0.85,
        ("unauthorized", "forbidden", "401", "403", "permission", "access denied"),
    ),
    (FailureCategory.RESOURCE_NOT_FOUND, 0.75, ("not found", "404", "resource missing")),
    (
        FailureCategory.QUOTA_EXCEEDED,
        0.80,
        ("quota", "size exceeded", "too large", "entity full"),
    ),
    (FailureCategory.PROCESSING_ERROR, 0.50, ("exception", "error", "failed", "processing")),
)


def categorize(
    reason: Optional[str],
    description: Optional[str],
    delivery_count: int = 0,
) -> Tuple[FailureCategory, float]:
    """
    Classify a dead-letter reason and description

    Deterministic and total: every input yields a category and a confidence in [0, 1].

    Args:
        reason: Broker-reported dead-letter reason
        description: Broker-reported error description
        delivery_count: Delivery attempts before dead-lettering (reserved, not weighted)

    Returns:
        Tuple of (category, confidence)
    """
    text = f"{reason or ''} {description or ''}".lower()

    for category, confidence, keywords in CATEGORY_RULES:
        if any(keyword in text for keyword in keywords):
            return category, confidence

    return FailureCategory.UNKNOWN, 0.0
