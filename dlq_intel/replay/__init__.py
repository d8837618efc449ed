"""
Replay: per-rule rate limiting and batched replay-all execution
"""

from dlq_intel.replay.executor import (
    DestinationKey,
    ReplayAllResult,
    ReplayExecutor,
    ReplayItemOutcome,
    ReplayMessageResult,
    resolve_destination,
)
from dlq_intel.replay.rate_limit import (
    HistoryRateLimiter,
    ReplayBudget,
    ReplayRateLimiter,
    current_budget,
)

__all__ = [
    "DestinationKey",
    "ReplayAllResult",
    "ReplayExecutor",
    "ReplayItemOutcome",
    "ReplayMessageResult",
    "resolve_destination",
    "HistoryRateLimiter",
    "ReplayBudget",
    "ReplayRateLimiter",
    "current_budget",
]
