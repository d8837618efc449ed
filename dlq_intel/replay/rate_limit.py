"""
Replay Rate Limiting
Per-rule replay budget over a trailing window, queried through an explicit dependency
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

from dlq_intel.store import HistoryStore

DEFAULT_WINDOW = timedelta(hours=1)


class ReplayRateLimiter(ABC):
    """Source of truth for how many replays a rule made in a time window"""

    @abstractmethod
    async def count_replays(self, rule_id: int, window_start: datetime, window_end: datetime) -> int:
        """Replay attempts (successful or not) made under a rule within the window"""
        pass


class HistoryRateLimiter(ReplayRateLimiter):
    """Counts replay attempts from the history store's audit log"""

    def __init__(self, store: HistoryStore):
        self.store = store

    async def count_replays(self, rule_id: int, window_start: datetime, window_end: datetime) -> int:
        return await self.store.count_rule_replays(rule_id, window_start, window_end)


@dataclass(frozen=True)
class ReplayBudget:
    """Remaining replays a rule may make right now"""

    limit: int
    used: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0


async def current_budget(
    limiter: ReplayRateLimiter,
    rule_id: int,
    limit: int,
    now: datetime,
    window: timedelta = DEFAULT_WINDOW,
) -> ReplayBudget:
    """
    Compute a rule's remaining budget over the trailing window

    Args:
        limiter: Replay counter
        rule_id: Rule being checked
        limit: Max replays per window
        now: Window end
        window: Window length

    Returns:
        ReplayBudget for the rule
    """
    used = await limiter.count_replays(rule_id, now - window, now)
    return ReplayBudget(limit=limit, used=used)
