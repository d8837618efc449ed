"""
Health reporting for the /health endpoint

The service is healthy when the history store answers a check query and the scan
scheduler loop is alive. Scanning disabled by configuration counts as up.
"""

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from dlq_intel import __version__
from dlq_intel.scanner.scheduler import ScanScheduler
from dlq_intel.store import HistoryStore

logger = structlog.get_logger(__name__)

UP = "up"
DOWN = "down"


@dataclass
class DependencyCheck:
    """Result of probing one dependency"""

    status: str
    latency_ms: float = 0.0
    last_check: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    detail: Dict[str, Any] = field(default_factory=dict)


class HealthStatus:
    """Latest dependency checks plus process uptime"""

    def __init__(self):
        self.started_at = time.monotonic()
        self.version = __version__
        self.dependencies: Dict[str, DependencyCheck] = {}

    def record(self, name: str, check: DependencyCheck) -> None:
        previous = self.dependencies.get(name)
        if previous is not None and previous.status != check.status:
            logger.warning(
                "Dependency health changed", dependency=name, was=previous.status, now=check.status
            )
        self.dependencies[name] = check

    @property
    def healthy(self) -> bool:
        return bool(self.dependencies) and all(
            check.status == UP for check in self.dependencies.values()
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "healthy" if self.healthy else "unhealthy",
            "uptime_seconds": round(time.monotonic() - self.started_at, 2),
            "version": self.version,
            "dependencies": {name: asdict(check) for name, check in self.dependencies.items()},
        }


async def check_store(store: HistoryStore) -> DependencyCheck:
    """Time one store health query; errors count as down"""
    start = time.monotonic()
    try:
        healthy = await store.health_check()
    except Exception as e:
        logger.warning("History store check raised", backend=store.backend, error=str(e))
        healthy = False
    latency_ms = round((time.monotonic() - start) * 1000, 2)
    return DependencyCheck(status=UP if healthy else DOWN, latency_ms=latency_ms)


def check_scheduler(scheduler: Optional[ScanScheduler]) -> DependencyCheck:
    """Scheduler is up when its loop runs or scanning is disabled"""
    if scheduler is None:
        return DependencyCheck(status=UP, detail={"scanning": "disabled"})
    if not scheduler.is_running:
        return DependencyCheck(status=DOWN)
    return DependencyCheck(
        status=UP,
        detail={
            "namespaces": len(scheduler.states),
            "next_scan_in_seconds": round(scheduler.seconds_until_next_scan(), 1),
        },
    )


async def update_health_status(
    health: HealthStatus,
    store: HistoryStore,
    scheduler: Optional[ScanScheduler],
) -> Dict[str, Any]:
    """Probe every dependency and return the response body"""
    health.record(store.backend, await check_store(store))
    health.record("scheduler", check_scheduler(scheduler))
    return health.to_dict()
