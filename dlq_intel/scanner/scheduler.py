"""
Scan Scheduler
Cancellable background task scanning active namespaces with bounded parallelism
and a per-namespace adaptive interval
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

import structlog

from dlq_intel.broker import NamespaceDirectory
from dlq_intel.observability.metrics import set_namespace_scan_mode
from dlq_intel.scanner.entity_scanner import EntityScanner

logger = structlog.get_logger(__name__)


class ScanMode(str, Enum):
    """Polling mode of a namespace"""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


def next_scan_mode(new_records: int) -> ScanMode:
    """Any detection promotes to ACTIVE; a quiet scan demotes to INACTIVE"""
    return ScanMode.ACTIVE if new_records > 0 else ScanMode.INACTIVE


@dataclass
class NamespaceScanState:
    """
    Scheduling state of one namespace

    Attributes:
        namespace_id: Namespace being tracked
        mode: Current polling mode
        next_scan_at: Monotonic time the next scan is due
        last_new_records: Records detected by the last scan
        scans_completed: Number of finished scans
    """

    namespace_id: str
    mode: ScanMode = ScanMode.ACTIVE
    next_scan_at: float = 0.0
    last_new_records: int = 0
    scans_completed: int = 0

    def is_due(self, now: float) -> bool:
        return now >= self.next_scan_at


class ScanScheduler:
    """
    Runs namespace scans on an adaptive schedule

    New namespaces start ACTIVE and are due immediately. After each scan a
    namespace moves to ACTIVE (short interval) if it detected anything, else
    INACTIVE (long interval). At most max_parallel_scans namespaces are scanned
    at once.
    """

    def __init__(
        self,
        scanner: EntityScanner,
        directory: NamespaceDirectory,
        active_interval_seconds: float = 30.0,
        inactive_interval_seconds: float = 300.0,
        max_parallel_scans: int = 10,
        initial_delay_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_parallel_scans < 1:
            raise ValueError("max_parallel_scans must be at least 1")
        if active_interval_seconds > inactive_interval_seconds:
            raise ValueError("active interval must not exceed inactive interval")

        self.scanner = scanner
        self.directory = directory
        self.active_interval_seconds = active_interval_seconds
        self.inactive_interval_seconds = inactive_interval_seconds
        self.max_parallel_scans = max_parallel_scans
        self.initial_delay_seconds = initial_delay_seconds
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max_parallel_scans)
        self._states: Dict[str, NamespaceScanState] = {}
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def states(self) -> Dict[str, NamespaceScanState]:
        return dict(self._states)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def interval_for(self, mode: ScanMode) -> float:
        if mode == ScanMode.ACTIVE:
            return self.active_interval_seconds
        return self.inactive_interval_seconds

    async def run_cycle(self) -> Dict[str, int]:
        """
        Scan every active namespace that is due

        Returns:
            Mapping of scanned namespace id to newly detected records
        """
        namespaces = await self.directory.list_active()
        known = {ns.id for ns in namespaces}

        for namespace_id in list(self._states):
            if namespace_id not in known:
                del self._states[namespace_id]

        now = self._clock()
        due: List[NamespaceScanState] = []
        for ns in namespaces:
            state = self._states.setdefault(ns.id, NamespaceScanState(ns.id, next_scan_at=now))
            if state.is_due(now):
                due.append(state)

        if not due:
            return {}

        results = await asyncio.gather(
            *(self._scan_bounded(state.namespace_id) for state in due),
            return_exceptions=True,
        )

        completed_at = self._clock()
        detected: Dict[str, int] = {}
        for state, result in zip(due, results):
            if isinstance(result, Exception):
                logger.error(
                    "Scheduled scan failed", namespace_id=state.namespace_id, error=str(result)
                )
                result = 0
            self._advance(state, result, completed_at)
            detected[state.namespace_id] = result

        return detected

    async def _scan_bounded(self, namespace_id: str) -> int:
        async with self._semaphore:
            return await self.scanner.scan_namespace(namespace_id)

    def _advance(self, state: NamespaceScanState, new_records: int, now: float) -> None:
        previous = state.mode
        state.mode = next_scan_mode(new_records)
        state.last_new_records = new_records
        state.scans_completed += 1
        state.next_scan_at = now + self.interval_for(state.mode)
        set_namespace_scan_mode(state.namespace_id, state.mode == ScanMode.ACTIVE)

        if state.mode != previous:
            logger.info(
                "Namespace scan mode changed",
                namespace_id=state.namespace_id,
                mode=state.mode.value,
                interval_seconds=self.interval_for(state.mode),
            )

    def seconds_until_next_scan(self) -> float:
        """Time until the earliest namespace is due (active interval when none are tracked)"""
        if not self._states:
            return self.active_interval_seconds
        now = self._clock()
        return max(0.0, min(s.next_scan_at for s in self._states.values()) - now)

    async def run(self) -> None:
        """Scheduling loop; returns when stop() is called"""
        logger.info(
            "Scan scheduler started",
            max_parallel_scans=self.max_parallel_scans,
            active_interval_seconds=self.active_interval_seconds,
            inactive_interval_seconds=self.inactive_interval_seconds,
        )

        if await self._wait_or_stop(self.initial_delay_seconds):
            return

        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error("Scan cycle failed", error=str(e))

            if await self._wait_or_stop(self.seconds_until_next_scan()):
                break

        logger.info("Scan scheduler stopped")

    async def _wait_or_stop(self, delay: float) -> bool:
        """Sleep for delay seconds; True if stop was requested meanwhile"""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def start(self) -> asyncio.Task:
        """Start the loop as a background task"""
        if self.is_running:
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="dlq-scan-scheduler")
        return self._task

    async def stop(self) -> None:
        """Request shutdown and wait for the loop; in-flight scans are cancelled"""
        self._stop_event.set()
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
