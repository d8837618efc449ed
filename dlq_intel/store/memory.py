"""
In-Memory History Store
Process-local store for development and tests
"""

import asyncio
import itertools
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from dlq_intel.errors import ConflictError, ErrorCode
from dlq_intel.models import AutoReplayRule, DlqRecord, ReplayHistoryRecord, utc_now
from dlq_intel.store.base import HistoryStore, RecordFilter, RuleCounterDelta, StoreError

logger = structlog.get_logger(__name__)


def _newest_first(record: DlqRecord) -> tuple:
    return (record.detected_at, record.id)


class InMemoryHistoryStore(HistoryStore):
    """
    History store kept in dictionaries

    A single asyncio.Lock makes check-then-insert atomic per dedup key.
    Records are copied on the way in and out so callers never alias stored state.
    """

    def __init__(self):
        super().__init__("memory")
        self._lock = asyncio.Lock()
        self._records: Dict[int, DlqRecord] = {}
        self._keys: Dict[tuple, int] = {}
        self._history: List[ReplayHistoryRecord] = []
        self._rules: Dict[int, AutoReplayRule] = {}
        self._record_ids = itertools.count(1)
        self._history_ids = itertools.count(1)
        self._rule_ids = itertools.count(1)

    async def connect(self) -> None:
        self.is_connected = True

    async def disconnect(self) -> None:
        self.is_connected = False

    async def health_check(self) -> bool:
        return self.is_connected

    async def insert_record_if_absent(self, record: DlqRecord) -> Optional[DlqRecord]:
        async with self._lock:
            if record.dedup_key in self._keys:
                return None

            stored = replace(record, id=next(self._record_ids))
            self._records[stored.id] = stored
            self._keys[stored.dedup_key] = stored.id
            return replace(stored)

    async def get_record(self, record_id: int) -> Optional[DlqRecord]:
        record = self._records.get(record_id)
        return replace(record) if record is not None else None

    async def get_record_by_key(
        self, namespace_id: str, entity_name: str, sequence_number: int
    ) -> Optional[DlqRecord]:
        record_id = self._keys.get((namespace_id, entity_name, sequence_number))
        if record_id is None:
            return None
        return await self.get_record(record_id)

    async def save_record(self, record: DlqRecord) -> DlqRecord:
        async with self._lock:
            self._save(record)
        return replace(record)

    def _save(self, record: DlqRecord) -> None:
        if record.id is None or record.id not in self._records:
            raise StoreError(f"DLQ record {record.id} does not exist", code=ErrorCode.DLQ_NOT_FOUND)
        self._records[record.id] = replace(record)

    async def list_records(
        self,
        record_filter: RecordFilter,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[DlqRecord], int]:
        matched = sorted(
            (r for r in self._records.values() if record_filter.matches(r)),
            key=_newest_first,
            reverse=True,
        )
        end = None if limit is None else offset + limit
        return [replace(r) for r in matched[offset:end]], len(matched)

    async def list_active_records(
        self,
        namespace_id: Optional[str] = None,
        newest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[DlqRecord]:
        active = sorted(
            (
                r
                for r in self._records.values()
                if r.is_active and (namespace_id is None or r.namespace_id == namespace_id)
            ),
            key=_newest_first,
            reverse=newest_first,
        )
        if limit is not None:
            active = active[:limit]
        return [replace(r) for r in active]

    async def update_notes(self, record_id: int, notes: Optional[str]) -> Optional[DlqRecord]:
        async with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return None
            record.user_notes = notes
            return replace(record)

    async def resolve_missing_records(
        self,
        namespace_id: str,
        entity_name: str,
        present_sequence_numbers: Optional[Iterable[int]],
        resolved_at: datetime,
    ) -> int:
        present = set(present_sequence_numbers or ())
        resolved = 0
        async with self._lock:
            for record in self._records.values():
                if (
                    record.is_active
                    and record.namespace_id == namespace_id
                    and record.entity_name == entity_name
                    and record.sequence_number not in present
                ):
                    record.mark_resolved(resolved_at)
                    resolved += 1
        return resolved

    async def get_replay_history(self, record_id: int) -> List[ReplayHistoryRecord]:
        entries = [h for h in self._history if h.dlq_record_id == record_id]
        return sorted(entries, key=lambda h: (h.replayed_at, h.id))

    async def count_rule_replays(
        self, rule_id: int, window_start: datetime, window_end: datetime
    ) -> int:
        return sum(
            1
            for h in self._history
            if h.rule_id == rule_id and window_start <= h.replayed_at <= window_end
        )

    async def commit_replay_batch(
        self,
        records: List[DlqRecord],
        history: List[ReplayHistoryRecord],
        rule_id: int,
    ) -> None:
        delta = RuleCounterDelta.from_history(history)
        async with self._lock:
            if rule_id not in self._rules:
                raise StoreError(f"Rule {rule_id} does not exist", code=ErrorCode.RULE_NOT_FOUND)
            for record in records:
                if record.id not in self._records:
                    raise StoreError(
                        f"DLQ record {record.id} does not exist", code=ErrorCode.DLQ_NOT_FOUND
                    )

            for record in records:
                self._save(record)
            for entry in history:
                self._history.append(replace(entry, id=next(self._history_ids)))

            if delta.matches:
                stored = self._rules[rule_id]
                self._rules[rule_id] = replace(
                    stored,
                    match_count=stored.match_count + delta.matches,
                    success_count=stored.success_count + delta.successes,
                    updated_at=delta.last_replayed_at,
                )

        logger.debug(
            "Replay batch committed", rule_id=rule_id, records=len(records), history=len(history)
        )

    async def list_rules(self, enabled_only: bool = False) -> List[AutoReplayRule]:
        rules = [r for r in self._rules.values() if r.enabled or not enabled_only]
        rules.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return [replace(r) for r in rules]

    async def get_rule(self, rule_id: int) -> Optional[AutoReplayRule]:
        rule = self._rules.get(rule_id)
        return replace(rule) if rule is not None else None

    async def get_rule_by_name(self, name: str) -> Optional[AutoReplayRule]:
        for rule in self._rules.values():
            if rule.name == name:
                return replace(rule)
        return None

    async def create_rule(self, rule: AutoReplayRule) -> AutoReplayRule:
        async with self._lock:
            self._check_name_free(rule.name, exclude_id=None)
            stored = replace(rule, id=next(self._rule_ids))
            self._rules[stored.id] = stored
            return replace(stored)

    async def update_rule(self, rule: AutoReplayRule) -> AutoReplayRule:
        async with self._lock:
            if rule.id not in self._rules:
                raise StoreError(f"Rule {rule.id} does not exist", code=ErrorCode.RULE_NOT_FOUND)
            self._check_name_free(rule.name, exclude_id=rule.id)
            self._rules[rule.id] = replace(rule, updated_at=rule.updated_at or utc_now())
            return replace(self._rules[rule.id])

    async def delete_rule(self, rule_id: int) -> bool:
        async with self._lock:
            return self._rules.pop(rule_id, None) is not None

    def _check_name_free(self, name: str, exclude_id: Optional[int]) -> None:
        for existing in self._rules.values():
            if existing.name == name and existing.id != exclude_id:
                raise ConflictError(
                    f"A rule named '{name}' already exists", code=ErrorCode.RULE_ALREADY_EXISTS
                )
