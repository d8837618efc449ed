"""
PostgreSQL History Store
Persists DLQ records, replay history and rules using async psycopg
"""

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import psycopg
import structlog
from psycopg import AsyncConnection
from psycopg.rows import dict_row

from dlq_intel.errors import ConflictError, ErrorCode
from dlq_intel.models import (
    AutoReplayRule,
    DlqRecord,
    DlqStatus,
    EntityKind,
    FailureCategory,
    ReplayHistoryRecord,
    ReplayOutcome,
    ReplayStrategy,
    utc_now,
)
from dlq_intel.store.base import HistoryStore, RecordFilter, RuleCounterDelta, StoreError

logger = structlog.get_logger(__name__)

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS dlq_records (
    id BIGSERIAL PRIMARY KEY,
    message_id TEXT NOT NULL,
    sequence_number BIGINT NOT NULL,
    body_hash TEXT NOT NULL,
    body_preview TEXT,
    namespace_id TEXT NOT NULL,
    entity_name TEXT NOT NULL,
    entity_kind TEXT NOT NULL,
    topic_name TEXT,
    enqueued_at TIMESTAMPTZ NOT NULL,
    dead_lettered_at TIMESTAMPTZ,
    detected_at TIMESTAMPTZ NOT NULL,
    dead_letter_reason TEXT,
    dead_letter_description TEXT,
    delivery_count INTEGER NOT NULL DEFAULT 0,
    content_type TEXT,
    size_bytes BIGINT NOT NULL DEFAULT 0,
    application_properties TEXT,
    failure_category TEXT NOT NULL,
    category_confidence DOUBLE PRECISION NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    replayed_at TIMESTAMPTZ,
    replay_success BOOLEAN,
    resolved_at TIMESTAMPTZ,
    archived_at TIMESTAMPTZ,
    user_notes TEXT,
    correlation_id TEXT,
    session_id TEXT,
    CONSTRAINT uq_dlq_records_key UNIQUE (namespace_id, entity_name, sequence_number)
);
CREATE INDEX IF NOT EXISTS ix_dlq_records_status_detected ON dlq_records (status, detected_at);
CREATE INDEX IF NOT EXISTS ix_dlq_records_detected ON dlq_records (detected_at);

CREATE TABLE IF NOT EXISTS auto_replay_rules (
    id BIGSERIAL PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    conditions_json TEXT NOT NULL,
    action_json TEXT NOT NULL,
    match_count INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    max_replays_per_hour INTEGER NOT NULL DEFAULT 100,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS replay_history (
    id BIGSERIAL PRIMARY KEY,
    dlq_record_id BIGINT NOT NULL REFERENCES dlq_records (id),
    rule_id BIGINT REFERENCES auto_replay_rules (id) ON DELETE SET NULL,
    replayed_at TIMESTAMPTZ NOT NULL,
    replayed_by TEXT NOT NULL,
    strategy TEXT NOT NULL,
    replayed_to TEXT NOT NULL,
    outcome TEXT NOT NULL,
    new_dead_letter_reason TEXT,
    error_details TEXT
);
CREATE INDEX IF NOT EXISTS ix_replay_history_rule ON replay_history (rule_id, replayed_at);
CREATE INDEX IF NOT EXISTS ix_replay_history_record ON replay_history (dlq_record_id);
"""

RECORD_COLUMNS = (
    "message_id",
    "sequence_number",
    "body_hash",
    "body_preview",
    "namespace_id",
    "entity_name",
    "entity_kind",
    "topic_name",
    "enqueued_at",
    "dead_lettered_at",
    "detected_at",
    "dead_letter_reason",
    "dead_letter_description",
    "delivery_count",
    "content_type",
    "size_bytes",
    "application_properties",
    "failure_category",
    "category_confidence",
    "status",
    "replayed_at",
    "replay_success",
    "resolved_at",
    "archived_at",
    "user_notes",
    "correlation_id",
    "session_id",
)

RULE_COLUMNS = (
    "name",
    "description",
    "enabled",
    "conditions_json",
    "action_json",
    "match_count",
    "success_count",
    "max_replays_per_hour",
    "created_at",
    "updated_at",
)

_ENUM_FIELDS = {
    "entity_kind": EntityKind,
    "failure_category": FailureCategory,
    "status": DlqStatus,
}


def _record_params(record: DlqRecord) -> List[Any]:
    values = []
    for column in RECORD_COLUMNS:
        value = getattr(record, column)
        values.append(value.value if column in _ENUM_FIELDS else value)
    return values


def _row_to_record(row: Dict[str, Any]) -> DlqRecord:
    data = {column: row[column] for column in RECORD_COLUMNS}
    for column, enum_type in _ENUM_FIELDS.items():
        data[column] = enum_type(data[column])
    return DlqRecord(id=row["id"], **data)


def _row_to_rule(row: Dict[str, Any]) -> AutoReplayRule:
    return AutoReplayRule(id=row["id"], **{column: row[column] for column in RULE_COLUMNS})


def _row_to_history(row: Dict[str, Any]) -> ReplayHistoryRecord:
    return ReplayHistoryRecord(
        id=row["id"],
        dlq_record_id=row["dlq_record_id"],
        rule_id=row["rule_id"],
        replayed_at=row["replayed_at"],
        replayed_by=row["replayed_by"],
        strategy=ReplayStrategy(row["strategy"]),
        replayed_to=row["replayed_to"],
        outcome=ReplayOutcome(row["outcome"]),
        new_dead_letter_reason=row["new_dead_letter_reason"],
        error_details=row["error_details"],
    )


def _filter_clause(record_filter: RecordFilter) -> Tuple[str, List[Any]]:
    clauses = []
    params: List[Any] = []

    if record_filter.namespace_id is not None:
        clauses.append("namespace_id = %s")
        params.append(record_filter.namespace_id)
    if record_filter.entity_name:
        clauses.append("strpos(entity_name, %s) > 0")
        params.append(record_filter.entity_name)
    if record_filter.detected_from is not None:
        clauses.append("detected_at >= %s")
        params.append(record_filter.detected_from)
    if record_filter.detected_to is not None:
        clauses.append("detected_at <= %s")
        params.append(record_filter.detected_to)
    if record_filter.status is not None:
        clauses.append("status = %s")
        params.append(record_filter.status.value)
    if record_filter.category is not None:
        clauses.append("failure_category = %s")
        params.append(record_filter.category.value)

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


class PostgresHistoryStore(HistoryStore):
    """
    Postgres-backed history store

    The dedup key is enforced by a unique constraint and inserts use
    INSERT ... ON CONFLICT DO NOTHING, so concurrent scans never duplicate rows.
    One connection is shared; statements are serialized with an asyncio.Lock.
    """

    def __init__(self, connection_url: str, initialize_schema: bool = True):
        """
        Initialize Postgres store

        Args:
            connection_url: Postgres connection URL
            initialize_schema: Create tables on connect if missing
        """
        super().__init__("postgres")
        self.connection_url = connection_url
        self.initialize_schema = initialize_schema
        self._conn: Optional[AsyncConnection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """
        Establish async connection to Postgres

        Raises:
            StoreError: If connection fails
        """
        try:
            self._conn = await AsyncConnection.connect(
                self.connection_url,
                row_factory=dict_row,
                autocommit=True,
            )
            if self.initialize_schema:
                async with self._conn.transaction():
                    await self._conn.execute(SCHEMA_DDL)
            self.is_connected = True
            logger.info("Connected to Postgres history store")

        except psycopg.Error as e:
            raise StoreError(f"Failed to connect to Postgres: {e}") from e

    async def disconnect(self) -> None:
        """Close Postgres connection"""
        if self._conn:
            await self._conn.close()
            self._conn = None
            self.is_connected = False
            logger.info("Disconnected from Postgres history store")

    async def health_check(self) -> bool:
        try:
            await self._fetchone("SELECT 1 AS ok")
            return True
        except StoreError as e:
            logger.warning("Postgres health check failed", error=str(e))
            return False

    async def _fetchall(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        if not self._conn:
            raise StoreError("Not connected to Postgres")
        try:
            async with self._lock:
                cur = await self._conn.execute(query, params)
                return await cur.fetchall()
        except psycopg.Error as e:
            raise StoreError(f"Postgres query failed: {e}") from e

    async def _fetchone(self, query: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows = await self._fetchall(query, params)
        return rows[0] if rows else None

    async def _execute(self, query: str, params: Sequence[Any] = ()) -> int:
        if not self._conn:
            raise StoreError("Not connected to Postgres")
        try:
            async with self._lock:
                cur = await self._conn.execute(query, params)
                return cur.rowcount
        except psycopg.Error as e:
            raise StoreError(f"Postgres statement failed: {e}") from e

    # DLQ records

    async def insert_record_if_absent(self, record: DlqRecord) -> Optional[DlqRecord]:
        columns = ", ".join(RECORD_COLUMNS)
        placeholders = ", ".join(["%s"] * len(RECORD_COLUMNS))
        row = await self._fetchone(
            f"""
            INSERT INTO dlq_records ({columns})
            VALUES ({placeholders})
            ON CONFLICT (namespace_id, entity_name, sequence_number) DO NOTHING
            RETURNING id
            """,
            _record_params(record),
        )
        if row is None:
            return None
        return replace(record, id=row["id"])

    async def get_record(self, record_id: int) -> Optional[DlqRecord]:
        row = await self._fetchone("SELECT * FROM dlq_records WHERE id = %s", (record_id,))
        return _row_to_record(row) if row else None

    async def get_record_by_key(
        self, namespace_id: str, entity_name: str, sequence_number: int
    ) -> Optional[DlqRecord]:
        row = await self._fetchone(
            """
            SELECT * FROM dlq_records
            WHERE namespace_id = %s AND entity_name = %s AND sequence_number = %s
            """,
            (namespace_id, entity_name, sequence_number),
        )
        return _row_to_record(row) if row else None

    async def save_record(self, record: DlqRecord) -> DlqRecord:
        if record.id is None:
            raise StoreError("Cannot save a DLQ record without an id", code=ErrorCode.DLQ_NOT_FOUND)

        updated = await self._execute(self._update_record_sql(), [*_record_params(record), record.id])
        if updated == 0:
            raise StoreError(f"DLQ record {record.id} does not exist", code=ErrorCode.DLQ_NOT_FOUND)
        return record

    @staticmethod
    def _update_record_sql() -> str:
        assignments = ", ".join(f"{column} = %s" for column in RECORD_COLUMNS)
        return f"UPDATE dlq_records SET {assignments} WHERE id = %s"

    async def list_records(
        self,
        record_filter: RecordFilter,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[DlqRecord], int]:
        where, params = _filter_clause(record_filter)
        total_row = await self._fetchone(f"SELECT count(*) AS total FROM dlq_records {where}", params)

        query = f"SELECT * FROM dlq_records {where} ORDER BY detected_at DESC, id DESC OFFSET %s"
        page_params = [*params, offset]
        if limit is not None:
            query += " LIMIT %s"
            page_params.append(limit)

        rows = await self._fetchall(query, page_params)
        return [_row_to_record(row) for row in rows], total_row["total"]

    async def list_active_records(
        self,
        namespace_id: Optional[str] = None,
        newest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[DlqRecord]:
        direction = "DESC" if newest_first else "ASC"
        query = "SELECT * FROM dlq_records WHERE status = %s"
        params: List[Any] = [DlqStatus.ACTIVE.value]
        if namespace_id is not None:
            query += " AND namespace_id = %s"
            params.append(namespace_id)
        query += f" ORDER BY detected_at {direction}, id {direction}"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)

        rows = await self._fetchall(query, params)
        return [_row_to_record(row) for row in rows]

    async def update_notes(self, record_id: int, notes: Optional[str]) -> Optional[DlqRecord]:
        row = await self._fetchone(
            "UPDATE dlq_records SET user_notes = %s WHERE id = %s RETURNING *",
            (notes, record_id),
        )
        return _row_to_record(row) if row else None

    async def resolve_missing_records(
        self,
        namespace_id: str,
        entity_name: str,
        present_sequence_numbers: Optional[Iterable[int]],
        resolved_at: datetime,
    ) -> int:
        present = list(present_sequence_numbers or ())
        return await self._execute(
            """
            UPDATE dlq_records
            SET status = %s, replayed_at = %s, resolved_at = %s
            WHERE namespace_id = %s AND entity_name = %s AND status = %s
              AND NOT (sequence_number = ANY(%s::bigint[]))
            """,
            (
                DlqStatus.REPLAYED.value,
                resolved_at,
                resolved_at,
                namespace_id,
                entity_name,
                DlqStatus.ACTIVE.value,
                present,
            ),
        )

    # Replay history

    async def get_replay_history(self, record_id: int) -> List[ReplayHistoryRecord]:
        rows = await self._fetchall(
            "SELECT * FROM replay_history WHERE dlq_record_id = %s ORDER BY replayed_at, id",
            (record_id,),
        )
        return [_row_to_history(row) for row in rows]

    async def count_rule_replays(
        self, rule_id: int, window_start: datetime, window_end: datetime
    ) -> int:
        row = await self._fetchone(
            """
            SELECT count(*) AS total FROM replay_history
            WHERE rule_id = %s AND replayed_at >= %s AND replayed_at <= %s
            """,
            (rule_id, window_start, window_end),
        )
        return row["total"]

    async def commit_replay_batch(
        self,
        records: List[DlqRecord],
        history: List[ReplayHistoryRecord],
        rule_id: int,
    ) -> None:
        if not self._conn:
            raise StoreError("Not connected to Postgres")

        delta = RuleCounterDelta.from_history(history)

        try:
            async with self._lock:
                async with self._conn.transaction():
                    async with self._conn.cursor() as cur:
                        for record in records:
                            await cur.execute(
                                self._update_record_sql(), [*_record_params(record), record.id]
                            )
                        for entry in history:
                            await cur.execute(
                                """
                                INSERT INTO replay_history (
                                    dlq_record_id, rule_id, replayed_at, replayed_by, strategy,
                                    replayed_to, outcome, new_dead_letter_reason, error_details
                                )
                                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                                """,
                                (
                                    entry.dlq_record_id,
                                    entry.rule_id,
                                    entry.replayed_at,
                                    entry.replayed_by,
                                    entry.strategy.value,
                                    entry.replayed_to,
                                    entry.outcome.value,
                                    entry.new_dead_letter_reason,
                                    entry.error_details,
                                ),
                            )
                        if delta.matches:
                            await cur.execute(
                                """
                                UPDATE auto_replay_rules
                                SET match_count = match_count + %s,
                                    success_count = success_count + %s,
                                    updated_at = %s
                                WHERE id = %s
                                """,
                                (delta.matches, delta.successes, delta.last_replayed_at, rule_id),
                            )

            logger.debug(
                "Replay batch committed", rule_id=rule_id, records=len(records), history=len(history)
            )

        except psycopg.Error as e:
            raise StoreError(f"Failed to commit replay batch: {e}") from e

    # Rules

    async def list_rules(self, enabled_only: bool = False) -> List[AutoReplayRule]:
        query = "SELECT * FROM auto_replay_rules"
        if enabled_only:
            query += " WHERE enabled"
        query += " ORDER BY created_at DESC, id DESC"
        return [_row_to_rule(row) for row in await self._fetchall(query)]

    async def get_rule(self, rule_id: int) -> Optional[AutoReplayRule]:
        row = await self._fetchone("SELECT * FROM auto_replay_rules WHERE id = %s", (rule_id,))
        return _row_to_rule(row) if row else None

    async def get_rule_by_name(self, name: str) -> Optional[AutoReplayRule]:
        row = await self._fetchone("SELECT * FROM auto_replay_rules WHERE name = %s", (name,))
        return _row_to_rule(row) if row else None

    async def create_rule(self, rule: AutoReplayRule) -> AutoReplayRule:
        columns = ", ".join(RULE_COLUMNS)
        placeholders = ", ".join(["%s"] * len(RULE_COLUMNS))
        try:
            row = await self._fetchone(
                f"INSERT INTO auto_replay_rules ({columns}) VALUES ({placeholders}) RETURNING id",
                [getattr(rule, column) for column in RULE_COLUMNS],
            )
        except StoreError as e:
            self._raise_if_duplicate_name(e, rule.name)
            raise
        return replace(rule, id=row["id"])

    async def update_rule(self, rule: AutoReplayRule) -> AutoReplayRule:
        rule = replace(rule, updated_at=rule.updated_at or utc_now())
        assignments = ", ".join(f"{column} = %s" for column in RULE_COLUMNS)
        try:
            updated = await self._execute(
                f"UPDATE auto_replay_rules SET {assignments} WHERE id = %s",
                [*(getattr(rule, column) for column in RULE_COLUMNS), rule.id],
            )
        except StoreError as e:
            self._raise_if_duplicate_name(e, rule.name)
            raise
        if updated == 0:
            raise StoreError(f"Rule {rule.id} does not exist", code=ErrorCode.RULE_NOT_FOUND)
        return rule

    async def delete_rule(self, rule_id: int) -> bool:
        deleted = await self._execute("DELETE FROM auto_replay_rules WHERE id = %s", (rule_id,))
        return deleted > 0

    @staticmethod
    def _raise_if_duplicate_name(error: StoreError, name: str) -> None:
        if isinstance(error.__cause__, psycopg.errors.UniqueViolation):
            raise ConflictError(
                f"A rule named '{name}' already exists", code=ErrorCode.RULE_ALREADY_EXISTS
            ) from error
