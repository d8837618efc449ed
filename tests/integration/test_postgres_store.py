"""
Integration tests for the Postgres history store
Runs the store contract against a real Postgres testcontainer
"""

import asyncio
from datetime import timedelta

import pytest

from dlq_intel.errors import ConflictError
from dlq_intel.models import (
    AutoReplayRule,
    DlqStatus,
    EntityKind,
    FailureCategory,
    ReplayHistoryRecord,
    ReplayOutcome,
    ReplayStrategy,
    RuleAction,
    RuleCondition,
    RuleField,
    RuleOperator,
)
from dlq_intel.store import RecordFilter

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


def new_rule(name="timeouts") -> AutoReplayRule:
    return AutoReplayRule.create(
        name=name,
        conditions=[RuleCondition(RuleField.DEAD_LETTER_REASON, RuleOperator.CONTAINS, "timeout")],
        action=RuleAction(),
    )


class TestPostgresRecords:
    """Test DLQ record persistence"""

    async def test_insert_is_idempotent_per_key(self, pg_store, make_record):
        """Test the unique key rejects a second insert of the same message"""
        record = make_record(
            entity_name="payments/subscriptions/ledger",
            entity_kind=EntityKind.SUBSCRIPTION,
            topic_name="payments",
            application_properties='{"tenant": "acme"}',
        )

        first = await pg_store.insert_record_if_absent(record)
        second = await pg_store.insert_record_if_absent(record)

        assert first.id is not None
        assert second is None
        stored = await pg_store.get_record(first.id)
        assert stored.entity_kind == EntityKind.SUBSCRIPTION
        assert stored.application_properties == '{"tenant": "acme"}'
        assert stored.detected_at == record.detected_at

    async def test_concurrent_inserts_store_one_row(self, pg_store, make_record):
        record = make_record()

        results = await asyncio.gather(
            *(pg_store.insert_record_if_absent(record) for _ in range(5))
        )

        assert sum(1 for r in results if r is not None) == 1
        _, total = await pg_store.list_records(RecordFilter())
        assert total == 1

    async def test_list_filter_and_order(self, pg_store, make_record):
        records = [
            await pg_store.insert_record_if_absent(r)
            for r in (
                make_record(entity_name="orders"),
                make_record(entity_name="orders-eu", failure_category=FailureCategory.TRANSIENT),
                make_record(entity_name="billing", status=DlqStatus.ARCHIVED),
            )
        ]

        items, total = await pg_store.list_records(RecordFilter(), offset=0, limit=2)
        assert total == 3
        assert [r.id for r in items] == [records[2].id, records[1].id]

        _, orders = await pg_store.list_records(RecordFilter(entity_name="orders"))
        assert orders == 2
        _, transient = await pg_store.list_records(
            RecordFilter(category=FailureCategory.TRANSIENT)
        )
        assert transient == 1
        _, windowed = await pg_store.list_records(
            RecordFilter(
                detected_from=records[1].detected_at,
                detected_to=records[1].detected_at + timedelta(seconds=1),
            )
        )
        assert windowed == 1

        active = await pg_store.list_active_records(newest_first=True, limit=1)
        assert [r.id for r in active] == [records[1].id]

    async def test_resolve_missing_records(self, pg_store, make_record):
        records = [await pg_store.insert_record_if_absent(make_record()) for _ in range(3)]
        present = [records[0].sequence_number]
        resolved_at = records[0].detected_at + timedelta(hours=1)

        count = await pg_store.resolve_missing_records("ns-1", "orders", present, resolved_at)

        assert count == 2
        assert (await pg_store.get_record(records[0].id)).status == DlqStatus.ACTIVE
        resolved = await pg_store.get_record(records[1].id)
        assert resolved.status == DlqStatus.REPLAYED
        assert resolved.resolved_at == resolved_at

        assert await pg_store.resolve_missing_records("ns-1", "orders", None, resolved_at) == 1

    async def test_update_notes(self, pg_store, make_record):
        record = await pg_store.insert_record_if_absent(make_record())

        updated = await pg_store.update_notes(record.id, "looked at it")

        assert updated.user_notes == "looked at it"
        assert await pg_store.update_notes(999999, "x") is None


class TestPostgresReplay:
    """Test the atomic replay commit"""

    async def test_commit_replay_batch(self, pg_store, make_record):
        record = await pg_store.insert_record_if_absent(make_record())
        rule = await pg_store.create_rule(new_rule())
        replayed_at = record.detected_at + timedelta(minutes=30)

        record.status = DlqStatus.REPLAYED
        record.replayed_at = replayed_at
        record.replay_success = True
        entry = ReplayHistoryRecord(
            dlq_record_id=record.id,
            rule_id=rule.id,
            replayed_at=replayed_at,
            replayed_by="rule:timeouts",
            strategy=ReplayStrategy.ORIGINAL_ENTITY,
            replayed_to="orders",
            outcome=ReplayOutcome.SUCCESS,
        )

        await pg_store.commit_replay_batch([record], [entry], rule.id)

        assert (await pg_store.get_record(record.id)).status == DlqStatus.REPLAYED
        [history] = await pg_store.get_replay_history(record.id)
        assert history.replayed_by == "rule:timeouts"
        assert history.id is not None
        stored_rule = await pg_store.get_rule(rule.id)
        assert (stored_rule.match_count, stored_rule.success_count) == (1, 1)

        window = timedelta(hours=1)
        assert await pg_store.count_rule_replays(rule.id, replayed_at - window, replayed_at) == 1
        assert (
            await pg_store.count_rule_replays(
                rule.id, replayed_at + timedelta(seconds=1), replayed_at + window
            )
            == 0
        )

    async def test_commit_increments_counters_and_keeps_rule_edits(self, pg_store, make_record):
        """Test that counters add up across commits and a concurrent disable survives"""
        first, second = [
            await pg_store.insert_record_if_absent(make_record()) for _ in range(2)
        ]
        rule = await pg_store.create_rule(new_rule())
        replayed_at = first.detected_at + timedelta(minutes=30)

        def attempt(record, outcome):
            return ReplayHistoryRecord(
                dlq_record_id=record.id,
                rule_id=rule.id,
                replayed_at=replayed_at,
                replayed_by="rule:timeouts",
                strategy=ReplayStrategy.ORIGINAL_ENTITY,
                replayed_to="orders",
                outcome=outcome,
            )

        await pg_store.commit_replay_batch([], [attempt(first, ReplayOutcome.SUCCESS)], rule.id)
        disabled = await pg_store.get_rule(rule.id)
        disabled.enabled = False
        await pg_store.update_rule(disabled)
        await pg_store.commit_replay_batch([], [attempt(second, ReplayOutcome.FAILED)], rule.id)

        stored_rule = await pg_store.get_rule(rule.id)
        assert stored_rule.enabled is False
        assert (stored_rule.match_count, stored_rule.success_count) == (2, 1)
        assert stored_rule.updated_at == replayed_at


class TestPostgresRules:
    """Test rule persistence"""

    async def test_rule_crud(self, pg_store):
        created = await pg_store.create_rule(new_rule())

        fetched = await pg_store.get_rule(created.id)
        assert fetched.name == "timeouts"
        assert fetched.conditions() == created.conditions()
        assert (await pg_store.get_rule_by_name("timeouts")).id == created.id

        fetched.enabled = False
        await pg_store.update_rule(fetched)
        assert await pg_store.list_rules(enabled_only=True) == []

        assert await pg_store.delete_rule(created.id) is True
        assert await pg_store.delete_rule(created.id) is False

    async def test_duplicate_name_conflicts(self, pg_store):
        await pg_store.create_rule(new_rule())

        with pytest.raises(ConflictError):
            await pg_store.create_rule(new_rule())

    async def test_rename_to_taken_name_conflicts(self, pg_store):
        await pg_store.create_rule(new_rule("first"))
        second = await pg_store.create_rule(new_rule("second"))

        second.name = "first"
        with pytest.raises(ConflictError):
            await pg_store.update_rule(second)


class TestPostgresHealth:
    async def test_health_check(self, pg_store):
        assert await pg_store.health_check() is True
