"""
Unit tests for rule management and the rule test workflow
"""

import asyncio

import pytest

from dlq_intel.errors import ConflictError, NotFoundError, ValidationError
from dlq_intel.models import (
    FailureCategory,
    RuleAction,
    RuleCondition,
    RuleField,
    RuleOperator,
)
from dlq_intel.rules import RuleDraft, RuleService
from dlq_intel.rules.engine import RuleEngine, RuleMatchResult
from dlq_intel.rules.service import estimate_success_rate

TIMEOUT = [RuleCondition(RuleField.DEAD_LETTER_REASON, RuleOperator.CONTAINS, "timeout")]


@pytest.fixture
def service(store):
    return RuleService(store, RuleEngine(), test_sample_size=2, test_max_messages_ceiling=1000)


def draft(name="timeouts", conditions=None, **kwargs) -> RuleDraft:
    return RuleDraft(name=name, conditions=conditions or TIMEOUT, **kwargs)


@pytest.mark.asyncio
class TestRuleCrud:
    """Test create, read, update, delete and toggle"""

    async def test_create_and_get(self, service):
        view = await service.create_rule(
            draft(description="Retry timeouts", action=RuleAction(delay_seconds=60))
        )

        assert view.rule.id is not None
        assert view.rule.name == "timeouts"
        assert view.conditions == TIMEOUT
        assert view.action.delay_seconds == 60

        fetched = await service.get_rule(view.rule.id)
        assert fetched.rule.description == "Retry timeouts"

    async def test_duplicate_name_conflicts(self, service):
        await service.create_rule(draft())
        with pytest.raises(ConflictError):
            await service.create_rule(draft())

    async def test_field_limits_raise_validation_error(self, service):
        with pytest.raises(ValidationError):
            await service.create_rule(draft(max_replays_per_hour=0))
        with pytest.raises(ValidationError):
            await service.create_rule(draft(name="x" * 300))

    async def test_update_preserves_counters(self, service, store):
        """Test that updating the definition keeps match statistics and creation time"""
        created = await service.create_rule(draft())
        rule = await store.get_rule(created.rule.id)
        rule.match_count = 4
        rule.success_count = 3
        await store.update_rule(rule)

        updated = await service.update_rule(
            rule.id, draft(name="renamed", max_replays_per_hour=10)
        )

        assert updated.rule.name == "renamed"
        assert updated.rule.max_replays_per_hour == 10
        assert updated.rule.match_count == 4
        assert updated.rule.success_count == 3
        assert updated.rule.created_at == created.rule.created_at
        assert updated.rule.updated_at is not None

    async def test_update_to_taken_name_conflicts(self, service):
        await service.create_rule(draft("first"))
        second = await service.create_rule(draft("second"))

        with pytest.raises(ConflictError):
            await service.update_rule(second.rule.id, draft("first"))

        # Keeping its own name is fine
        await service.update_rule(second.rule.id, draft("second"))

    async def test_unknown_rule_is_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.get_rule(42)
        with pytest.raises(NotFoundError):
            await service.update_rule(42, draft())
        with pytest.raises(NotFoundError):
            await service.delete_rule(42)
        with pytest.raises(NotFoundError):
            await service.toggle_rule(42)

    async def test_delete(self, service):
        view = await service.create_rule(draft())
        await service.delete_rule(view.rule.id)
        with pytest.raises(NotFoundError):
            await service.get_rule(view.rule.id)

    async def test_toggle_flips_enabled(self, service):
        view = await service.create_rule(draft())

        assert (await service.toggle_rule(view.rule.id)).rule.enabled is False
        assert (await service.toggle_rule(view.rule.id)).rule.enabled is True

    async def test_list_filters_enabled_and_counts_pending(self, service, seed, make_record):
        """Test pending match counts against Active records"""
        await seed(
            make_record(dead_letter_reason="Timeout"),
            make_record(dead_letter_reason="Connection timeout"),
            make_record(dead_letter_reason="SchemaError"),
        )
        await service.create_rule(draft("timeouts"))
        await service.create_rule(draft("off", enabled=False))

        views = await service.list_rules()
        assert {v.rule.name: v.pending_match_count for v in views} == {"timeouts": 2, "off": 2}

        enabled = await service.list_rules(enabled_only=True)
        assert [v.rule.name for v in enabled] == ["timeouts"]

    async def test_malformed_rule_is_listed_without_parsed_data(self, service, store):
        view = await service.create_rule(draft())
        rule = await store.get_rule(view.rule.id)
        rule.action_json = '{"version": 7, "action": {}}'
        await store.update_rule(rule)

        [listed] = await service.list_rules()

        assert listed.conditions is None
        assert listed.action is None
        assert listed.pending_match_count == 0


@pytest.mark.asyncio
class TestRuleTest:
    """Test the interactive rule test workflow"""

    async def test_counts_matches_over_recent_records(self, service, seed, make_record):
        """Test ten records with three timeouts"""
        reasons = ["Timeout", "SchemaError", "timeout!", "Unauthorized", "TIMEOUT"] + ["Other"] * 5
        await seed(*(make_record(dead_letter_reason=r) for r in reasons))

        result = await service.test_rule(conditions=TIMEOUT)

        assert result.total_tested == 10
        assert result.matched_count == 3
        assert len(result.sample_matches) == 2

    async def test_limits_to_most_recent_records(self, service, seed, make_record):
        records = await seed(*(make_record(dead_letter_reason="Timeout") for _ in range(5)))

        result = await service.test_rule(conditions=TIMEOUT, max_messages=2)

        assert result.total_tested == 2
        assert [m.record_id for m in result.sample_matches] == [records[4].id, records[3].id]

    async def test_namespace_filter(self, service, seed, make_record):
        await seed(
            make_record(dead_letter_reason="Timeout", namespace_id="ns-1"),
            make_record(dead_letter_reason="Timeout", namespace_id="ns-2"),
        )

        result = await service.test_rule(conditions=TIMEOUT, namespace_id="ns-2")

        assert result.total_tested == 1

    async def test_stored_rule_conditions(self, service, seed, make_record):
        await seed(make_record(dead_letter_reason="Timeout"), make_record(dead_letter_reason="x"))
        view = await service.create_rule(draft())

        result = await service.test_rule(rule_id=view.rule.id)

        assert result.matched_count == 1

    async def test_requires_rule_or_conditions(self, service):
        with pytest.raises(ValidationError):
            await service.test_rule()

    async def test_unknown_rule(self, service):
        with pytest.raises(NotFoundError):
            await service.test_rule(rule_id=5)

    async def test_estimated_success_rate(self, service, seed, make_record):
        await seed(
            make_record(dead_letter_reason="Timeout", failure_category=FailureCategory.TRANSIENT),
            make_record(dead_letter_reason="Timeout", failure_category=FailureCategory.DATA_QUALITY),
            make_record(dead_letter_reason="Timeout", failure_category=FailureCategory.EXPIRED),
        )

        result = await service.test_rule(conditions=TIMEOUT)

        assert result.estimated_success_rate == 0.667

    async def test_cancellation(self, service, seed, make_record):
        await seed(make_record(dead_letter_reason="Timeout"))
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(asyncio.CancelledError):
            await service.test_rule(conditions=TIMEOUT, cancel_event=cancel_event)


class TestEstimateSuccessRate:
    def test_no_matches(self):
        assert estimate_success_rate([]) == 0.0

    def test_all_recoverable(self):
        matches = [
            RuleMatchResult(
                record_id=1,
                message_id="m",
                entity_name="orders",
                failure_category=FailureCategory.MAX_DELIVERY,
                is_match=True,
                reason="",
            )
        ]
        assert estimate_success_rate(matches) == 1.0
