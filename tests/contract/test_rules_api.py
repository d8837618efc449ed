"""
Contract tests for /api/v1/dlq/rules
Validates status codes and payload shapes of rule management, testing and replay-all
"""

import pytest

RULES = "/api/v1/dlq/rules"


def rule_payload(name="timeouts", **overrides):
    payload = {
        "name": name,
        "description": "Replay timeouts",
        "conditions": [
            {"field": "DeadLetterReason", "operator": "Contains", "value": "timeout"},
        ],
        "action": {"delaySeconds": 30, "targetEntity": None},
        "maxReplaysPerHour": 50,
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
class TestRuleTemplatesAPI:
    async def test_templates_catalog(self, client):
        """Test the seven built-in templates are served"""
        response = await client.get(f"{RULES}/templates")

        assert response.status_code == 200
        templates = response.json()
        assert len(templates) == 7
        assert {"id", "name", "description", "category", "conditions", "action"} <= set(
            templates[0]
        )


@pytest.mark.asyncio
class TestRuleCrudAPI:
    """Test CRUD status codes"""

    async def test_create_returns_201(self, client):
        response = await client.post(RULES, json=rule_payload())

        assert response.status_code == 201
        body = response.json()
        assert body["id"] > 0
        assert body["name"] == "timeouts"
        assert body["enabled"] is True
        assert body["malformed"] is False
        assert body["maxReplaysPerHour"] == 50
        assert body["conditions"][0]["operator"] == "Contains"
        assert body["action"]["delaySeconds"] == 30
        assert body["successRate"] == 0.0
        assert body["pendingMatchCount"] == 0

    async def test_duplicate_name_returns_409(self, client):
        await client.post(RULES, json=rule_payload())

        response = await client.post(RULES, json=rule_payload())

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "Rule.AlreadyExists"
        assert body["errorType"] == "Conflict"
        assert "timestamp" in body

    async def test_unknown_field_returns_400(self, client):
        payload = rule_payload(conditions=[{"field": "Body", "operator": "Contains", "value": "x"}])

        response = await client.post(RULES, json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "Rule.ValidationFailed"

    async def test_limit_out_of_range_returns_400(self, client):
        response = await client.post(RULES, json=rule_payload(maxReplaysPerHour=0))
        assert response.status_code == 400

    async def test_empty_conditions_rejected(self, client):
        response = await client.post(RULES, json=rule_payload(conditions=[]))
        assert response.status_code == 422

    async def test_get_update_delete(self, client):
        created = (await client.post(RULES, json=rule_payload())).json()
        url = f"{RULES}/{created['id']}"

        assert (await client.get(url)).json()["name"] == "timeouts"

        updated = await client.put(url, json=rule_payload(name="renamed", enabled=False))
        assert updated.status_code == 200
        assert updated.json()["name"] == "renamed"
        assert updated.json()["enabled"] is False

        assert (await client.delete(url)).status_code == 204
        assert (await client.get(url)).status_code == 404

    async def test_unknown_rule_returns_404(self, client):
        response = await client.get(f"{RULES}/999")

        assert response.status_code == 404
        assert response.json()["error"] == "Rule.NotFound"

    async def test_list_and_toggle(self, client):
        first = (await client.post(RULES, json=rule_payload("first"))).json()
        await client.post(RULES, json=rule_payload("second"))

        toggled = await client.post(f"{RULES}/{first['id']}/toggle")
        assert toggled.json()["enabled"] is False

        all_rules = (await client.get(RULES)).json()
        enabled = (await client.get(RULES, params={"enabledOnly": "true"})).json()
        assert {r["name"] for r in all_rules} == {"first", "second"}
        assert [r["name"] for r in enabled] == ["second"]


@pytest.mark.asyncio
class TestRuleTestAPI:
    """Test POST /rules/test"""

    async def test_adhoc_conditions(self, client, seed, make_record):
        await seed(
            make_record(dead_letter_reason="Timeout"),
            make_record(dead_letter_reason="Schema"),
        )

        response = await client.post(
            f"{RULES}/test",
            json={"conditions": [{"field": "DeadLetterReason", "operator": "Contains", "value": "timeout"}]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["totalTested"] == 2
        assert body["matchedCount"] == 1
        assert body["sampleMatches"][0]["isMatch"] is True
        assert 0.0 <= body["estimatedSuccessRate"] <= 1.0

    async def test_requires_rule_or_conditions(self, client):
        response = await client.post(f"{RULES}/test", json={})
        assert response.status_code == 400

    async def test_max_messages_bounds(self, client):
        response = await client.post(
            f"{RULES}/test", json={"conditions": [], "maxMessages": 5000}
        )
        assert response.status_code == 422


@pytest.mark.asyncio
class TestReplayAllAPI:
    """Test POST /rules/{id}/replay-all"""

    async def test_replay_all(self, client, seed, make_record, broker):
        await seed(*(make_record(dead_letter_reason="Timeout") for _ in range(3)))
        rule = (await client.post(RULES, json=rule_payload())).json()

        response = await client.post(f"{RULES}/{rule['id']}/replay-all")

        assert response.status_code == 200
        body = response.json()
        assert body["ruleId"] == rule["id"]
        assert (body["totalMatched"], body["replayed"], body["failed"], body["skipped"]) == (3, 3, 0, 0)
        assert {r["outcome"] for r in body["results"]} == {"Success"}
        assert len(broker.replay_calls) == 1

        refreshed = (await client.get(f"{RULES}/{rule['id']}")).json()
        assert refreshed["matchCount"] == 3
        assert refreshed["successRate"] == 100.0

    async def test_disabled_rule_returns_400(self, client):
        rule = (await client.post(RULES, json=rule_payload(enabled=False))).json()

        response = await client.post(f"{RULES}/{rule['id']}/replay-all")

        assert response.status_code == 400
        assert response.json()["error"] == "Rule.Disabled"

    async def test_unknown_rule_returns_404(self, client):
        response = await client.post(f"{RULES}/12345/replay-all")
        assert response.status_code == 404
