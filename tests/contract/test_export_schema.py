"""
Contract tests for exported record and error payload schemas
Validates JSON bodies against JSON Schema definitions
"""

import pytest
from jsonschema import validate

ISO_OR_NULL = {"type": ["string", "null"]}

DLQ_RECORD_SCHEMA = {
    "type": "object",
    "required": [
        "id",
        "messageId",
        "sequenceNumber",
        "namespaceId",
        "entityName",
        "entityType",
        "enqueuedTimeUtc",
        "detectedAtUtc",
        "failureCategory",
        "categoryConfidence",
        "status",
    ],
    "properties": {
        "id": {"type": "integer"},
        "messageId": {"type": "string"},
        "sequenceNumber": {"type": "integer"},
        "bodyHash": {"type": "string"},
        "entityType": {"enum": ["Queue", "Subscription"]},
        "enqueuedTimeUtc": {"type": "string"},
        "deadLetterTimeUtc": ISO_OR_NULL,
        "detectedAtUtc": {"type": "string"},
        "deliveryCount": {"type": "integer", "minimum": 0},
        "failureCategory": {
            "enum": [
                "Unknown",
                "Transient",
                "MaxDelivery",
                "Expired",
                "DataQuality",
                "Authorization",
                "ProcessingError",
                "ResourceNotFound",
                "QuotaExceeded",
            ]
        },
        "categoryConfidence": {"type": "number", "minimum": 0, "maximum": 1},
        "status": {"enum": ["Active", "Replayed", "Archived", "ReplayFailed", "Discarded"]},
        "replaySuccess": {"type": ["boolean", "null"]},
    },
}

ERROR_SCHEMA = {
    "type": "object",
    "required": ["error", "message", "errorType", "timestamp"],
    "properties": {
        "error": {"type": "string"},
        "message": {"type": "string"},
        "errorType": {"enum": ["Validation", "NotFound", "Conflict", "Internal", "ExternalService"]},
        "timestamp": {"type": "string"},
        "details": {"type": "object"},
    },
}


@pytest.mark.asyncio
class TestExportSchema:
    """Test exported JSON records conform to the record schema"""

    async def test_exported_records_match_schema(self, client, seed, make_record):
        await seed(
            make_record(),
            make_record(dead_lettered_at=None, application_properties='{"k": 1}'),
        )

        response = await client.get("/api/v1/dlq/export", params={"format": "json"})

        items = response.json()
        assert len(items) == 2
        for item in items:
            validate(instance=item, schema=DLQ_RECORD_SCHEMA)

    async def test_error_bodies_match_schema(self, client):
        not_found = await client.get("/api/v1/dlq/history/999")
        bad_request = await client.post("/api/v1/dlq/rules/test", json={})

        validate(instance=not_found.json(), schema=ERROR_SCHEMA)
        validate(instance=bad_request.json(), schema=ERROR_SCHEMA)
