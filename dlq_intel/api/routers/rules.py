"""
Rules Router - auto-replay rule CRUD, testing, templates and replay-all
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query, Request, Response

from dlq_intel.api.dependencies import ApiServices, cancel_on_disconnect, get_services
from dlq_intel.api.schemas import RuleRequest, RuleTestRequest, rule_test_to_dict, rule_to_dict
from dlq_intel.rules import list_templates

router = APIRouter(prefix="/api/v1/dlq/rules", tags=["rules"])


@router.get("/templates")
async def get_templates() -> List[Dict[str, Any]]:
    """Static catalog of pre-built rules"""
    return [template.to_dict() for template in list_templates()]


@router.post("/test")
async def test_rule(
    body: RuleTestRequest,
    request: Request,
    services: ApiServices = Depends(get_services),
) -> Dict[str, Any]:
    """Evaluate a stored rule or ad-hoc conditions against current Active records"""
    conditions = (
        [c.to_condition() for c in body.conditions] if body.conditions is not None else None
    )
    async with cancel_on_disconnect(request) as cancel_event:
        result = await services.rules.test_rule(
            rule_id=body.rule_id,
            conditions=conditions,
            namespace_id=body.namespace_id,
            max_messages=body.max_messages,
            cancel_event=cancel_event,
        )
    return rule_test_to_dict(result)


@router.get("")
async def list_rules(
    enabled_only: bool = Query(default=False, alias="enabledOnly"),
    services: ApiServices = Depends(get_services),
) -> List[Dict[str, Any]]:
    views = await services.rules.list_rules(enabled_only=enabled_only)
    return [rule_to_dict(view) for view in views]


@router.post("", status_code=201)
async def create_rule(
    body: RuleRequest, services: ApiServices = Depends(get_services)
) -> Dict[str, Any]:
    view = await services.rules.create_rule(body.to_draft())
    return rule_to_dict(view)


@router.get("/{rule_id}")
async def get_rule(rule_id: int, services: ApiServices = Depends(get_services)) -> Dict[str, Any]:
    return rule_to_dict(await services.rules.get_rule(rule_id))


@router.put("/{rule_id}")
async def update_rule(
    rule_id: int,
    body: RuleRequest,
    services: ApiServices = Depends(get_services),
) -> Dict[str, Any]:
    view = await services.rules.update_rule(rule_id, body.to_draft())
    return rule_to_dict(view)


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(rule_id: int, services: ApiServices = Depends(get_services)) -> Response:
    await services.rules.delete_rule(rule_id)
    return Response(status_code=204)


@router.post("/{rule_id}/toggle")
async def toggle_rule(rule_id: int, services: ApiServices = Depends(get_services)) -> Dict[str, Any]:
    return rule_to_dict(await services.rules.toggle_rule(rule_id))


@router.post("/{rule_id}/replay-all")
async def replay_all(
    rule_id: int,
    request: Request,
    services: ApiServices = Depends(get_services),
) -> Dict[str, Any]:
    """Replay every Active record matching the rule"""
    async with cancel_on_disconnect(request) as cancel_event:
        result = await services.replay.replay_all(rule_id, cancel_event=cancel_event)
    return result.to_dict()
