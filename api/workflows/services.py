from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from tortoise.expressions import F

from shared.database.models import User
from shared.database.workflow_models import (
    Execution,
    ExecutionStatus,
    TriggerKind,
    Workflow,
    parse_execution_public_id,
    parse_workflow_public_id,
)
from shared.logger import get_logger
from workflow_core.graph import find_trigger_node
from workflow_core.schema import PollState, ScheduleState

logger = get_logger("api.workflows.services")

WEBHOOK_ID_BYTES = 24


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _generate_webhook_id() -> str:
    while True:
        candidate = secrets.token_urlsafe(WEBHOOK_ID_BYTES)
        if not await Workflow.filter(webhook_id=candidate).exists():
            return candidate


async def create_workflow(
    user: User,
    *,
    name: str,
    nodes: List[Dict[str, Any]],
    connections: Optional[List[Dict[str, Any]]] = None,
    description: Optional[str] = None,
    trigger_type: Optional[str] = None,
    trigger_config: Optional[Dict[str, Any]] = None,
    cron_expression: Optional[str] = None,
    timezone_name: Optional[str] = None,
    is_active: bool = False,
) -> Workflow:
    """Persist a workflow definition with a freshly generated webhook id."""
    workflow = await Workflow.create(
        user=user,
        name=name,
        description=description,
        nodes=list(nodes or []),
        connections=list(connections or []),
        trigger_type=trigger_type,
        trigger_config=trigger_config,
        cron_expression=cron_expression,
        timezone=timezone_name,
        is_active=is_active,
        webhook_id=await _generate_webhook_id(),
    )
    logger.info("Workflow created", extra={"workflow_id": workflow.workflow_id})
    return workflow


async def list_active_workflows() -> List[Workflow]:
    return await Workflow.filter(is_active=True).order_by("id")


async def get_workflow(workflow_id: str, *, user: Optional[User] = None) -> Workflow:
    try:
        pk = parse_workflow_public_id(workflow_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Workflow id is invalid") from None
    query = Workflow.filter(id=pk)
    if user is not None:
        query = query.filter(user=user)
    workflow = await query.first()
    if workflow is None:
        raise HTTPException(status_code=404, detail=f"Workflow '{workflow_id}' not found")
    return workflow


async def get_workflow_by_webhook_id(webhook_id: str) -> Optional[Workflow]:
    return await Workflow.get_or_none(webhook_id=webhook_id)


async def set_workflow_active(workflow: Workflow, is_active: bool) -> None:
    await Workflow.filter(id=workflow.id).update(is_active=is_active)
    workflow.is_active = is_active


async def save_poll_state(workflow: Workflow, state: PollState) -> None:
    """Write the poll state column only, leaving concurrent edits to other columns intact."""
    stored = state.to_stored()
    await Workflow.filter(id=workflow.id).update(poll_state=stored)
    workflow.poll_state = stored


async def save_schedule_state(workflow: Workflow, state: ScheduleState) -> None:
    stored = state.to_stored()
    await Workflow.filter(id=workflow.id).update(schedule_state=stored)
    workflow.schedule_state = stored


async def record_workflow_outcome(
    workflow: Workflow,
    status: ExecutionStatus,
    *,
    executed_at: Optional[datetime] = None,
) -> None:
    """Bump the execution counter atomically and remember the latest outcome."""
    executed_at = executed_at or _now()
    await Workflow.filter(id=workflow.id).update(
        execution_count=F("execution_count") + 1,
        last_executed_at=executed_at,
        last_execution_status=status,
    )


async def list_executions(workflow: Workflow, *, limit: int = 50) -> List[Execution]:
    limit = max(1, min(limit, 200))
    return await Execution.filter(workflow_id=workflow.id).order_by("-created_at", "-id").limit(limit)


async def get_execution(execution_id: str, *, workflow: Optional[Workflow] = None) -> Execution:
    try:
        pk = parse_execution_public_id(execution_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Execution id is invalid") from None
    query = Execution.filter(id=pk)
    if workflow is not None:
        query = query.filter(workflow_id=workflow.id)
    execution = await query.first()
    if execution is None:
        raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found")
    return execution


async def run_workflow_manually(
    workflow_id: str,
    *,
    user: Optional[User] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> Execution:
    """Fire a workflow outside its configured trigger (trigger kind ``manual``)."""
    from api.workflows.executions import run_workflow_execution

    workflow = await get_workflow(workflow_id, user=user)
    trigger = find_trigger_node(workflow.nodes)
    trigger_data = {
        "appId": trigger.app_id if trigger else None,
        "triggerId": trigger.trigger_id if trigger else None,
        "nodeId": trigger.id if trigger else None,
        "payload": payload or {},
        "triggeredAt": _now().isoformat(),
    }
    return await run_workflow_execution(workflow, trigger_kind=TriggerKind.MANUAL, trigger_data=trigger_data)


__all__ = [
    "create_workflow",
    "get_execution",
    "get_workflow",
    "get_workflow_by_webhook_id",
    "list_active_workflows",
    "list_executions",
    "record_workflow_outcome",
    "run_workflow_manually",
    "save_poll_state",
    "save_schedule_state",
    "set_workflow_active",
]
