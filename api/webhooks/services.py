"""
Inbound webhook handling for workflows.

Each workflow owns an unguessable ``webhook_id``; a request to
``/webhooks/workflow/{webhook_id}`` fires the workflow once with the request
captured as trigger data, unless the workflow is inactive, configured for a
different trigger kind, or the delivery does not match the vendor event the
trigger node selected.
"""
from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import parse_qs

from fastapi import HTTPException, status

from api.webhooks.event_filters import matches_webhook_event
from api.workflows.executions import run_workflow_execution
from api.workflows.services import get_workflow_by_webhook_id
from shared.database.workflow_models import Execution, ExecutionStatus, TriggerKind
from shared.error_handling import error_payload
from shared.logger import get_logger
from workflow_core.errors import WorkflowDefinitionError
from workflow_core.executor import WorkflowExecutor
from workflow_core.graph import find_trigger_node
from workflow_core.schema import resolve_trigger_kind

logger = get_logger(__name__)


@dataclass(slots=True)
class WebhookOutcome:
    """Result of one webhook delivery, rendered by the router."""

    status: str
    reason: Optional[str] = None
    execution: Optional[Execution] = None

    @property
    def http_status(self) -> int:
        if self.status == "error":
            return status.HTTP_500_INTERNAL_SERVER_ERROR
        return status.HTTP_200_OK

    def to_payload(self) -> Dict[str, Any]:
        execution_id = self.execution.execution_id if self.execution is not None else None
        if self.status == "error":
            message = (self.execution.error_message if self.execution is not None else None) or self.reason
            return error_payload(message or "Workflow execution failed", execution_id=execution_id)
        payload: Dict[str, Any] = {"status": self.status}
        if self.reason:
            payload["reason"] = self.reason
        if execution_id:
            payload["executionId"] = execution_id
        return payload


def _skipped(reason: str) -> WebhookOutcome:
    return WebhookOutcome(status="skipped", reason=reason)


def normalize_headers(items: Iterable[Tuple[str, str]]) -> Dict[str, str]:
    """Lower-case header names; repeated headers are joined with ", "."""
    headers: Dict[str, str] = {}
    for key, value in items:
        name = key.lower()
        headers[name] = f"{headers[name]}, {value}" if name in headers else value
    return headers


def parse_body(raw_body: bytes, content_type: Optional[str]) -> Any:
    """JSON when it parses, a field map for url-encoded forms, otherwise text."""
    if not raw_body:
        return None
    text = raw_body.decode("utf-8", errors="replace")
    media_type = (content_type or "").split(";")[0].strip().lower()
    if media_type == "application/x-www-form-urlencoded":
        return {key: values[0] if len(values) == 1 else values for key, values in parse_qs(text).items()}
    try:
        return json.loads(text)
    except ValueError:
        return text


async def handle_workflow_webhook(
    webhook_id: str,
    *,
    method: str,
    headers: Mapping[str, str],
    query: Mapping[str, Any],
    raw_body: bytes,
    executor: Optional[WorkflowExecutor] = None,
) -> WebhookOutcome:
    """
    Fire the workflow addressed by ``webhook_id`` with the request as trigger data.

    Args:
        webhook_id: Public webhook id of the workflow
        method: HTTP method of the delivery
        headers: Request headers, names already lower-cased
        query: Query string parameters
        raw_body: Request body bytes
        executor: Workflow executor override

    Returns:
        WebhookOutcome describing whether the workflow ran and how it ended

    Raises:
        HTTPException: 404 when no workflow owns ``webhook_id``
    """
    workflow = await get_workflow_by_webhook_id(webhook_id)
    if workflow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow not found")

    log_extra = {"workflow_id": workflow.workflow_id, "webhook_id": webhook_id}
    if not workflow.is_active:
        logger.info("Webhook ignored for inactive workflow", extra=log_extra)
        return _skipped("Workflow is inactive")

    try:
        trigger = find_trigger_node(workflow.nodes)
    except WorkflowDefinitionError as exc:
        logger.warning(f"Webhook ignored, workflow definition is invalid: {exc}", extra=log_extra)
        return _skipped(f"Workflow definition is invalid: {exc}")

    if trigger is not None:
        kind = resolve_trigger_kind(trigger, workflow.trigger_type)
    else:
        kind = (workflow.trigger_type or "").strip().lower()
    if kind and kind != TriggerKind.WEBHOOK.value:
        return _skipped(f"Workflow triggerType is {kind}, not webhook")

    body = parse_body(raw_body, headers.get("content-type"))
    app_id = trigger.app_id if trigger is not None else ""
    trigger_id = trigger.trigger_id if trigger is not None else ""
    if not matches_webhook_event(app_id, trigger_id, headers, body):
        logger.info(f"Webhook does not match {app_id}:{trigger_id}", extra=log_extra)
        return _skipped(f"Webhook does not match configured trigger ({app_id}:{trigger_id})")

    trigger_data = {
        "appId": app_id or None,
        "triggerId": trigger_id or None,
        "nodeId": trigger.id if trigger is not None else None,
        "method": method.upper(),
        "headers": dict(headers),
        "query": dict(query),
        "body": body,
        "rawBody": base64.b64encode(raw_body).decode("ascii") if raw_body else None,
        "receivedAt": datetime.now(timezone.utc).isoformat(),
    }
    execution = await run_workflow_execution(
        workflow,
        trigger_kind=TriggerKind.WEBHOOK,
        trigger_data=trigger_data,
        executor=executor,
    )
    if execution.status == ExecutionStatus.ERROR:
        return WebhookOutcome(status="error", execution=execution)
    return WebhookOutcome(status="success", execution=execution)


__all__ = ["WebhookOutcome", "handle_workflow_webhook", "normalize_headers", "parse_body"]
