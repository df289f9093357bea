from __future__ import annotations

from typing import Any, Dict, Optional

import pytest
from fastapi import HTTPException

from api.apps.base import AppAdapterError
from api.workflows import services as workflow_services
from api.workflows.executions import run_workflow_execution
from shared.database.workflow_models import Execution, ExecutionStatus, TriggerKind, Workflow


class RecordingApp:
    app_id = "recorder"
    requires_credential = False

    def __init__(self) -> None:
        self.configs = []

    async def execute(self, action_id: str, config: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> Any:
        self.configs.append(config)
        return {"ok": True, "echo": config}


class RejectingApp:
    app_id = "rejecting"
    requires_credential = False

    async def execute(self, action_id: str, config: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> Any:
        raise AppAdapterError("Vendor rejected the request", status_code=422)


CHAIN_NODES = [
    {"id": "start", "type": "trigger", "appId": "manual", "triggerId": "manual"},
    {"id": "first", "type": "action", "appId": "recorder", "actionId": "log", "config": {"step": 1}},
    {"id": "second", "type": "action", "appId": "rejecting", "actionId": "push", "config": {"step": 2}},
    {"id": "third", "type": "action", "appId": "recorder", "actionId": "log", "config": {"step": 3}},
]
CHAIN_CONNECTIONS = [
    {"from": "start", "to": "first"},
    {"from": "first", "to": "second"},
    {"from": "second", "to": "third"},
]


@pytest.fixture
def recorder(app_registry) -> RecordingApp:
    app = RecordingApp()
    app_registry.register(app)
    app_registry.register(RejectingApp())
    return app


async def test_failing_node_marks_execution_and_workflow_as_error(db_user, make_workflow, executor, recorder):
    workflow = await make_workflow(db_user, CHAIN_NODES, CHAIN_CONNECTIONS)

    execution = await run_workflow_execution(
        workflow, trigger_kind=TriggerKind.MANUAL, trigger_data={"payload": {}}, executor=executor
    )

    stored = await Execution.get(id=execution.id)
    assert stored.status == ExecutionStatus.ERROR
    assert stored.error_message == "Vendor rejected the request"
    assert "AppAdapterError" in stored.error_stack
    assert stored.completed_at is not None
    assert stored.duration_ms is not None and stored.duration_ms >= 0
    assert [(record["nodeId"], record["status"]) for record in stored.node_executions] == [
        ("start", "success"),
        ("first", "success"),
        ("second", "error"),
    ]
    assert recorder.configs == [{"step": 1}]

    refreshed = await Workflow.get(id=workflow.id)
    assert refreshed.last_execution_status == ExecutionStatus.ERROR
    assert refreshed.execution_count == 1
    assert refreshed.last_executed_at is not None


async def test_successful_execution_stores_output_and_trace(db_user, make_workflow, executor, recorder):
    nodes = [
        {"id": "start", "type": "trigger", "appId": "manual"},
        {"id": "first", "type": "action", "appId": "recorder", "actionId": "log", "config": {"who": "{{trigger.user}}"}},
    ]
    workflow = await make_workflow(db_user, nodes, [{"from": "start", "to": "first"}])

    execution = await run_workflow_execution(
        workflow, trigger_kind=TriggerKind.WEBHOOK, trigger_data={"user": "ada"}, executor=executor
    )

    stored = await Execution.get(id=execution.id)
    assert stored.status == ExecutionStatus.SUCCESS
    assert stored.trigger_type == TriggerKind.WEBHOOK
    assert stored.trigger_data == {"user": "ada"}
    assert stored.output_data["lastNode"] == {"ok": True, "echo": {"who": "ada"}}
    assert stored.error_message is None
    assert len(stored.node_executions) == 2

    refreshed = await Workflow.get(id=workflow.id)
    assert refreshed.last_execution_status == ExecutionStatus.SUCCESS
    assert refreshed.execution_count == 1


async def test_invalid_graph_is_recorded_as_failed_execution(db_user, make_workflow, executor):
    workflow = await make_workflow(db_user, [{"id": "lonely", "type": "action", "appId": "recorder"}])

    execution = await run_workflow_execution(workflow, trigger_kind=TriggerKind.MANUAL, executor=executor)

    assert execution.status == ExecutionStatus.ERROR
    assert execution.error_message == "Workflow has no trigger node"
    assert (await Workflow.get(id=workflow.id)).last_execution_status == ExecutionStatus.ERROR


async def test_counter_accumulates_across_runs(db_user, make_workflow, executor, recorder):
    workflow = await make_workflow(db_user, CHAIN_NODES[:2], CHAIN_CONNECTIONS[:1])
    for _ in range(3):
        await run_workflow_execution(workflow, trigger_kind=TriggerKind.MANUAL, executor=executor)

    assert (await Workflow.get(id=workflow.id)).execution_count == 3
    executions = await workflow_services.list_executions(workflow)
    assert len(executions) == 3
    fetched = await workflow_services.get_execution(executions[0].execution_id, workflow=workflow)
    assert fetched.id == executions[0].id


async def test_manual_run_uses_manual_trigger_kind(db_user, make_workflow):
    nodes = [
        {"id": "start", "type": "trigger", "appId": "manual"},
        {"id": "remember", "type": "set_variable", "config": {"name": "who", "value": "{{trigger.payload.who}}"}},
    ]
    workflow = await make_workflow(db_user, nodes, [{"from": "start", "to": "remember"}])

    execution = await workflow_services.run_workflow_manually(workflow.workflow_id, payload={"who": "grace"})

    assert execution.trigger_type == TriggerKind.MANUAL
    assert execution.status == ExecutionStatus.SUCCESS
    assert execution.output_data["variables"] == {"who": "grace"}


async def test_workflow_lookup_errors(db_user):
    with pytest.raises(HTTPException) as exc_info:
        await workflow_services.get_workflow("12")
    assert exc_info.value.status_code == 400

    with pytest.raises(HTTPException) as exc_info:
        await workflow_services.get_workflow("wf_4040")
    assert exc_info.value.status_code == 404
