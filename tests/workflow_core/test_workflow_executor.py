from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from workflow_core.errors import WorkflowDefinitionError, WorkflowExecutionError
from workflow_core.executor import WorkflowExecutor
from workflow_core.nodes import NodeExecutor


class EchoApp:
    app_id = "echo"
    requires_credential = False

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, action_id: str, config: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> Any:
        self.calls.append({"action": action_id, "config": config, "credential": credential})
        return {"ok": True, "action": action_id, "config": config}


class FailingApp:
    app_id = "broken"
    requires_credential = False

    async def execute(self, action_id: str, config: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> Any:
        raise RuntimeError("upstream returned 502")


class StaticCredentials:
    def __init__(self, credentials: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self.credentials = credentials or {}

    async def resolve(self, credential_id: str, user_id: int) -> Dict[str, Any]:
        return self.credentials[credential_id]


def trigger(node_id: str = "t") -> Dict[str, Any]:
    return {"id": node_id, "type": "trigger", "appId": "manual", "triggerId": "manual"}


def action(node_id: str, app_id: str = "echo", **config: Any) -> Dict[str, Any]:
    return {"id": node_id, "type": "action", "appId": app_id, "actionId": "run", "config": config}


def edge(source: str, target: str, port: Optional[str] = None) -> Dict[str, Any]:
    connection = {"from": source, "to": target}
    if port:
        connection["fromPort"] = port
    return connection


@pytest.fixture
def echo() -> EchoApp:
    return EchoApp()


@pytest.fixture
def executor(echo) -> WorkflowExecutor:
    apps = {"echo": echo, "broken": FailingApp()}
    return WorkflowExecutor(NodeExecutor(apps, StaticCredentials({"7": {"token": "secret"}})))


async def run(executor: WorkflowExecutor, nodes, connections, trigger_data=None):
    return await executor.run(
        user_id=1,
        workflow_id="wf_1",
        nodes=nodes,
        connections=connections,
        trigger_type="manual",
        trigger_data=trigger_data or {},
    )


def statuses(trace: List[Dict[str, Any]]) -> Dict[str, str]:
    return {record["nodeId"]: record["status"] for record in trace}


async def test_linear_chain_resolves_templates_from_earlier_nodes(executor, echo):
    nodes = [
        trigger(),
        action("greet", text="hello {{trigger.name}}"),
        action("repeat", text="{{greet.config.text}}!"),
    ]
    result = await run(executor, nodes, [edge("t", "greet"), edge("greet", "repeat")], {"name": "Ada"})

    assert [call["config"]["text"] for call in echo.calls] == ["hello Ada", "hello Ada!"]
    assert [record["nodeId"] for record in result.trace()] == ["t", "greet", "repeat"]
    assert result.output_data["lastNode"]["config"]["text"] == "hello Ada!"
    assert result.output_data["trigger"] == {"name": "Ada"}


async def test_failing_middle_node_stops_the_run(executor, echo):
    nodes = [trigger(), action("first"), action("second", app_id="broken"), action("third")]
    connections = [edge("t", "first"), edge("first", "second"), edge("second", "third")]

    with pytest.raises(WorkflowExecutionError) as exc_info:
        await run(executor, nodes, connections)

    error = exc_info.value
    assert error.node_id == "second"
    assert "upstream returned 502" in str(error)
    assert statuses(error.node_executions) == {"t": "success", "first": "success", "second": "error"}
    assert len(echo.calls) == 1


async def test_condition_skips_the_inactive_branch(executor, echo):
    nodes = [
        trigger(),
        {"id": "check", "type": "condition", "config": {"left": "{{trigger.amount}}", "operator": "gt", "right": "100"}},
        action("large"),
        action("small"),
        action("after_small"),
    ]
    connections = [
        edge("t", "check"),
        edge("check", "large", "true"),
        edge("check", "small", "false"),
        edge("small", "after_small"),
    ]
    result = await run(executor, nodes, connections, {"amount": 150})

    assert statuses(result.trace()) == {
        "t": "success",
        "check": "success",
        "large": "success",
        "small": "skipped",
        "after_small": "skipped",
    }
    assert result.output_data["nodes"]["check"]["result"] is True


async def test_join_runs_when_one_branch_is_active(executor):
    nodes = [
        trigger(),
        {"id": "check", "type": "condition", "config": {"left": "{{trigger.ok}}", "operator": "equals", "right": "true"}},
        action("yes"),
        action("no"),
        action("join"),
    ]
    connections = [
        edge("t", "check"),
        edge("check", "yes", "true"),
        edge("check", "no", "false"),
        edge("yes", "join"),
        edge("no", "join"),
    ]
    result = await run(executor, nodes, connections, {"ok": False})

    assert statuses(result.trace())["yes"] == "skipped"
    assert statuses(result.trace())["no"] == "success"
    assert statuses(result.trace())["join"] == "success"


async def test_switch_falls_back_to_default_route(executor):
    nodes = [
        trigger(),
        {
            "id": "route",
            "type": "switch",
            "config": {"value": "{{trigger.plan}}", "cases": [{"equals": "pro", "route": "pro"}]},
        },
        action("pro_path"),
        action("default_path"),
    ]
    connections = [edge("t", "route"), edge("route", "pro_path", "pro"), edge("route", "default_path", "default")]
    result = await run(executor, nodes, connections, {"plan": "free"})

    assert statuses(result.trace())["pro_path"] == "skipped"
    assert statuses(result.trace())["default_path"] == "success"
    assert result.output_data["nodes"]["route"]["matched"] is False


async def test_loop_runs_body_per_item_then_continues(executor):
    nodes = [
        trigger(),
        {"id": "each_item", "type": "loop", "config": {"items": "{{trigger.items}}"}},
        {
            "id": "double",
            "type": "code",
            "config": {
                "code": "variables['total'] = variables.get('total', 0) + input\nreturn input * 2",
                "input": "{{item}}",
            },
        },
        {"id": "finish", "type": "set_variable", "config": {"name": "summary", "value": "{{variables.total}}"}},
    ]
    connections = [edge("t", "each_item"), edge("each_item", "double", "each"), edge("each_item", "finish", "done")]
    result = await run(executor, nodes, connections, {"items": [1, 2, 3]})

    body_records = [record for record in result.trace() if record["nodeId"] == "double"]
    assert [record["iteration"] for record in body_records] == [0, 1, 2]
    assert [record["outputData"]["result"] for record in body_records] == [2, 4, 6]

    loop_output = result.output_data["nodes"]["each_item"]
    assert loop_output["count"] == 3
    assert [iteration["item"] for iteration in loop_output["iterations"]] == [1, 2, 3]
    assert result.output_data["variables"] == {"total": 6, "summary": 6}


async def test_loop_waits_for_nodes_feeding_its_body(executor, echo):
    nodes = [
        trigger(),
        {"id": "each_item", "type": "loop", "config": {"items": "{{trigger.items}}"}},
        action("body", seen="{{side.config.tag}}"),
        action("side", tag="blue"),
    ]
    connections = [
        edge("t", "each_item"),
        edge("each_item", "body", "each"),
        edge("t", "side"),
        edge("side", "body"),
    ]
    result = await run(executor, nodes, connections, {"items": [1, 2]})

    order = [record["nodeId"] for record in result.trace()]
    assert order.index("side") < order.index("each_item") < order.index("body")
    assert [call["config"].get("seen") for call in echo.calls if "seen" in call["config"]] == ["blue", "blue"]


async def test_empty_loop_does_not_block_nodes_after_its_body(executor):
    nodes = [
        trigger(),
        {"id": "each_item", "type": "loop", "config": {"items": "{{trigger.items}}"}},
        action("body"),
        action("after"),
    ]
    connections = [
        edge("t", "each_item"),
        edge("each_item", "body", "each"),
        edge("body", "after"),
        edge("each_item", "after", "done"),
    ]
    result = await run(executor, nodes, connections, {"items": []})

    trace = statuses(result.trace())
    assert "body" not in trace
    assert trace["after"] == "success"


async def test_set_variable_respects_overwrite_flag(executor):
    nodes = [
        trigger(),
        {"id": "first", "type": "set_variable", "config": {"name": "color", "value": "red"}},
        {"id": "second", "type": "set_variable", "config": {"name": "color", "value": "blue", "overwrite": False}},
    ]
    result = await run(executor, nodes, [edge("t", "first"), edge("first", "second")])

    assert result.output_data["variables"] == {"color": "red"}


async def test_logic_app_actions_are_normalized(executor):
    nodes = [
        trigger(),
        {"id": "store", "type": "action", "appId": "set_variable", "config": {"name": "x", "value": 5}},
    ]
    result = await run(executor, nodes, [edge("t", "store")])

    assert result.output_data["variables"] == {"x": 5}
    assert result.trace()[1]["nodeType"] == "set_variable"


async def test_unknown_app_is_skipped_and_run_continues(executor, echo):
    nodes = [trigger(), action("mystery", app_id="not_installed"), action("after")]
    result = await run(executor, nodes, [edge("t", "mystery"), edge("mystery", "after")])

    trace = statuses(result.trace())
    assert trace["mystery"] == "skipped"
    assert trace["after"] == "success"
    assert result.output_data["nodes"]["mystery"]["reason"] == "Executor not implemented for not_installed:run"
    assert len(echo.calls) == 1


async def test_credential_is_resolved_for_action(executor, echo):
    node = action("secured")
    node["credentialId"] = "7"
    await run(executor, [trigger(), node], [edge("t", "secured")])

    assert echo.calls[0]["credential"] == {"token": "secret"}


async def test_unreachable_nodes_do_not_run(executor, echo):
    nodes = [trigger(), action("connected"), action("orphan")]
    result = await run(executor, nodes, [edge("t", "connected")])

    assert [record["nodeId"] for record in result.trace()] == ["t", "connected"]
    assert len(echo.calls) == 1


async def test_cycle_is_rejected(executor):
    nodes = [trigger(), action("a"), action("b")]
    connections = [edge("t", "a"), edge("a", "b"), edge("b", "a")]

    with pytest.raises(WorkflowDefinitionError, match="cycle"):
        await run(executor, nodes, connections)


async def test_missing_trigger_is_rejected(executor):
    with pytest.raises(WorkflowDefinitionError, match="no trigger"):
        await run(executor, [action("a")], [])


async def test_invalid_node_config_is_rejected(executor):
    nodes = [trigger(), {"id": "check", "type": "condition", "config": {"left": "x"}}]
    with pytest.raises(WorkflowDefinitionError, match="check"):
        await run(executor, nodes, [edge("t", "check")])
