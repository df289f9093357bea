"""
Workflow executor.

Walks a workflow graph from its trigger node:

- only nodes reachable from the trigger take part in a run;
- a node runs once every inbound edge from a participating node is resolved
  and at least one of them is active; otherwise it is recorded ``skipped``
  and its own outbound edges become inactive (dead-path elimination);
- ready nodes run one at a time in declaration order, so variable writes are
  deterministic;
- the ``each`` edges of a loop node lead to a body executed once per item
  before the loop's ``done`` edges are followed;
- a loop node waits for every outside node that feeds its body;
- the first node error stops the run and raises ``WorkflowExecutionError``
  carrying the trace collected so far.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Set

from shared.logger import get_logger

from .errors import NodeExecutionError, WorkflowDefinitionError, WorkflowExecutionError
from .graph import WorkflowGraph
from .nodes import DEFAULT_PORTS, NodeExecutor, NodeOutcome, RunContext, raw_config
from .schema import Connection, ExecutionResult, LoopNode, Node, NodeExecutionRecord, NodeType

logger = get_logger("workflow_core.executor")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class _Run:
    graph: WorkflowGraph
    ctx: RunContext
    participants: Set[str]
    records: List[NodeExecutionRecord] = field(default_factory=list)
    # node id -> selected ports (None: all outbound edges)
    ports: Dict[str, Optional[FrozenSet[str]]] = field(default_factory=dict)
    skipped: Set[str] = field(default_factory=set)

    def trace(self) -> List[Dict[str, Any]]:
        return [record.to_payload() for record in self.records]


class WorkflowExecutor:
    """Runs workflow graphs through a ``NodeExecutor``."""

    def __init__(self, node_executor: NodeExecutor):
        self.node_executor = node_executor

    async def run(
        self,
        *,
        user_id: int,
        workflow_id: str,
        nodes: Any,
        connections: Any,
        trigger_type: str,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult:
        """
        Execute a workflow graph to completion.

        Args:
            user_id: Owner of the workflow; credentials are resolved for this user
            workflow_id: Public workflow id, used for logging
            nodes: Stored node list
            connections: Stored connection list
            trigger_type: poll, schedule, webhook or manual
            trigger_data: Payload of the firing trigger

        Returns:
            ExecutionResult with ``{trigger, lastNode, nodes, variables}`` output and the node trace

        Raises:
            WorkflowDefinitionError: The graph cannot be executed
            WorkflowExecutionError: A node failed
        """
        graph = WorkflowGraph.parse(nodes, connections)
        trigger = graph.trigger
        participants = graph.reachable_from([trigger.id])
        graph.ensure_acyclic(participants)

        trigger_payload = dict(trigger_data or {})
        ctx = RunContext(user_id=user_id, workflow_id=workflow_id, trigger=trigger_payload)
        ctx.nodes[trigger.id] = trigger_payload
        if "trigger" not in graph.nodes:
            ctx.nodes["trigger"] = trigger_payload

        run = _Run(graph=graph, ctx=ctx, participants=participants)
        now = _utcnow()
        run.records.append(
            NodeExecutionRecord(
                node_id=trigger.id,
                node_name=trigger.display_name,
                node_type=trigger.type,
                status="success",
                input_data=trigger_payload,
                output_data=trigger_payload,
                started_at=now,
                completed_at=now,
            )
        )
        run.ports[trigger.id] = None

        logger.debug(
            f"Running workflow graph ({len(participants)} reachable nodes, trigger={trigger_type})",
            extra={"workflow_id": workflow_id},
        )
        await self._run_scope(run, graph.scope_members(participants - {trigger.id}))

        last = run.records[-1]
        return ExecutionResult(
            output_data={
                "trigger": ctx.trigger,
                "lastNode": last.output_data,
                "nodes": ctx.nodes,
                "variables": ctx.variables,
            },
            node_executions=run.records,
        )

    async def _run_scope(self, run: _Run, members: List[str], iteration: Optional[int] = None) -> None:
        pending = list(members)
        while pending:
            for node_id in pending:
                active = self._inbound_state(run, node_id)
                if active is not None:
                    break
            else:
                raise WorkflowDefinitionError(f"Nodes could not be scheduled: {', '.join(pending)}")

            pending.remove(node_id)
            node = run.graph.nodes[node_id]
            if active:
                await self._run_node(run, node, iteration)
            else:
                self._skip_node(run, node, iteration)

    def _inbound_state(self, run: _Run, node_id: str) -> Optional[bool]:
        """True/False once every inbound edge is resolved (any active?), None while waiting."""
        if run.graph.nodes[node_id].type == NodeType.LOOP.value:
            # the body reads from its outside feeds, so they must finish first
            feeds = run.graph.loop_feeds(node_id) & run.participants
            if any(not self._is_resolved(run, source) for source in feeds):
                return None

        edges = [edge for edge in run.graph.incoming(node_id) if edge.from_node in run.participants]
        if not edges:
            return True

        any_active = False
        for edge in edges:
            if not self._is_resolved(run, edge.from_node):
                return None
            if edge.from_node in run.ports:
                any_active = any_active or self._edge_active(run, edge)
        return any_active

    @staticmethod
    def _is_resolved(run: _Run, node_id: str) -> bool:
        return node_id in run.ports or node_id in run.skipped

    def _edge_active(self, run: _Run, edge: Connection) -> bool:
        selected = run.ports.get(edge.from_node)
        if selected is None:
            return True
        source_type = run.graph.nodes[edge.from_node].type
        port = edge.from_port or DEFAULT_PORTS.get(source_type, "")
        return port in selected

    def _skip_node(self, run: _Run, node: Node, iteration: Optional[int]) -> None:
        run.skipped.add(node.id)
        run.ports.pop(node.id, None)
        now = _utcnow()
        run.records.append(
            NodeExecutionRecord(
                node_id=node.id,
                node_name=node.display_name,
                node_type=node.type,
                status="skipped",
                output_data={"status": "skipped", "reason": "No active inbound connection"},
                started_at=now,
                completed_at=now,
                iteration=iteration,
            )
        )

    async def _run_node(self, run: _Run, node: Node, iteration: Optional[int]) -> None:
        started_at = _utcnow()
        try:
            outcome: NodeOutcome = await self.node_executor.execute(node, run.ctx)
        except Exception as exc:
            message = exc.message if isinstance(exc, NodeExecutionError) else (str(exc).strip() or "Node execution failed")
            run.records.append(
                NodeExecutionRecord(
                    node_id=node.id,
                    node_name=node.display_name,
                    node_type=node.type,
                    status="error",
                    input_data=raw_config(node),
                    error=message,
                    started_at=started_at,
                    completed_at=_utcnow(),
                    iteration=iteration,
                )
            )
            logger.warning(
                f"Node {node.id} failed: {message}",
                extra={"workflow_id": run.ctx.workflow_id, "node_id": node.id},
            )
            raise WorkflowExecutionError(message, node_id=node.id, node_executions=run.trace()) from exc

        run.ctx.nodes[node.id] = outcome.output
        record = NodeExecutionRecord(
            node_id=node.id,
            node_name=node.display_name,
            node_type=node.type,
            status=outcome.status,
            input_data=outcome.input_data,
            output_data=outcome.output,
            started_at=started_at,
            completed_at=_utcnow(),
            iteration=iteration,
        )
        run.records.append(record)
        run.skipped.discard(node.id)
        run.ports[node.id] = outcome.selected_ports

        if isinstance(node, LoopNode):
            await self._run_loop_body(run, node, outcome, record)

    async def _run_loop_body(
        self,
        run: _Run,
        node: LoopNode,
        outcome: NodeOutcome,
        record: NodeExecutionRecord,
    ) -> None:
        full_body = run.graph.loop_body(node.id) & run.participants
        body = run.graph.scope_members(full_body)
        if not body:
            return

        output = outcome.output
        outer_loop = run.ctx.loop
        iterations: List[Dict[str, Any]] = []
        try:
            for index, item in enumerate(output["items"]):
                for member in body:
                    run.ports.pop(member, None)
                    run.skipped.discard(member)
                run.ports[node.id] = frozenset({"each"})
                run.ctx.loop = {
                    "item": item,
                    "index": index,
                    output["itemVariable"]: item,
                    output["indexVariable"]: index,
                }
                await self._run_scope(run, body, iteration=index)
                iterations.append(
                    {
                        "index": index,
                        "item": item,
                        "outputs": {
                            member: run.ctx.nodes.get(member) for member in body if member not in run.skipped
                        },
                    }
                )
        finally:
            run.ctx.loop = outer_loop
            run.ports[node.id] = outcome.selected_ports

        # an empty item list leaves the body unvisited
        run.skipped.update(member for member in full_body if member not in run.ports)

        output["iterations"] = iterations
        record.output_data = output
        run.ctx.nodes[node.id] = output


__all__ = ["WorkflowExecutor"]
