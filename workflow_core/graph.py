"""
Workflow graph built from stored nodes/connections.

Parses every node into the typed union, drops connections that touch unknown
nodes and answers the structural questions the executor asks: inbound and
outbound edges, reachability from the trigger, loop bodies and cycles.
"""
from __future__ import annotations

from collections import defaultdict, deque
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import ValidationError

from .errors import WorkflowDefinitionError
from .schema import Connection, Node, NodeType, TriggerNode, parse_node

LOOP_BODY_PORT = "each"


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("config",))
    message = first.get("msg", str(exc))
    return f"{location}: {message}" if location else message


def find_trigger_node(raw_nodes: Any) -> Optional[TriggerNode]:
    """
    Parse only the trigger node of a stored workflow.

    Used by the dispatcher and webhook receiver, which must decide how a
    workflow fires without validating the rest of its graph.
    """
    for raw in raw_nodes or []:
        if not isinstance(raw, dict) or raw.get("type") != NodeType.TRIGGER.value:
            continue
        try:
            node = parse_node(raw)
        except ValidationError as exc:
            raise WorkflowDefinitionError(
                f"Invalid trigger node {raw.get('id')!r}: {_describe_validation_error(exc)}"
            ) from exc
        if isinstance(node, TriggerNode):
            return node
    return None


class WorkflowGraph:
    """Immutable view of one workflow's nodes and connections."""

    def __init__(self, nodes: Dict[str, Node], order: List[str], connections: List[Connection]):
        self.nodes = nodes
        self.order = order
        self.connections = connections
        self._outgoing: Dict[str, List[Connection]] = defaultdict(list)
        self._incoming: Dict[str, List[Connection]] = defaultdict(list)
        for connection in connections:
            self._outgoing[connection.from_node].append(connection)
            self._incoming[connection.to_node].append(connection)
        self._loop_bodies: Dict[str, Set[str]] = {}

    @classmethod
    def parse(cls, raw_nodes: Any, raw_connections: Any) -> "WorkflowGraph":
        nodes: Dict[str, Node] = {}
        order: List[str] = []
        for raw in raw_nodes or []:
            try:
                node = parse_node(raw)
            except ValidationError as exc:
                node_id = raw.get("id") if isinstance(raw, dict) else None
                raise WorkflowDefinitionError(
                    f"Invalid config for node {node_id!r}: {_describe_validation_error(exc)}"
                ) from exc
            if node is None:
                continue
            if node.id in nodes:
                raise WorkflowDefinitionError(f"Duplicate node id: {node.id}")
            nodes[node.id] = node
            order.append(node.id)

        connections: List[Connection] = []
        for raw in raw_connections or []:
            connection = Connection.from_stored(raw)
            if connection is None:
                continue
            if connection.from_node not in nodes or connection.to_node not in nodes:
                continue
            connections.append(connection)

        graph = cls(nodes, order, connections)
        if graph.trigger is None:
            raise WorkflowDefinitionError("Workflow has no trigger node")
        return graph

    @property
    def trigger(self) -> Optional[TriggerNode]:
        for node_id in self.order:
            node = self.nodes[node_id]
            if isinstance(node, TriggerNode):
                return node
        return None

    def outgoing(self, node_id: str) -> List[Connection]:
        return self._outgoing.get(node_id, [])

    def incoming(self, node_id: str) -> List[Connection]:
        return self._incoming.get(node_id, [])

    def reachable_from(self, start_ids: Iterable[str]) -> Set[str]:
        """Node ids reachable from ``start_ids`` (inclusive) following every edge."""
        seen: Set[str] = set()
        queue = deque(node_id for node_id in start_ids if node_id in self.nodes)
        seen.update(queue)
        while queue:
            current = queue.popleft()
            for connection in self.outgoing(current):
                if connection.to_node not in seen:
                    seen.add(connection.to_node)
                    queue.append(connection.to_node)
        return seen

    def ensure_acyclic(self, node_ids: Set[str]) -> None:
        """Raise ``WorkflowDefinitionError`` if the subgraph over ``node_ids`` has a cycle."""
        indegree = {node_id: 0 for node_id in node_ids}
        for connection in self.connections:
            if connection.from_node in node_ids and connection.to_node in node_ids:
                indegree[connection.to_node] += 1

        queue = deque(node_id for node_id in self.order if indegree.get(node_id) == 0)
        visited = 0
        while queue:
            current = queue.popleft()
            visited += 1
            for connection in self.outgoing(current):
                if connection.to_node not in indegree:
                    continue
                indegree[connection.to_node] -= 1
                if indegree[connection.to_node] == 0:
                    queue.append(connection.to_node)

        if visited != len(node_ids):
            cyclic = [node_id for node_id in self.order if indegree.get(node_id, 0) > 0]
            raise WorkflowDefinitionError(f"Workflow graph contains a cycle through: {', '.join(cyclic)}")

    def loop_body(self, loop_id: str) -> Set[str]:
        """
        Nodes executed once per loop item.

        Everything reachable from the loop's ``each`` edges, minus whatever is
        also reachable from its other (``done`` / unlabelled) edges.
        """
        if loop_id not in self._loop_bodies:
            each_targets = [c.to_node for c in self.outgoing(loop_id) if c.from_port == LOOP_BODY_PORT]
            after_targets = [c.to_node for c in self.outgoing(loop_id) if c.from_port != LOOP_BODY_PORT]
            body = self.reachable_from(each_targets) - self.reachable_from(after_targets)
            body.discard(loop_id)
            self._loop_bodies[loop_id] = body
        return self._loop_bodies[loop_id]

    def loop_feeds(self, loop_id: str) -> Set[str]:
        """Nodes outside the loop body with an edge into it (the loop itself excluded)."""
        body = self.loop_body(loop_id)
        return {
            connection.from_node
            for member in body
            for connection in self.incoming(member)
            if connection.from_node not in body and connection.from_node != loop_id
        }

    def scope_members(self, candidates: Set[str]) -> List[str]:
        """Declaration-ordered ``candidates`` with the bodies of contained loops removed."""
        members = set(candidates)
        for node_id in self.order:
            if node_id in members and self.nodes[node_id].type == NodeType.LOOP.value:
                members -= self.loop_body(node_id)
        return [node_id for node_id in self.order if node_id in members]


__all__ = ["LOOP_BODY_PORT", "WorkflowGraph", "find_trigger_node"]
