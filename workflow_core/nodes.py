"""
Node execution for workflow graphs.

``NodeExecutor.execute`` runs one typed node against the accumulated run
context and reports its output plus the outbound ports it selected. App
nodes are delegated to the adapter registered for their ``app_id``.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Protocol

from pydantic import ValidationError

from shared.config import config
from shared.logger import get_logger

from .code_executor import CodeExecutor
from .conditions import evaluate_condition, select_switch_route
from .errors import NodeExecutionError
from .expressions import interpolate
from .schema import (
    ActionNode,
    CodeConfig,
    CodeNode,
    ConditionConfig,
    ConditionNode,
    LoopConfig,
    LoopNode,
    Node,
    SetVariableConfig,
    SetVariableNode,
    SwitchConfig,
    SwitchNode,
)

logger = get_logger("workflow_core.nodes")

# Port followed by unlabelled edges leaving a branching node
DEFAULT_PORTS = {
    "condition": "true",
    "switch": "default",
    "loop": "done",
}


class AppAdapterLookup(Protocol):
    def get(self, app_id: str) -> Any:
        ...


class CredentialLookup(Protocol):
    async def resolve(self, credential_id: str, user_id: int) -> Dict[str, Any]:
        ...


@dataclass(slots=True)
class RunContext:
    """Mutable state of one workflow run."""

    user_id: int
    workflow_id: str
    trigger: Dict[str, Any]
    nodes: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    loop: Optional[Dict[str, Any]] = None

    def scope(self) -> Dict[str, Any]:
        """Expression scope: trigger, nodes, variables and active loop variables."""
        scope: Dict[str, Any] = {
            "trigger": self.trigger,
            "nodes": self.nodes,
            "variables": self.variables,
        }
        if self.loop is not None:
            scope["loop"] = self.loop
            scope.update(self.loop)
        return scope


@dataclass(slots=True)
class NodeOutcome:
    output: Any
    # None follows every outbound edge
    selected_ports: Optional[FrozenSet[str]] = None
    status: str = "success"
    input_data: Any = None


def raw_config(node: Node) -> Dict[str, Any]:
    """Stored (camelCase) form of a node's config."""
    if isinstance(node.config, dict):
        return dict(node.config)
    return node.config.model_dump(by_alias=True)


class NodeExecutor:
    """Executes single nodes; stateless apart from its collaborators."""

    def __init__(
        self,
        app_registry: AppAdapterLookup,
        credential_resolver: CredentialLookup,
        code_executor: Optional[CodeExecutor] = None,
        node_timeout_seconds: Optional[float] = None,
    ):
        self.app_registry = app_registry
        self.credential_resolver = credential_resolver
        self.code_executor = code_executor or CodeExecutor()
        self.node_timeout_seconds = node_timeout_seconds or config.node_timeout_seconds
        self._handlers = {
            "action": self._execute_action,
            "condition": self._execute_condition,
            "switch": self._execute_switch,
            "loop": self._execute_loop,
            "set_variable": self._execute_set_variable,
            "code": self._execute_code,
        }

    async def execute(self, node: Node, ctx: RunContext) -> NodeOutcome:
        handler = self._handlers.get(node.type)
        if handler is None:
            raise NodeExecutionError(node.id, f"Node type {node.type!r} cannot be executed")
        return await handler(node, ctx)

    def _resolve_config(self, node: Node, model: Any, ctx: RunContext, *, exempt: tuple = ()):
        """Interpolate the stored config and re-validate it into ``model``."""
        stored = raw_config(node)
        kept = {key: stored.pop(key) for key in exempt if key in stored}
        resolved = interpolate(stored, ctx.scope())
        resolved.update(kept)
        try:
            return model.model_validate(resolved)
        except ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise NodeExecutionError(
                node.id, f"Invalid {node.type} config after resolving templates: {location} {first.get('msg', '')}".strip()
            ) from exc

    async def _execute_action(self, node: ActionNode, ctx: RunContext) -> NodeOutcome:
        resolved = interpolate(dict(node.config), ctx.scope())
        adapter = self.app_registry.get(node.app_id)
        if adapter is None:
            return NodeOutcome(
                output={
                    "status": "skipped",
                    "reason": f"Executor not implemented for {node.app_id}:{node.action_id}",
                },
                status="skipped",
                input_data=resolved,
            )

        credential: Optional[Dict[str, Any]] = None
        if node.credential_id:
            credential = await self.credential_resolver.resolve(node.credential_id, ctx.user_id)
        elif getattr(adapter, "requires_credential", False):
            raise NodeExecutionError(node.id, f"Missing credentialId for {node.app_id} node")

        try:
            output = await asyncio.wait_for(
                adapter.execute(node.action_id, resolved, credential),
                timeout=self.node_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise NodeExecutionError(
                node.id, f"{node.app_id} node timed out after {self.node_timeout_seconds:g} seconds"
            ) from None

        status = "skipped" if isinstance(output, dict) and output.get("status") == "skipped" else "success"
        return NodeOutcome(output=output, status=status, input_data=resolved)

    async def _execute_condition(self, node: ConditionNode, ctx: RunContext) -> NodeOutcome:
        settings: ConditionConfig = self._resolve_config(node, ConditionConfig, ctx)
        try:
            result = evaluate_condition(settings.left, settings.operator, settings.right, settings.case_sensitive)
        except ValueError as exc:
            raise NodeExecutionError(node.id, str(exc)) from exc
        output = {
            "ok": True,
            "result": result,
            "operator": settings.operator,
            "left": settings.left,
            "right": settings.right,
            "caseSensitive": settings.case_sensitive,
        }
        port = "true" if result else "false"
        return NodeOutcome(output=output, selected_ports=frozenset({port}), input_data=settings.model_dump(by_alias=True))

    async def _execute_switch(self, node: SwitchNode, ctx: RunContext) -> NodeOutcome:
        settings: SwitchConfig = self._resolve_config(node, SwitchConfig, ctx)
        matched, route = select_switch_route(
            settings.value, settings.case_list(), settings.default_route, settings.case_sensitive
        )
        output = {"ok": True, "matched": matched, "route": route, "value": settings.value}
        port = route or DEFAULT_PORTS["switch"]
        return NodeOutcome(output=output, selected_ports=frozenset({port}), input_data=settings.model_dump(by_alias=True))

    async def _execute_loop(self, node: LoopNode, ctx: RunContext) -> NodeOutcome:
        settings: LoopConfig = self._resolve_config(node, LoopConfig, ctx)
        items = settings.item_list()
        output = {
            "ok": True,
            "count": len(items),
            "itemVariable": settings.item_variable,
            "indexVariable": settings.index_variable,
            "items": items,
            "iterations": [],
        }
        # The workflow executor runs the body and then follows "done"
        return NodeOutcome(
            output=output,
            selected_ports=frozenset({DEFAULT_PORTS["loop"]}),
            input_data=settings.model_dump(by_alias=True),
        )

    async def _execute_set_variable(self, node: SetVariableNode, ctx: RunContext) -> NodeOutcome:
        settings: SetVariableConfig = self._resolve_config(node, SetVariableConfig, ctx)
        if settings.scope == "workflow" and (settings.overwrite or settings.name not in ctx.variables):
            ctx.variables[settings.name] = settings.value
        output = {
            "ok": True,
            "name": settings.name,
            "value": settings.value,
            "scope": settings.scope,
            "overwrite": settings.overwrite,
        }
        return NodeOutcome(output=output, input_data=settings.model_dump(by_alias=True))

    async def _execute_code(self, node: CodeNode, ctx: RunContext) -> NodeOutcome:
        settings: CodeConfig = self._resolve_config(node, CodeConfig, ctx, exempt=("code",))
        if settings.language.lower() != "python":
            raise NodeExecutionError(node.id, f"Unsupported code language: {settings.language}. Please use Python.")

        variables = dict(ctx.variables)
        output = await self.code_executor.execute(
            settings.code,
            input=settings.input,
            trigger=ctx.trigger,
            nodes=ctx.nodes,
            variables=variables,
            timeout_seconds=settings.timeout_ms / 1000 if settings.timeout_ms else None,
        )
        ctx.variables.clear()
        ctx.variables.update(variables)
        return NodeOutcome(output=output, input_data={"input": settings.input, "language": settings.language})


__all__ = ["DEFAULT_PORTS", "NodeExecutor", "NodeOutcome", "RunContext", "raw_config"]
