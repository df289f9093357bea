"""Exception types raised by the workflow engine."""
from typing import Any, Dict, List, Optional


class WorkflowEngineError(Exception):
    """Base class for workflow engine errors."""
    pass


class WorkflowDefinitionError(WorkflowEngineError):
    """The stored workflow graph cannot be executed (bad node config, cycle, no trigger)."""
    pass


class NodeExecutionError(WorkflowEngineError):
    """A single node failed."""

    def __init__(self, node_id: str, message: str):
        super().__init__(message)
        self.node_id = node_id
        self.message = message


class CodeExecutionError(WorkflowEngineError):
    """Exception raised during code block execution."""
    pass


class WorkflowExecutionError(WorkflowEngineError):
    """
    Raised by the workflow executor when a run fails.

    Carries the id of the failing node and the trace collected up to and
    including that node's error entry.
    """

    def __init__(
        self,
        message: str,
        *,
        node_id: Optional[str] = None,
        node_executions: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        self.node_executions = node_executions or []


__all__ = [
    "CodeExecutionError",
    "NodeExecutionError",
    "WorkflowDefinitionError",
    "WorkflowEngineError",
    "WorkflowExecutionError",
]
