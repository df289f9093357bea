"""
Execution bookkeeping around one workflow run.

Every firing, whatever its trigger, goes through ``run_workflow_execution``:
the Execution row is created ``pending``, moved to ``running``, and finished
exactly once as ``success`` or ``error``; the workflow's aggregate counters
are bumped exactly once on either path.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder

from api.workflows.engine import get_workflow_executor
from api.workflows.services import record_workflow_outcome
from shared.database.workflow_models import Execution, ExecutionStatus, TriggerKind, Workflow
from shared.error_handling import describe_exception
from shared.logger import get_logger
from workflow_core.errors import WorkflowExecutionError
from workflow_core.executor import WorkflowExecutor

logger = get_logger("api.workflows.executions")

CANCELLED_MESSAGE = "Execution cancelled"


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _finish_execution(
    execution: Execution,
    status: ExecutionStatus,
    *,
    duration_ms: int,
    output_data: Optional[Dict[str, Any]] = None,
    node_executions: Optional[List[Dict[str, Any]]] = None,
    error_message: Optional[str] = None,
    error_stack: Optional[str] = None,
) -> None:
    completed_at = _now()
    values = {
        "status": status,
        "completed_at": completed_at,
        "duration_ms": duration_ms,
        "output_data": jsonable_encoder(output_data) if output_data is not None else None,
        "node_executions": jsonable_encoder(node_executions) if node_executions is not None else None,
        "error_message": error_message,
        "error_stack": error_stack,
    }
    await Execution.filter(id=execution.id).update(**values)
    for field_name, value in values.items():
        setattr(execution, field_name, value)


async def run_workflow_execution(
    workflow: Workflow,
    *,
    trigger_kind: TriggerKind,
    trigger_data: Optional[Dict[str, Any]] = None,
    executor: Optional[WorkflowExecutor] = None,
) -> Execution:
    """
    Run ``workflow`` once and persist the audit record.

    Failures of the run itself are recorded on the returned Execution
    (``status == error``) rather than raised. Cancellation is recorded and
    re-raised.
    """
    executor = executor or get_workflow_executor()
    trigger_payload = jsonable_encoder(trigger_data or {})

    execution = await Execution.create(
        workflow=workflow,
        status=ExecutionStatus.PENDING,
        trigger_type=trigger_kind,
        trigger_data=trigger_payload,
        started_at=_now(),
    )
    await Execution.filter(id=execution.id).update(status=ExecutionStatus.RUNNING)
    execution.status = ExecutionStatus.RUNNING

    log_extra = {
        "workflow_id": workflow.workflow_id,
        "execution_id": execution.execution_id,
        "trigger_kind": trigger_kind.value,
    }
    logger.info("Workflow execution started", extra=log_extra)
    started = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        result = await executor.run(
            user_id=workflow.user_id,
            workflow_id=workflow.workflow_id,
            nodes=workflow.nodes,
            connections=workflow.connections,
            trigger_type=trigger_kind.value,
            trigger_data=trigger_payload,
        )
    except asyncio.CancelledError:
        await _finish_execution(
            execution,
            ExecutionStatus.ERROR,
            duration_ms=elapsed_ms(),
            error_message=CANCELLED_MESSAGE,
        )
        await record_workflow_outcome(workflow, ExecutionStatus.ERROR)
        logger.warning(CANCELLED_MESSAGE, extra=log_extra)
        raise
    except Exception as exc:
        message, stack = describe_exception(exc)
        trace = exc.node_executions if isinstance(exc, WorkflowExecutionError) else None
        await _finish_execution(
            execution,
            ExecutionStatus.ERROR,
            duration_ms=elapsed_ms(),
            node_executions=trace,
            error_message=message,
            error_stack=stack,
        )
        await record_workflow_outcome(workflow, ExecutionStatus.ERROR)
        logger.warning(f"Workflow execution failed: {message}", extra=log_extra)
        return execution

    await _finish_execution(
        execution,
        ExecutionStatus.SUCCESS,
        duration_ms=elapsed_ms(),
        output_data=result.output_data,
        node_executions=result.trace(),
    )
    await record_workflow_outcome(workflow, ExecutionStatus.SUCCESS)
    logger.info(f"Workflow execution succeeded in {execution.duration_ms} ms", extra=log_extra)
    return execution


__all__ = ["CANCELLED_MESSAGE", "run_workflow_execution"]
