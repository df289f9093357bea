from __future__ import annotations

from typing import Any, Dict, Optional

from worker.broker import broker
from shared.logger import get_logger

logger = get_logger(__name__)


@broker.task
async def execute_workflow_manually(workflow_id: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run a workflow once with trigger kind ``manual`` and report the outcome."""
    logger.info("Executing workflow manually via Taskiq", extra={"workflow_id": workflow_id})
    from api.workflows import services as workflow_services  # local import to avoid cycles

    execution = await workflow_services.run_workflow_manually(workflow_id, payload=payload)
    return {
        "executionId": execution.execution_id,
        "status": execution.status.value if hasattr(execution.status, "value") else str(execution.status),
        "errorMessage": execution.error_message,
    }


__all__ = ["execute_workflow_manually"]
