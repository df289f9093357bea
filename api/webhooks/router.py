from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.webhooks import services as webhook_services
from api.workflows.engine import get_workflow_executor
from workflow_core.executor import WorkflowExecutor

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

WEBHOOK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


@router.api_route("/workflow/{webhook_id}", methods=WEBHOOK_METHODS)
async def workflow_webhook(
    webhook_id: str,
    request: Request,
    executor: WorkflowExecutor = Depends(get_workflow_executor),
):
    raw_body = await request.body()
    outcome = await webhook_services.handle_workflow_webhook(
        webhook_id,
        method=request.method,
        headers=webhook_services.normalize_headers(request.headers.items()),
        query=dict(request.query_params),
        raw_body=raw_body,
        executor=executor,
    )
    return JSONResponse(status_code=outcome.http_status, content=outcome.to_payload())


__all__ = ["router"]
