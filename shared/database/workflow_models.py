from enum import Enum

from tortoise import fields, models


WORKFLOW_ID_PREFIX = "wf_"
EXECUTION_ID_PREFIX = "exec_"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class TriggerKind(str, Enum):
    POLL = "poll"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    MANUAL = "manual"


def make_workflow_public_id(pk: int) -> str:
    return f"{WORKFLOW_ID_PREFIX}{pk}"


def parse_workflow_public_id(value: str) -> int:
    if not value.startswith(WORKFLOW_ID_PREFIX):
        raise ValueError("Invalid workflow_id format")
    return int(value.removeprefix(WORKFLOW_ID_PREFIX))


def make_execution_public_id(pk: int) -> str:
    return f"{EXECUTION_ID_PREFIX}{pk}"


def parse_execution_public_id(value: str) -> int:
    if not value.startswith(EXECUTION_ID_PREFIX):
        raise ValueError("Invalid execution_id format")
    return int(value.removeprefix(EXECUTION_ID_PREFIX))


class Workflow(models.Model):
    """
    Workflow definition plus the dispatcher state that belongs to it.

    ``poll_state`` and ``schedule_state`` hold the serialized
    ``workflow_core.schema.PollState`` / ``ScheduleState`` for the trigger
    node; they live on the workflow row so deleting or editing a workflow
    never leaves dispatcher state behind.
    """

    id = fields.IntField(primary_key=True)
    user = fields.ForeignKeyField("models.User", related_name="workflows")
    name = fields.CharField(max_length=255)
    description = fields.TextField(null=True)
    nodes = fields.JSONField(default=list)
    connections = fields.JSONField(default=list)
    trigger_type = fields.CharField(max_length=32, null=True)
    trigger_config = fields.JSONField(null=True)
    cron_expression = fields.CharField(max_length=255, null=True)
    timezone = fields.CharField(max_length=64, null=True)
    is_active = fields.BooleanField(default=False)
    webhook_id = fields.CharField(max_length=64, unique=True)
    poll_state = fields.JSONField(null=True)
    schedule_state = fields.JSONField(null=True)
    execution_count = fields.IntField(default=0)
    last_executed_at = fields.DatetimeField(null=True)
    last_execution_status = fields.CharEnumField(ExecutionStatus, max_length=20, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "workflows"
        ordering = ("id",)
        indexes = (("is_active", "id"),)

    def __str__(self) -> str:
        return f"Workflow<{self.workflow_id}:{self.name}>"

    @property
    def workflow_id(self) -> str:
        return make_workflow_public_id(self.id)


class Execution(models.Model):
    """Audit record of one firing of a workflow, written pending -> running -> success|error."""

    id = fields.IntField(primary_key=True)
    workflow = fields.ForeignKeyField("models.Workflow", related_name="executions")
    status = fields.CharEnumField(ExecutionStatus, max_length=20, default=ExecutionStatus.PENDING)
    trigger_type = fields.CharEnumField(TriggerKind, max_length=20)
    trigger_data = fields.JSONField(null=True)
    started_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)
    duration_ms = fields.IntField(null=True)
    output_data = fields.JSONField(null=True)
    node_executions = fields.JSONField(null=True)
    error_message = fields.TextField(null=True)
    error_stack = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "workflow_executions"
        ordering = ("-created_at", "-id")

    def __str__(self) -> str:
        return f"Execution<{self.execution_id}:{self.status}>"

    @property
    def execution_id(self) -> str:
        return make_execution_public_id(self.id)


__all__ = [
    "Execution",
    "ExecutionStatus",
    "TriggerKind",
    "Workflow",
    "make_execution_public_id",
    "make_workflow_public_id",
    "parse_execution_public_id",
    "parse_workflow_public_id",
]
