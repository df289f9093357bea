"""
Workflow schema definitions.

Stored workflows keep the dashboard's camelCase JSON. Nodes are normalised and
validated into a tagged union discriminated on ``type``; each node kind carries
its own config model. Dispatcher state (``PollState`` / ``ScheduleState``) is
modelled here as well so the engine and the dispatcher share one shape.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

RECENT_IDS_LIMIT = 100


class CamelModel(BaseModel):
    """Base model reading and writing camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class NodeType(str, Enum):
    """Node kinds understood by the engine."""

    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    SWITCH = "switch"
    LOOP = "loop"
    SET_VARIABLE = "set_variable"
    CODE = "code"


# Built-in logic apps stored as ``action`` nodes by the dashboard
LOGIC_APP_NODE_TYPES = {
    "if_condition": NodeType.CONDITION.value,
    "switch": NodeType.SWITCH.value,
    "loop": NodeType.LOOP.value,
    "set_variable": NodeType.SET_VARIABLE.value,
    "code": NodeType.CODE.value,
}

# Trigger apps whose id alone names the trigger kind
KIND_TRIGGER_APPS = ("schedule", "webhook", "manual")


def parse_json_list(raw: Any) -> Optional[List[Any]]:
    """Return ``raw`` as a list, parsing JSON strings; None when it is not list-shaped."""
    if isinstance(raw, list):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        try:
            parsed = json.loads(text)
        except ValueError:
            return None
        return parsed if isinstance(parsed, list) else None
    return None


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Node configs
# ---------------------------------------------------------------------------


class TriggerSettings(CamelModel):
    """Trigger node config. Source-specific keys (folderId, calendarId, ...) are kept as extras."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    trigger_type: Optional[str] = None
    credential_id: Optional[str] = None
    poll_interval: Optional[Union[int, float, str]] = None
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("trigger_type", "credential_id", "cron_expression", "timezone", mode="before")
    @classmethod
    def _coerce_optional_text(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    def as_options(self) -> Dict[str, Any]:
        """Full config (typed fields plus extras) in stored camelCase form."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ConditionConfig(CamelModel):
    left: Any = None
    operator: str = Field(..., min_length=1)
    right: Any = None
    case_sensitive: bool = False


class SwitchCase(CamelModel):
    equals: Any = None
    route: Optional[str] = None

    @field_validator("route", mode="before")
    @classmethod
    def _route_text(cls, v: Any) -> Any:
        if v is None:
            return None
        text = str(v).strip()
        return text or None


class SwitchConfig(CamelModel):
    value: Any = None
    # A string here is a template that resolves to the case list at run time
    cases: Union[List[SwitchCase], str] = Field(default_factory=list)
    default_route: Optional[str] = None
    case_sensitive: bool = False

    @field_validator("cases", mode="before")
    @classmethod
    def _parse_cases(cls, v: Any) -> Any:
        if v is None:
            return []
        parsed = parse_json_list(v)
        if parsed is not None:
            return [case for case in parsed if isinstance(case, dict)]
        return v if isinstance(v, str) else []

    @field_validator("default_route", mode="before")
    @classmethod
    def _default_route_text(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return None if v is None else str(v).strip()

    def case_list(self) -> List[SwitchCase]:
        return self.cases if isinstance(self.cases, list) else []


class LoopConfig(CamelModel):
    items: Any = None
    item_variable: str = "item"
    index_variable: str = "index"
    max_iterations: Optional[int] = Field(default=None, gt=0)

    @field_validator("item_variable", "index_variable", mode="before")
    @classmethod
    def _variable_defaults(cls, v: Any, info) -> Any:
        v = _blank_to_none(v)
        if v is None:
            return "item" if info.field_name == "item_variable" else "index"
        return v

    @field_validator("max_iterations", mode="before")
    @classmethod
    def _blank_max(cls, v: Any) -> Any:
        return _blank_to_none(v)

    def item_list(self) -> List[Any]:
        items = parse_json_list(self.items) or []
        if self.max_iterations:
            return items[: self.max_iterations]
        return items


class SetVariableConfig(CamelModel):
    name: str = Field(..., min_length=1)
    value: Any = None
    scope: Literal["workflow", "node"] = "workflow"
    overwrite: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("scope", "overwrite", mode="before")
    @classmethod
    def _blank_defaults(cls, v: Any, info) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return "workflow" if info.field_name == "scope" else True
        return v


class CodeConfig(CamelModel):
    """Code node config. ``code`` is never template-interpolated."""

    code: str = Field(..., min_length=1)
    language: str = "python"
    input: Any = None
    timeout_ms: Optional[int] = Field(default=None, gt=0)

    @field_validator("timeout_ms", mode="before")
    @classmethod
    def _blank_timeout(cls, v: Any) -> Any:
        return _blank_to_none(v)


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class BaseNode(CamelModel):
    id: str = Field(..., min_length=1, description="Unique node id")
    name: str = Field(default="", description="Display name")

    @property
    def display_name(self) -> str:
        return self.name or self.id


class TriggerNode(BaseNode):
    type: Literal["trigger"] = "trigger"
    app_id: str = ""
    trigger_id: str = ""
    config: TriggerSettings = Field(default_factory=TriggerSettings)


class ActionNode(BaseNode):
    """App-backed node delegating to the adapter registered for ``app_id``."""

    type: Literal["action"] = "action"
    app_id: str = ""
    action_id: str = ""
    credential_id: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class ConditionNode(BaseNode):
    type: Literal["condition"] = "condition"
    config: ConditionConfig


class SwitchNode(BaseNode):
    type: Literal["switch"] = "switch"
    config: SwitchConfig = Field(default_factory=SwitchConfig)


class LoopNode(BaseNode):
    type: Literal["loop"] = "loop"
    config: LoopConfig = Field(default_factory=LoopConfig)


class SetVariableNode(BaseNode):
    type: Literal["set_variable"] = "set_variable"
    config: SetVariableConfig


class CodeNode(BaseNode):
    type: Literal["code"] = "code"
    config: CodeConfig


Node = Annotated[
    Union[TriggerNode, ActionNode, ConditionNode, SwitchNode, LoopNode, SetVariableNode, CodeNode],
    Field(discriminator="type"),
]

_node_adapter: TypeAdapter = TypeAdapter(Node)

NODE_TYPES = {kind.value for kind in NodeType}


def _first_text(*values: Any) -> str:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def normalize_node(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Map a stored dashboard node onto the shape of the typed union.

    Returns None for nodes the engine does not execute (sticky notes, nodes
    without an id, unknown types).
    """
    if not isinstance(raw, dict):
        return None
    node_id = _first_text(raw.get("id"))
    if not node_id:
        return None

    config = raw.get("config") if isinstance(raw.get("config"), dict) else {}
    node_type = str(raw.get("type") or "")
    app_id = _first_text(raw.get("appId"), config.get("appId"))

    if node_type == NodeType.ACTION.value and app_id in LOGIC_APP_NODE_TYPES:
        node_type = LOGIC_APP_NODE_TYPES[app_id]
    if node_type not in NODE_TYPES:
        return None

    data: Dict[str, Any] = {
        "id": node_id,
        "type": node_type,
        "name": _first_text(raw.get("name"), config.get("name"), node_id),
        "config": config,
    }
    if node_type == NodeType.TRIGGER.value:
        data["appId"] = app_id
        data["triggerId"] = _first_text(
            raw.get("triggerId"),
            config.get("selectedTriggerId"),
            config.get("triggerId"),
            config.get("id"),
        )
        if "credentialId" not in config and raw.get("credentialId") is not None:
            data["config"] = {**config, "credentialId": raw.get("credentialId")}
    elif node_type == NodeType.ACTION.value:
        data["appId"] = app_id
        data["actionId"] = _first_text(
            raw.get("actionId"),
            config.get("actionId"),
            config.get("selectedActionId"),
        )
        data["credentialId"] = _first_text(raw.get("credentialId"), config.get("credentialId")) or None
    return data


def parse_node(raw: Any) -> Optional[Node]:
    """Normalise and validate one stored node; raises ``ValidationError`` on bad config."""
    data = normalize_node(raw)
    if data is None:
        return None
    return _node_adapter.validate_python(data)


class Connection(CamelModel):
    """Directed edge ``(from_node, from_port) -> (to_node, to_port)``."""

    from_node: str
    to_node: str
    from_port: Optional[str] = None
    to_port: Optional[str] = None

    @classmethod
    def from_stored(cls, raw: Any) -> Optional["Connection"]:
        if not isinstance(raw, dict):
            return None
        source = _first_text(raw.get("from"), raw.get("source"), raw.get("sourceId"))
        target = _first_text(raw.get("to"), raw.get("target"), raw.get("targetId"))
        if not source or not target:
            return None
        return cls(
            from_node=source,
            to_node=target,
            from_port=_first_text(raw.get("fromPort"), raw.get("sourceHandle")) or None,
            to_port=_first_text(raw.get("toPort"), raw.get("targetHandle")) or None,
        )


def resolve_trigger_kind(trigger: TriggerNode, workflow_trigger_type: Optional[str] = None) -> str:
    """
    Determine how a workflow is fired.

    Order: trigger node ``config.triggerType``, then the workflow-level
    ``trigger_type``, then the trigger app itself for apps that name a kind
    (schedule / webhook / manual). Returns "" when nothing is configured.
    """
    explicit = _first_text(trigger.config.trigger_type, workflow_trigger_type).lower()
    if explicit:
        return explicit
    if trigger.app_id in KIND_TRIGGER_APPS:
        return trigger.app_id
    return ""


# ---------------------------------------------------------------------------
# Dispatcher state
# ---------------------------------------------------------------------------


class PollState(CamelModel):
    """Per-workflow poll bookkeeping: throttle timestamp, watermark and dedupe window."""

    last_run_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    recent_ids: List[str] = Field(default_factory=list)
    last_error: Optional[str] = None

    @field_validator("last_run_at", "last_seen_at", mode="after")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(v)

    @field_validator("recent_ids", mode="before")
    @classmethod
    def _cap_recent_ids(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item is not None][:RECENT_IDS_LIMIT]

    @classmethod
    def load(cls, raw: Any) -> "PollState":
        """Read stored state; unreadable state starts over."""
        if not isinstance(raw, dict):
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError:
            return cls()

    def has_seen(self, key: str) -> bool:
        return key in self.recent_ids

    def with_recent_id(self, key: str, limit: int = RECENT_IDS_LIMIT) -> "PollState":
        """Return a copy with ``key`` moved (or added) to the front of ``recent_ids``."""
        recent = [key] + [existing for existing in self.recent_ids if existing != key]
        return self.model_copy(update={"recent_ids": recent[:limit]})

    def to_stored(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ScheduleState(CamelModel):
    """Per-workflow schedule bookkeeping guarding each cron instant against re-firing."""

    last_run_at: Optional[datetime] = None
    last_scheduled_for: Optional[datetime] = None

    @field_validator("last_run_at", "last_scheduled_for", mode="after")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(v)

    @classmethod
    def load(cls, raw: Any) -> "ScheduleState":
        if not isinstance(raw, dict):
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError:
            return cls()

    def to_stored(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------


class NodeExecutionRecord(CamelModel):
    """One entry of an execution's node trace."""

    node_id: str
    node_name: str
    node_type: str
    status: Literal["success", "error", "skipped"]
    input_data: Any = None
    output_data: Any = None
    error: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    iteration: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ExecutionResult(CamelModel):
    output_data: Dict[str, Any] = Field(default_factory=dict)
    node_executions: List[NodeExecutionRecord] = Field(default_factory=list)

    def trace(self) -> List[Dict[str, Any]]:
        return [record.to_payload() for record in self.node_executions]


__all__ = [
    "ActionNode",
    "CodeConfig",
    "CodeNode",
    "ConditionConfig",
    "ConditionNode",
    "Connection",
    "ExecutionResult",
    "LoopConfig",
    "LoopNode",
    "Node",
    "NodeExecutionRecord",
    "NodeType",
    "PollState",
    "RECENT_IDS_LIMIT",
    "ScheduleState",
    "SetVariableConfig",
    "SetVariableNode",
    "SwitchCase",
    "SwitchConfig",
    "SwitchNode",
    "TriggerNode",
    "TriggerSettings",
    "normalize_node",
    "parse_json_list",
    "parse_node",
    "resolve_trigger_kind",
]
