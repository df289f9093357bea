from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from workflow_core.errors import WorkflowDefinitionError
from workflow_core.graph import find_trigger_node
from workflow_core.schema import (
    RECENT_IDS_LIMIT,
    ActionNode,
    Connection,
    PollState,
    ScheduleState,
    TriggerNode,
    parse_node,
    resolve_trigger_kind,
)


class TestPollState:
    def test_recent_ids_are_most_recent_first_and_capped(self):
        state = PollState()
        for index in range(RECENT_IDS_LIMIT + 5):
            state = state.with_recent_id(f"id-{index}")

        assert len(state.recent_ids) == RECENT_IDS_LIMIT
        assert state.recent_ids[0] == f"id-{RECENT_IDS_LIMIT + 4}"
        assert not state.has_seen("id-0")
        assert state.has_seen("id-5")

    def test_seen_id_moves_to_front(self):
        state = PollState(recent_ids=["a", "b", "c"]).with_recent_id("c")
        assert state.recent_ids == ["c", "a", "b"]

    def test_round_trips_through_stored_json(self):
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        stored = PollState(last_run_at=now, last_seen_at=now, recent_ids=["x"]).to_stored()

        assert stored["lastRunAt"] == "2024-05-01T12:00:00Z"
        assert stored["recentIds"] == ["x"]
        assert PollState.load(stored).last_seen_at == now

    def test_unreadable_state_starts_over(self):
        assert PollState.load({"lastRunAt": "not a date"}) == PollState()
        assert PollState.load(None) == PollState()

    def test_oversized_stored_list_is_truncated(self):
        state = PollState.load({"recentIds": [str(i) for i in range(250)]})
        assert len(state.recent_ids) == RECENT_IDS_LIMIT
        assert state.recent_ids[0] == "0"


def test_schedule_state_round_trip():
    instant = datetime(2024, 1, 1, 0, 5, tzinfo=timezone.utc)
    state = ScheduleState.load(ScheduleState(last_run_at=instant, last_scheduled_for=instant).to_stored())
    assert state.last_scheduled_for == instant


class TestNodeNormalization:
    def test_trigger_id_falls_back_to_config(self):
        node = parse_node(
            {"id": "t", "type": "trigger", "appId": "google_drive", "config": {"selectedTriggerId": "new_file"}}
        )
        assert isinstance(node, TriggerNode)
        assert node.trigger_id == "new_file"

    def test_trigger_credential_moves_into_config(self):
        node = parse_node({"id": "t", "type": "trigger", "appId": "google_drive", "credentialId": 12})
        assert node.config.credential_id == "12"

    def test_trigger_config_keeps_source_specific_keys(self):
        node = parse_node(
            {"id": "t", "type": "trigger", "appId": "google_drive", "config": {"folderId": "abc", "pollInterval": "10"}}
        )
        assert node.config.as_options() == {"folderId": "abc", "pollInterval": "10"}

    def test_action_ids_from_config(self):
        node = parse_node(
            {"id": "a", "type": "action", "config": {"appId": "rest_api", "actionId": "http_request", "credentialId": "3"}}
        )
        assert isinstance(node, ActionNode)
        assert (node.app_id, node.action_id, node.credential_id) == ("rest_api", "http_request", "3")

    def test_unknown_types_are_ignored(self):
        assert parse_node({"id": "note", "type": "sticky_note"}) is None
        assert parse_node({"type": "action"}) is None

    def test_invalid_logic_config_raises(self):
        with pytest.raises(ValidationError):
            parse_node({"id": "v", "type": "action", "appId": "set_variable", "config": {"value": 1}})


def test_connection_accepts_canvas_field_names():
    connection = Connection.from_stored({"source": "a", "target": "b", "sourceHandle": "true"})
    assert (connection.from_node, connection.to_node, connection.from_port) == ("a", "b", "true")
    assert Connection.from_stored({"from": "a"}) is None


class TestTriggerKind:
    def test_node_setting_wins(self):
        node = TriggerNode(id="t", app_id="schedule", config={"triggerType": "POLL"})
        assert resolve_trigger_kind(node, "webhook") == "poll"

    def test_workflow_setting_then_app(self):
        assert resolve_trigger_kind(TriggerNode(id="t", app_id="gmail"), "webhook") == "webhook"
        assert resolve_trigger_kind(TriggerNode(id="t", app_id="schedule")) == "schedule"
        assert resolve_trigger_kind(TriggerNode(id="t", app_id="gmail")) == ""


def test_find_trigger_node_reports_invalid_trigger():
    nodes = [{"id": "t", "type": "trigger", "config": {"pollInterval": {"bad": True}}}]
    with pytest.raises(WorkflowDefinitionError, match="Invalid trigger node"):
        find_trigger_node(nodes)
