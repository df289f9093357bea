from datetime import datetime, timedelta, timezone

import pytest

from api.triggers.errors import TriggerConfigurationError
from api.triggers.state import next_fire_after, poll_interval_minutes, poll_is_due
from workflow_core.schema import PollState

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, 5),
        ("", 5),
        ("abc", 5),
        (0, 5),
        (-3, 5),
        (0.5, 1),
        (15, 15),
        ("10 minutes", 10),
        (5000, 1440),
        (True, 5),
    ],
)
def test_poll_interval_minutes(raw, expected):
    assert poll_interval_minutes(raw) == expected


def test_poll_is_due_throttles_on_last_run():
    assert poll_is_due(PollState(), 5, NOW) is True
    recent = PollState(last_run_at=NOW - timedelta(minutes=4))
    assert poll_is_due(recent, 5, NOW) is False
    assert poll_is_due(recent, 4, NOW) is True


def test_next_fire_after_is_strictly_after_base():
    base = datetime(2024, 3, 10, 12, 5, tzinfo=timezone.utc)
    assert next_fire_after("*/5 * * * *", None, base) == datetime(2024, 3, 10, 12, 10, tzinfo=timezone.utc)


def test_next_fire_after_uses_local_wall_clock():
    base = datetime(2024, 7, 1, 0, 0, tzinfo=timezone.utc)
    # 09:00 in New York during daylight saving time is 13:00 UTC
    assert next_fire_after("0 9 * * *", "America/New_York", base) == datetime(2024, 7, 1, 13, 0, tzinfo=timezone.utc)


def test_next_fire_after_rejects_bad_configuration():
    with pytest.raises(TriggerConfigurationError, match="no cron expression"):
        next_fire_after("", None, NOW)
    with pytest.raises(TriggerConfigurationError, match="Invalid cron expression"):
        next_fire_after("every minute", None, NOW)
    with pytest.raises(TriggerConfigurationError, match="Unknown timezone"):
        next_fire_after("* * * * *", "Mars/Olympus", NOW)
