from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from api.triggers.polling.adapters.base import (
    JsonDict,
    PollResult,
    fetch_json,
    parse_rfc3339,
    register_adapter,
    require_access_token,
    rfc3339,
)
from shared.config import config
from shared.logger import get_logger
from workflow_core.schema import PollState

logger = get_logger(__name__)

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
MAX_RESULTS = 10
START_WINDOW = timedelta(minutes=1)


def _minutes_before(trigger_config: JsonDict) -> float:
    raw = trigger_config.get("minutesBefore")
    if raw in (None, ""):
        return 0.0
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


class GoogleCalendarPollAdapter:
    """Poll a Google calendar for new, updated or starting events."""

    app_id = "google_calendar"

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
        base_url: str = CALENDAR_API_BASE,
    ) -> None:
        self.transport = transport
        self.timeout = timeout or config.external_request_timeout_seconds
        self.base_url = base_url

    async def poll(
        self,
        trigger_id: str,
        trigger_config: JsonDict,
        credential: JsonDict,
        state: PollState,
        *,
        now: datetime,
    ) -> PollResult:
        access_token = require_access_token(credential, "Google Calendar")
        calendar_id = str(trigger_config.get("calendarId") or "primary")
        since = state.last_seen_at or now
        next_state = state.model_copy(update={"last_seen_at": now})

        if trigger_id not in ("new_event", "event_updated", "event_started"):
            logger.debug(f"Unsupported Google Calendar trigger {trigger_id!r}; no events")
            return PollResult(events=[], next_state=next_state)

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        ) as client:
            url = f"{self.base_url}/calendars/{quote(calendar_id, safe='')}/events"
            if trigger_id == "event_started":
                return await self._poll_started(client, url, trigger_config, state, next_state, now)
            return await self._poll_changes(client, url, trigger_id, state, next_state, since)

    async def _list_events(self, client: httpx.AsyncClient, url: str, params: Dict[str, str]) -> List[JsonDict]:
        data = await fetch_json(client, url, params=params, label="Google Calendar")
        items = data.get("items")
        return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []

    async def _poll_changes(
        self,
        client: httpx.AsyncClient,
        url: str,
        trigger_id: str,
        state: PollState,
        next_state: PollState,
        since: datetime,
    ) -> PollResult:
        items = await self._list_events(
            client,
            url,
            {
                "singleEvents": "true",
                "orderBy": "updated",
                "maxResults": str(MAX_RESULTS),
                "updatedMin": rfc3339(since),
            },
        )
        events: List[Dict[str, Any]] = []
        for item in items:
            event_id = str(item.get("id") or "")
            if not event_id:
                continue
            updated = item.get("updated") or ""
            created = item.get("created") or ""
            marker = parse_rfc3339(created if trigger_id == "new_event" else updated)
            if marker is None or marker <= since:
                continue
            dedupe_key = f"{event_id}:{updated or created}"
            if state.has_seen(dedupe_key):
                continue
            next_state = next_state.with_recent_id(dedupe_key)
            events.append({"event": item})
        return PollResult(events=events, next_state=next_state)

    async def _poll_started(
        self,
        client: httpx.AsyncClient,
        url: str,
        trigger_config: JsonDict,
        state: PollState,
        next_state: PollState,
        now: datetime,
    ) -> PollResult:
        target = now + timedelta(minutes=_minutes_before(trigger_config))
        window_start = target - START_WINDOW
        window_end = target + START_WINDOW
        items = await self._list_events(
            client,
            url,
            {
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": str(MAX_RESULTS),
                "timeMin": rfc3339(window_start),
                "timeMax": rfc3339(window_end),
            },
        )
        events: List[Dict[str, Any]] = []
        for item in items:
            event_id = str(item.get("id") or "")
            start_raw = (item.get("start") or {}).get("dateTime")
            # all-day events only carry start.date
            start = parse_rfc3339(start_raw)
            if not event_id or start is None:
                continue
            if start < window_start or start > window_end:
                continue
            dedupe_key = f"{event_id}:{start_raw}"
            if state.has_seen(dedupe_key):
                continue
            next_state = next_state.with_recent_id(dedupe_key)
            events.append({"event": item})
        return PollResult(events=events, next_state=next_state)


register_adapter(GoogleCalendarPollAdapter())


__all__ = ["GoogleCalendarPollAdapter"]
