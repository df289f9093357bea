from __future__ import annotations

from datetime import datetime
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

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
FILE_FIELDS = "id,name,mimeType,createdTime,modifiedTime,parents,webViewLink,webContentLink"
LIST_FIELDS = f"files({FILE_FIELDS}),nextPageToken"
PAGE_SIZE = 10


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _text(config: JsonDict, key: str) -> str:
    value = config.get(key)
    return str(value).strip() if value is not None else ""


class GoogleDrivePollAdapter:
    """Poll Google Drive for new or modified files using watermark + recent-id dedupe."""

    app_id = "google_drive"

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
        base_url: str = DRIVE_API_BASE,
    ) -> None:
        self.transport = transport
        self.timeout = timeout or config.external_request_timeout_seconds
        self.base_url = base_url

    def _client(self, access_token: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )

    async def poll(
        self,
        trigger_id: str,
        trigger_config: JsonDict,
        credential: JsonDict,
        state: PollState,
        *,
        now: datetime,
    ) -> PollResult:
        access_token = require_access_token(credential, "Google Drive")
        since = state.last_seen_at or now
        next_state = state.model_copy(update={"last_seen_at": now})

        async with self._client(access_token) as client:
            if trigger_id == "new_file":
                return await self._poll_new_files(client, trigger_config, state, next_state, since)
            if trigger_id == "file_updated":
                return await self._poll_updated_files(client, trigger_config, state, next_state, since)

        logger.debug(f"Unsupported Google Drive trigger {trigger_id!r}; no events")
        return PollResult(events=[], next_state=next_state)

    async def _list_files(self, client: httpx.AsyncClient, query: str, order_by: str) -> List[JsonDict]:
        data = await fetch_json(
            client,
            f"{self.base_url}/files",
            params={
                "q": query,
                "orderBy": order_by,
                "pageSize": str(PAGE_SIZE),
                "fields": LIST_FIELDS,
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            },
            label="Google Drive",
        )
        files = data.get("files")
        return [item for item in files if isinstance(item, dict)] if isinstance(files, list) else []

    async def _poll_new_files(
        self,
        client: httpx.AsyncClient,
        trigger_config: JsonDict,
        state: PollState,
        next_state: PollState,
        since: datetime,
    ) -> PollResult:
        query_parts = ["trashed = false", f"createdTime > '{rfc3339(since)}'"]
        folder_id = _text(trigger_config, "folderId")
        if folder_id:
            query_parts.append(f"'{_quote(folder_id)}' in parents")
        mime_type = _text(trigger_config, "mimeType")
        if mime_type.endswith("/*"):
            query_parts.append(f"mimeType contains '{_quote(mime_type[:-1])}'")
        elif mime_type:
            query_parts.append(f"mimeType = '{_quote(mime_type)}'")

        files = await self._list_files(client, " and ".join(query_parts), "createdTime desc")
        events: List[Dict[str, Any]] = []
        for item in files:
            file_id = str(item.get("id") or "")
            if not file_id or state.has_seen(file_id):
                continue
            next_state = next_state.with_recent_id(file_id)
            events.append({"file": item})
        return PollResult(events=events, next_state=next_state)

    async def _poll_updated_files(
        self,
        client: httpx.AsyncClient,
        trigger_config: JsonDict,
        state: PollState,
        next_state: PollState,
        since: datetime,
    ) -> PollResult:
        file_id = _text(trigger_config, "fileId")
        if file_id:
            item = await fetch_json(
                client,
                f"{self.base_url}/files/{quote(file_id, safe='')}",
                params={"fields": FILE_FIELDS, "supportsAllDrives": "true"},
                label="Google Drive",
            )
            files = [item] if item else []
        else:
            query_parts = ["trashed = false", f"modifiedTime > '{rfc3339(since)}'"]
            folder_id = _text(trigger_config, "folderId")
            if folder_id:
                query_parts.append(f"'{_quote(folder_id)}' in parents")
            files = await self._list_files(client, " and ".join(query_parts), "modifiedTime desc")

        events: List[Dict[str, Any]] = []
        for item in files:
            item_id = str(item.get("id") or "")
            modified = parse_rfc3339(item.get("modifiedTime"))
            if not item_id or modified is None or modified <= since:
                continue
            dedupe_key = f"{item_id}:{item.get('modifiedTime')}"
            if state.has_seen(dedupe_key):
                continue
            next_state = next_state.with_recent_id(dedupe_key)
            events.append({"file": item})
        return PollResult(events=events, next_state=next_state)


register_adapter(GoogleDrivePollAdapter())


__all__ = ["GoogleDrivePollAdapter"]
