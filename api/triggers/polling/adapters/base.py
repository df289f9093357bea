from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import httpx

from workflow_core.schema import PollState


JsonDict = Dict[str, Any]


@dataclass(slots=True)
class PollResult:
    """Adapter response with newly observed events + the state to persist."""

    events: List[JsonDict]
    next_state: PollState
    detail: JsonDict = field(default_factory=dict)


class PollAdapterError(Exception):
    """The polled resource could not be reached or answered non-2xx."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[JsonDict] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail or {}


class PollAdapter(Protocol):
    """Interface implemented by resource-specific polling adapters."""

    app_id: str

    async def poll(
        self,
        trigger_id: str,
        trigger_config: JsonDict,
        credential: JsonDict,
        state: PollState,
        *,
        now: datetime,
    ) -> PollResult:
        """Return new events + next state. Never raises for "nothing new"."""


class PollAdapterRegistry:
    """Simple in-memory registry keyed by trigger app_id."""

    def __init__(self) -> None:
        self._adapters: Dict[str, PollAdapter] = {}

    def register(self, adapter: PollAdapter) -> None:
        existing = self._adapters.get(adapter.app_id)
        if existing is not None and existing is not adapter:
            raise ValueError(f"Poll adapter already registered for {adapter.app_id}")
        self._adapters[adapter.app_id] = adapter

    def get(self, app_id: str) -> Optional[PollAdapter]:
        return self._adapters.get(app_id)


adapter_registry = PollAdapterRegistry()


def register_adapter(adapter: PollAdapter) -> PollAdapter:
    adapter_registry.register(adapter)
    return adapter


def require_access_token(credential: Optional[JsonDict], label: str) -> str:
    token = str((credential or {}).get("accessToken") or "").strip()
    if not token:
        raise PollAdapterError(f"{label} poll requires accessToken")
    return token


def rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_rfc3339(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: Optional[JsonDict] = None,
    label: str,
) -> JsonDict:
    """GET ``url`` and decode the JSON body, mapping every failure to ``PollAdapterError``."""
    try:
        response = await client.get(url, params=params)
    except httpx.HTTPError as exc:
        raise PollAdapterError(f"{label} API unreachable: {exc}", detail={"url": url}) from exc

    if response.status_code >= 400:
        raise PollAdapterError(
            f"{label} API error {response.status_code}: {response.text[:500] or response.reason_phrase}",
            status_code=response.status_code,
            detail={"url": url},
        )
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError as exc:
        raise PollAdapterError(f"{label} API returned invalid JSON", detail={"url": url}) from exc
    return data if isinstance(data, dict) else {}


__all__ = [
    "PollAdapter",
    "PollAdapterError",
    "PollAdapterRegistry",
    "PollResult",
    "adapter_registry",
    "fetch_json",
    "parse_rfc3339",
    "register_adapter",
    "require_access_token",
    "rfc3339",
]
