from __future__ import annotations

from typing import Any, Dict, Optional, Protocol


JsonDict = Dict[str, Any]


class AppAdapterError(Exception):
    """Vendor call failed (unreachable, non-2xx or rejected input)."""

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


class AppAdapter(Protocol):
    """Interface implemented by vendor adapters backing action nodes."""

    app_id: str
    requires_credential: bool

    async def execute(self, action_id: str, config: JsonDict, credential: Optional[JsonDict]) -> Any:
        """Run ``action_id`` and return its result; raise ``AppAdapterError`` on failure."""


class AppAdapterRegistry:
    """Simple in-memory registry keyed by app_id."""

    def __init__(self) -> None:
        self._adapters: Dict[str, AppAdapter] = {}

    def register(self, adapter: AppAdapter) -> None:
        existing = self._adapters.get(adapter.app_id)
        if existing is not None and existing is not adapter:
            raise ValueError(f"App adapter already registered for {adapter.app_id}")
        self._adapters[adapter.app_id] = adapter

    def get(self, app_id: str) -> Optional[AppAdapter]:
        return self._adapters.get(app_id)

    def app_ids(self) -> list[str]:
        return sorted(self._adapters)


app_registry = AppAdapterRegistry()


def register_app(adapter: AppAdapter) -> AppAdapter:
    app_registry.register(adapter)
    return adapter


__all__ = ["AppAdapter", "AppAdapterError", "AppAdapterRegistry", "app_registry", "register_app"]
