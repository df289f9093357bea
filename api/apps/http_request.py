from __future__ import annotations

import base64
import json
from typing import Any, Dict, Optional

import httpx

from api.apps.base import AppAdapterError, JsonDict, register_app
from shared.config import config as app_config
from shared.logger import get_logger

logger = get_logger(__name__)

BODYLESS_METHODS = {"GET", "HEAD"}


def _as_header_value(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def parse_headers(raw: Any) -> Dict[str, str]:
    """Header map from a dict or a JSON object string; anything else is empty."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    if not isinstance(raw, dict):
        return {}
    return {str(key): _as_header_value(value) for key, value in raw.items() if key and value is not None}


def apply_auth_headers(headers: Dict[str, str], credential: Optional[JsonDict]) -> None:
    """API key, bearer token or basic auth, first match wins."""
    if not credential:
        return
    if credential.get("apiKey"):
        headers[str(credential.get("headerName") or "X-API-Key")] = str(credential["apiKey"])
        return
    token = credential.get("token") or credential.get("accessToken")
    if token:
        headers["Authorization"] = f"Bearer {token}"
        return
    if credential.get("username") and credential.get("password"):
        pair = f"{credential['username']}:{credential['password']}".encode("utf-8")
        headers["Authorization"] = f"Basic {base64.b64encode(pair).decode('ascii')}"


def _has_header(headers: Dict[str, str], name: str) -> bool:
    return any(key.lower() == name.lower() for key in headers)


def _timeout_seconds(raw_ms: Any, default: float) -> float:
    """Per-request ``timeout`` (milliseconds) from the node config, else the default."""
    if raw_ms in (None, ""):
        return default
    try:
        value = float(raw_ms)
    except (TypeError, ValueError):
        return default
    return value / 1000 if value > 0 else default


def _parse_response(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class HttpRequestAdapter:
    """Generic outbound HTTP call (``rest_api`` app, action ``http_request``)."""

    app_id = "rest_api"
    requires_credential = False
    actions = ("http_request",)
    default_method = "GET"

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: Optional[float] = None) -> None:
        self.transport = transport
        self.timeout = timeout or app_config.external_request_timeout_seconds

    async def execute(self, action_id: str, config: JsonDict, credential: Optional[JsonDict]) -> Any:
        if action_id not in self.actions:
            return {"status": "skipped", "reason": f"{self.app_id} action not implemented: {action_id}"}

        url = str(config.get("url") or "").strip()
        if not url:
            raise AppAdapterError(f"{self.app_id} {action_id} requires url")
        method = str(config.get("method") or self.default_method).strip().upper()
        headers = parse_headers(config.get("headers"))
        apply_auth_headers(headers, credential)

        params = config.get("queryParams") or config.get("query")
        if not isinstance(params, dict):
            params = None
        else:
            params = {str(key): _as_header_value(value) for key, value in params.items() if value is not None}

        request_kwargs: Dict[str, Any] = {"headers": headers, "params": params}
        body = config.get("body")
        if method not in BODYLESS_METHODS and body is not None:
            body_type = str(config.get("bodyType") or "json").strip().lower()
            if body_type == "form" and isinstance(body, dict):
                request_kwargs["data"] = {str(k): _as_header_value(v) for k, v in body.items() if v is not None}
            elif body_type == "raw" or isinstance(body, str):
                request_kwargs["content"] = body if isinstance(body, str) else json.dumps(body)
                if body_type != "raw" and not _has_header(headers, "Content-Type"):
                    headers["Content-Type"] = "application/json"
            else:
                request_kwargs["json"] = body

        timeout = _timeout_seconds(config.get("timeout"), self.timeout)
        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                transport=self.transport,
                follow_redirects=config.get("followRedirects", True) is not False,
            ) as client:
                response = await client.request(method, url, **request_kwargs)
        except httpx.HTTPError as exc:
            raise AppAdapterError(f"{self.app_id} request failed: {exc}", detail={"url": url}) from exc

        data = _parse_response(response)
        if response.status_code >= 400:
            preview = data if isinstance(data, str) else json.dumps(data)
            raise AppAdapterError(
                f"{self.app_id} request failed {response.status_code}: {(preview or '')[:500]}",
                status_code=response.status_code,
                detail={"url": url, "body": data},
            )

        logger.debug(f"{self.app_id} {method} {url} -> {response.status_code}")
        return {
            "ok": True,
            "status": response.status_code,
            "headers": dict(response.headers),
            "data": data,
        }


class OutgoingWebhookAdapter(HttpRequestAdapter):
    """Fire-and-report webhook (``webhook_outgoing`` app, action ``send``)."""

    app_id = "webhook_outgoing"
    actions = ("send",)
    default_method = "POST"


register_app(HttpRequestAdapter())
register_app(OutgoingWebhookAdapter())


__all__ = ["HttpRequestAdapter", "OutgoingWebhookAdapter", "apply_auth_headers", "parse_headers"]
