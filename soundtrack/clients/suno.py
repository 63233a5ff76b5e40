from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from soundtrack.errors import ConfigError, ParseError, ProviderError, UpstreamError


class SunoClient:
    """Client for the sunoapi.org generation endpoints.

    The credential is passed per call; ``api_key`` given at construction is
    only the default used when a call does not bring its own.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://api.sunoapi.org",
        model: str = "V3_5",
        callback_url: str = "https://example.com/suno/callback",
        default_title: str = "Generated Soundtrack",
        default_style: str = "Cinematic",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or "").rstrip("/")
        self.model = model
        self.callback_url = callback_url
        self.default_title = default_title
        self.default_style = default_style
        self.timeout = timeout
        self.transport = transport
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key and self.base_url)

    async def submit(
        self,
        prompt: str,
        *,
        api_key: str | None = None,
        instrumental: bool = True,
        title: str | None = None,
        style: str | None = None,
    ) -> str:
        key = self._credential(api_key)
        payload = {
            "prompt": prompt,
            "style": style or self.default_style,
            "title": title or self.default_title,
            "customMode": True,
            "instrumental": instrumental,
            "model": self.model,
            # the API insists on a callback even though results are polled
            "callBackUrl": self.callback_url,
        }
        body = await self._request("POST", "/api/v1/generate", key, json=payload)
        data = body.get("data") or {}
        task_id = data.get("taskId") if isinstance(data, dict) else None
        if not task_id:
            raise ProviderError("Suno API response did not include a taskId", code=body.get("code"))
        self.log.info(
            "suno generation submitted",
            extra={"task_id": task_id, "model": self.model, "instrumental": instrumental},
        )
        return str(task_id)

    async def fetch_status(self, task_id: str, *, api_key: str | None = None) -> Dict[str, Any]:
        key = self._credential(api_key)
        body = await self._request(
            "GET",
            "/api/v1/generate/record-info",
            key,
            params={"taskId": task_id},
        )
        data = body.get("data")
        if not isinstance(data, dict):
            raise ParseError("Suno task info is missing its data object", raw=str(body))
        return data

    async def _request(
        self,
        method: str,
        path: str,
        api_key: str,
        *,
        json: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.request(method, url, headers=headers, json=json, params=params)
            except httpx.HTTPError as exc:
                self.log.warning("suno request failed", extra={"path": path, "error": str(exc)})
                raise UpstreamError(f"Suno API request failed: {exc}") from exc
        if response.status_code < 200 or response.status_code >= 300:
            self.log.warning(
                "suno HTTP error",
                extra={"path": path, "status": response.status_code, "body": response.text[:2000]},
            )
            raise UpstreamError(
                f"Suno API Request Failed ({response.status_code})",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ParseError("Suno API returned a non-JSON body", raw=response.text) from exc
        if not isinstance(body, dict):
            raise ParseError("Suno API returned an unexpected body", raw=response.text)
        code = body.get("code")
        if code != 200:
            msg = body.get("msg") or "unknown error"
            self.log.warning("suno API error", extra={"path": path, "code": code, "msg": msg})
            raise ProviderError(f"Suno API Error ({code}): {msg}", code=code)
        return body

    def _credential(self, api_key: str | None) -> str:
        key = (api_key or "").strip() or self.api_key
        if not key:
            raise ConfigError("Suno API Key is required.")
        if not self.base_url:
            raise ConfigError("Suno API base URL is not configured.")
        return key
