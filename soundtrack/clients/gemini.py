from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Optional, TypeVar

import httpx

from soundtrack.clients.payload import PayloadBuilder, RequestParts
from soundtrack.errors import (
    ConfigError,
    ParseError,
    TimeoutExceededError,
    UpstreamError,
    ValidationError,
)
from soundtrack.models.domain import AnalysisMode, AnalysisResult, InlineMedia, MediaRef, MediaUrl

T = TypeVar("T")


class GeminiServiceUnavailable(UpstreamError):
    """Raised when Gemini responds with 503."""


def parse_analysis_text(text: str | None) -> AnalysisResult:
    """Pull the analysis object out of free-form model output.

    Models sometimes wrap the JSON in prose or code fences, so everything
    between the first ``{`` and the last ``}`` is parsed. Without braces the
    raw text goes to the parser as-is and fails there.
    """
    raw = text or ""
    if not raw.strip():
        raise ParseError("Empty response from Gemini", raw=raw)
    start = raw.find("{")
    end = raw.rfind("}")
    candidate = raw[start : end + 1] if start != -1 and end > start else raw
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ParseError("Gemini returned invalid JSON", raw=raw) from exc
    if not isinstance(data, dict):
        raise ParseError("Gemini returned JSON that is not an object", raw=raw)
    return AnalysisResult.from_payload(data)


def _discard_late_result(task: asyncio.Future) -> None:
    # marks the exception as retrieved so the abandoned call stays quiet
    if not task.cancelled():
        task.exception()


class GeminiClient:
    def __init__(
        self,
        api_key: str | None,
        model: str = "models/gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com",
        timeout: float = 110.0,
        analysis_timeout: float = 120.0,
        mode: AnalysisMode | str = AnalysisMode.PROXY,
        auth_scheme: str = "bearer",
        builder: Optional[PayloadBuilder] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model if model.startswith("models/") else f"models/{model}"
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.analysis_timeout = analysis_timeout
        self.mode = AnalysisMode(mode)
        self.auth_scheme = (auth_scheme or "bearer").strip().lower()
        self.builder = builder or PayloadBuilder()
        self.transport = transport
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key and self.base_url)

    async def analyze(
        self,
        script_text: str | None,
        media: Optional[MediaRef] = None,
        mode: AnalysisMode | str | None = None,
    ) -> AnalysisResult:
        if not (script_text or "").strip() and media is None:
            raise ValidationError("Please upload a video or provide a script/description.")
        self._require_config()
        resolved_mode = AnalysisMode(mode) if mode else self.mode
        return await self._run_with_deadline(
            self._analyze(script_text or "", media, resolved_mode),
            operation="analysis",
        )

    async def describe(self, media: Optional[MediaRef], mode: AnalysisMode | str | None = None) -> str:
        if media is None:
            raise ValidationError("A video is required for a description.")
        self._require_config()
        resolved_mode = AnalysisMode(mode) if mode else self.mode
        return await self._run_with_deadline(self._describe(media, resolved_mode), operation="description")

    async def fetch_media(self, url: str, mime_type: str | None = None) -> InlineMedia:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True) as client:
            try:
                response = await client.get(url)
            except httpx.HTTPError as exc:
                self.log.error("video download failed", extra={"url": url, "error": str(exc)})
                raise UpstreamError(f"Failed to download video: {exc}") from exc
        if response.status_code >= 400:
            self.log.error(
                "video download HTTP error",
                extra={"url": url, "status": response.status_code},
            )
            raise UpstreamError(
                "Failed to download video (URL unreachable or expired)",
                status_code=response.status_code,
                body=response.text,
            )
        content_type = (response.headers.get("content-type") or "").split(";")[0].strip()
        resolved = mime_type or content_type or self.builder.default_mime_type
        self.log.info(
            "video downloaded for inline analysis",
            extra={"url": url, "size": len(response.content), "mime_type": resolved},
        )
        return InlineMedia(data=response.content, mime_type=resolved)

    async def _analyze(self, script_text: str, media: Optional[MediaRef], mode: AnalysisMode) -> AnalysisResult:
        media = await self._resolve_media(media, mode)
        parts = self.builder.build(script_text, media)
        text = await self._generate(parts, structured=True)
        self.log.debug("gemini raw analysis text", extra={"text": text[:2000]})
        return parse_analysis_text(text)

    async def _describe(self, media: MediaRef, mode: AnalysisMode) -> str:
        media = await self._resolve_media(media, mode)
        text = await self._generate(self.builder.build_description(media), structured=False)
        if not text.strip():
            raise ParseError("Gemini returned an empty description", raw=text)
        return text.strip()

    async def _resolve_media(self, media: Optional[MediaRef], mode: AnalysisMode) -> Optional[MediaRef]:
        if isinstance(media, MediaUrl) and mode is AnalysisMode.INLINE:
            return await self.fetch_media(media.url, media.mime_type)
        return media

    async def _generate(self, parts: RequestParts, structured: bool) -> str:
        url = f"{self.base_url}/v1beta/{self.model}:generateContent"
        payload: dict[str, Any] = {"contents": parts.contents()}
        if structured:
            payload["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": self.builder.response_schema(),
            }
        headers = self._auth_headers()

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(url, headers=headers, json=payload)
            except httpx.HTTPError as exc:
                self.log.error(
                    "gemini request failed",
                    extra={"error": str(exc), "model": self.model},
                )
                raise UpstreamError(f"Gemini request failed: {exc}") from exc

        body_text = response.text
        if response.status_code >= 400:
            self.log.error(
                "gemini HTTP error",
                extra={
                    "status": response.status_code,
                    "body": body_text[:2000],
                    "model": self.model,
                    "media_parts": len(parts.media_parts()),
                },
            )
            if response.status_code == 503:
                raise GeminiServiceUnavailable(
                    "Gemini service unavailable", status_code=503, body=body_text
                )
            raise UpstreamError(
                f"Gemini upstream error ({response.status_code})",
                status_code=response.status_code,
                body=body_text,
            )
        try:
            body = response.json()
        except ValueError:
            return body_text
        self.log.info("gemini response", extra={"model": self.model})
        return self._extract_text(body)

    def _extract_text(self, payload: Any) -> str:
        raw = json.dumps(payload, ensure_ascii=False)
        if not isinstance(payload, dict):
            raise ParseError("Gemini response is not an object", raw=raw)
        candidates = payload.get("candidates")
        if not candidates or not isinstance(candidates, list) or not isinstance(candidates[0], dict):
            self.log.error("Gemini response does not include candidates", extra={"payload": payload})
            raise ParseError("Gemini response does not include candidates", raw=raw)
        content = candidates[0].get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not parts or not isinstance(parts, list) or not isinstance(parts[0], dict):
            self.log.error("Gemini response missing content parts", extra={"payload": payload})
            raise ParseError("Gemini response missing content parts", raw=raw)
        text = parts[0].get("text")
        if not text or not isinstance(text, str):
            self.log.error("Gemini response missing text payload", extra={"payload": payload})
            raise ParseError("Gemini response missing text payload", raw=raw)
        return text

    async def _run_with_deadline(self, operation_coro: Awaitable[T], operation: str) -> T:
        task = asyncio.ensure_future(operation_coro)
        done, _ = await asyncio.wait({task}, timeout=self.analysis_timeout)
        if task in done:
            return task.result()
        task.add_done_callback(_discard_late_result)
        self.log.warning(
            "gemini %s timed out",
            operation,
            extra={"timeout": self.analysis_timeout, "model": self.model},
        )
        raise TimeoutExceededError(
            f"Gemini {operation} timed out after {self.analysis_timeout:g} seconds",
            last_status="ANALYZING",
        )

    def _auth_headers(self) -> dict[str, str]:
        # "google" talks to the public API directly; proxies expect a bearer token
        if self.auth_scheme == "google":
            return {"x-goog-api-key": self.api_key}
        return {"Authorization": f"Bearer {self.api_key}"}

    def _require_config(self) -> None:
        if not self.api_key:
            raise ConfigError("Gemini API key is not configured. Set SOUNDTRACK_GEMINI_API_KEY.")
        if not self.base_url:
            raise ConfigError("Gemini endpoint is not configured. Set SOUNDTRACK_GEMINI_BASE_URL.")
