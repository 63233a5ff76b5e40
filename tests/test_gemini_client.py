import asyncio
import base64
import json

import httpx
import pytest

from soundtrack.clients.gemini import GeminiClient, GeminiServiceUnavailable, parse_analysis_text
from soundtrack.errors import ConfigError, ParseError, TimeoutExceededError, UpstreamError, ValidationError
from soundtrack.models.domain import AnalysisMode, InlineMedia, MediaUrl

ANALYSIS = {
    "summary": "A lone astronaut drifts past a dying star.",
    "mood": "melancholic, vast",
    "title": "Last Light",
    "music_prompt": "slow ambient synth pads, distant choir, 60 bpm",
}


def _candidate(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client(handler, **kwargs) -> GeminiClient:
    kwargs.setdefault("api_key", "test-key")
    return GeminiClient(transport=httpx.MockTransport(handler), **kwargs)


def test_analyze_returns_structured_result_and_sends_schema():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_candidate(json.dumps(ANALYSIS)))

    result = asyncio.run(_client(handler, model="gemini-2.5-flash").analyze("space drama"))

    assert result.title == "Last Light"
    assert result.music_prompt == ANALYSIS["music_prompt"]
    assert seen["url"].endswith("/v1beta/models/gemini-2.5-flash:generateContent")
    assert seen["auth"] == "Bearer test-key"
    config = seen["body"]["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert config["responseSchema"]["required"] == ["summary", "mood", "title", "music_prompt"]


def test_analyze_extracts_json_wrapped_in_prose():
    wrapped = "Here is the analysis:\n```json\n" + json.dumps(ANALYSIS) + "\n```\nEnjoy!"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_candidate(wrapped))

    result = asyncio.run(_client(handler).analyze("space drama"))
    assert result.mood == "melancholic, vast"


def test_analyze_accepts_plain_text_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="Sure! " + json.dumps(ANALYSIS))

    result = asyncio.run(_client(handler).analyze("space drama"))
    assert result.summary == ANALYSIS["summary"]


def test_missing_fields_default_to_empty_strings():
    result = parse_analysis_text('{"title": "Only Title", "mood": null}')

    assert result.title == "Only Title"
    assert result.mood == ""
    assert result.music_prompt == ""


@pytest.mark.parametrize("text", ["", "no json here", "{not: valid}", "[1, 2]"])
def test_parse_failures_keep_raw_text(text):
    with pytest.raises(ParseError) as exc_info:
        parse_analysis_text(text)
    assert exc_info.value.raw == text


def test_response_without_candidates_is_a_parse_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": []})

    with pytest.raises(ParseError):
        asyncio.run(_client(handler).analyze("script"))


@pytest.mark.parametrize(
    "body",
    [
        {"candidates": ["oops"]},
        {"candidates": [{"content": {"parts": "abc"}}]},
        {"candidates": {"a": 1}},
        {"candidates": [{"content": "text"}]},
        {"candidates": [{"content": {"parts": [["nested"]]}}]},
        ["not", "an", "object"],
    ],
)
def test_malformed_envelopes_are_parse_errors(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    with pytest.raises(ParseError) as exc_info:
        asyncio.run(_client(handler).analyze("script"))
    assert exc_info.value.raw == json.dumps(body, ensure_ascii=False)


def test_google_auth_scheme_uses_api_key_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["key"] = request.headers.get("x-goog-api-key")
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=_candidate(json.dumps(ANALYSIS)))

    asyncio.run(_client(handler, auth_scheme="google").analyze("script"))

    assert seen == {"key": "test-key", "auth": None}


def test_empty_input_fails_before_any_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=_candidate("{}"))

    with pytest.raises(ValidationError):
        asyncio.run(_client(handler).analyze("   ", None))
    assert calls == []


def test_missing_api_key_is_a_config_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ConfigError):
        asyncio.run(_client(handler, api_key="").analyze("script"))


def test_http_errors_surface_status_and_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal boom")

    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(_client(handler).analyze("script"))
    assert exc_info.value.status_code == 500
    assert exc_info.value.body == "internal boom"


def test_service_unavailable_has_its_own_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    with pytest.raises(GeminiServiceUnavailable):
        asyncio.run(_client(handler).analyze("script"))


def test_network_failure_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError):
        asyncio.run(_client(handler).analyze("script"))


def test_slow_analysis_times_out():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json=_candidate(json.dumps(ANALYSIS)))

    with pytest.raises(TimeoutExceededError) as exc_info:
        asyncio.run(_client(handler, analysis_timeout=0.05).analyze("script"))
    assert "timed out" in exc_info.value.message
    assert isinstance(exc_info.value, TimeoutError)


def test_proxy_mode_forwards_media_url():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "generativelanguage.googleapis.com"
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_candidate(json.dumps(ANALYSIS)))

    media = MediaUrl(url="https://blob.example/clip.mp4")
    asyncio.run(_client(handler, mode=AnalysisMode.PROXY).analyze("", media))

    first_part = seen["body"]["contents"][0]["parts"][0]
    assert first_part == {"fileData": {"mimeType": "video/mp4", "fileUri": "https://blob.example/clip.mp4"}}


def test_inline_mode_downloads_and_embeds_media():
    video = b"\x1a\x45\xdf\xa3webm-bytes"
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "blob.example":
            return httpx.Response(200, content=video, headers={"content-type": "video/webm"})
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_candidate(json.dumps(ANALYSIS)))

    media = MediaUrl(url="https://blob.example/clip.webm", mime_type="video/webm")
    result = asyncio.run(_client(handler).analyze("", media, mode="inline"))

    inline = seen["body"]["contents"][0]["parts"][0]["inlineData"]
    assert inline["mimeType"] == "video/webm"
    assert base64.b64decode(inline["data"]) == video
    assert result.title == "Last Light"


def test_inline_mode_reports_unreachable_media():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "blob.example":
            return httpx.Response(404, text="expired")
        raise AssertionError("analysis should not be requested")

    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(_client(handler, mode="inline").analyze("", MediaUrl(url="https://blob.example/gone.mp4")))
    assert exc_info.value.status_code == 404


def test_describe_returns_free_text_without_schema():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_candidate("  A rainy neon street at night.  "))

    description = asyncio.run(_client(handler).describe(InlineMedia(data=b"video")))

    assert description == "A rainy neon street at night."
    assert "generationConfig" not in seen["body"]


def test_describe_requires_media():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ValidationError):
        asyncio.run(_client(handler).describe(None))
