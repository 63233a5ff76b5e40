import asyncio
import json

import httpx
import pytest

from soundtrack.config import Settings
from soundtrack.errors import ProviderError, ValidationError
from soundtrack.models.api import SoundtrackRequest
from soundtrack.models.domain import InlineMedia, SoundtrackJobStage
from soundtrack.services.soundtrack_service import build_soundtrack_service

ANALYSIS = {"summary": "s", "mood": "tense", "title": "Pursuit", "music_prompt": "driving percussion, low strings"}


class FakeUpstream:
    def __init__(self, final_status="SUCCESS", analysis=ANALYSIS):
        self.final_status = final_status
        self.analysis = analysis
        self.gemini_calls = 0
        self.submissions = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "generativelanguage.googleapis.com":
            self.gemini_calls += 1
            text = json.dumps(self.analysis)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})
        if request.url.path == "/api/v1/generate":
            self.submissions.append(json.loads(request.content))
            return httpx.Response(200, json={"code": 200, "data": {"taskId": "task-1"}})
        data = {
            "taskId": "task-1",
            "status": self.final_status,
            "errorMessage": "content policy" if self.final_status != "SUCCESS" else None,
            "response": {"sunoData": [{"id": "a", "audioUrl": "https://cdn.example/a.mp3"}]},
        }
        return httpx.Response(200, json={"code": 200, "data": data})


def _service(upstream):
    settings = Settings(gemini_api_key="g", suno_api_key="s", poll_interval_seconds=0, kafka_enabled=False)
    return build_soundtrack_service(settings, transport=httpx.MockTransport(upstream))


def test_compose_runs_analysis_submission_and_polling():
    upstream = FakeUpstream()
    progress = []

    result = asyncio.run(
        _service(upstream).compose(
            "chase scene", InlineMedia(data=b"video"), on_progress=lambda m, p: progress.append(p)
        )
    )

    assert result.analysis.title == "Pursuit"
    assert result.prompt == "driving percussion, low strings"
    assert result.task_id == "task-1"
    assert [track.id for track in result.tracks] == ["a"]
    assert upstream.submissions[0]["title"] == "Pursuit"
    assert upstream.submissions[0]["style"] == "Cinematic"
    assert progress == [100]


def test_compose_with_prompt_skips_analysis():
    upstream = FakeUpstream()

    result = asyncio.run(_service(upstream).compose(prompt="  calm harp  ", title="Harp"))

    assert upstream.gemini_calls == 0
    assert result.analysis is None
    assert upstream.submissions[0]["prompt"] == "calm harp"
    assert upstream.submissions[0]["title"] == "Harp"


def test_generate_requires_prompt():
    with pytest.raises(ValidationError):
        asyncio.run(_service(FakeUpstream()).generate("   "))


def test_compose_surfaces_generation_failure():
    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(_service(FakeUpstream(final_status="SENSITIVE_WORD_ERROR")).compose(prompt="x"))
    assert "content policy" in exc_info.value.message


def test_failed_job_records_error_kind():
    upstream = FakeUpstream(final_status="GENERATE_AUDIO_FAILED")
    service = _service(upstream)
    job = service.create_job(SoundtrackRequest(prompt="ominous drones"))

    asyncio.run(service.process_job(job.id))

    stored = service.get_job(job.id)
    assert stored.stage is SoundtrackJobStage.FAILED
    assert stored.error_kind == "provider"
    assert "content policy" in stored.error


def test_empty_music_prompt_fails_the_job():
    upstream = FakeUpstream(analysis={"summary": "s", "mood": "m", "title": "t", "music_prompt": ""})
    service = _service(upstream)
    job = service.create_job(SoundtrackRequest(script_text="a quiet morning"))

    asyncio.run(service.process_job(job.id))

    stored = service.get_job(job.id)
    assert stored.stage is SoundtrackJobStage.FAILED
    assert stored.error_kind == "parse"
    assert upstream.submissions == []


def test_upload_rejects_oversized_files():
    service = _service(FakeUpstream())
    service.settings.upload_max_bytes = 4

    with pytest.raises(ValidationError):
        service.upload_media("big.mp4", b"12345", content_type="video/mp4")
