from uuid import uuid4

import pytest

from soundtrack.events import publisher as publisher_module
from soundtrack.events.publisher import JobEventPublisher
from soundtrack.models.domain import SoundtrackJob, SoundtrackJobStage


class RecordingProducer:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.sent = []

    def send(self, topic, payload):
        self.sent.append((topic, self.kwargs["value_serializer"](payload)))


class BrokenProducer(RecordingProducer):
    def send(self, topic, payload):
        raise ConnectionError("broker down")


def _job():
    return SoundtrackJob(
        id=uuid4(),
        status=SoundtrackJobStage.POLLING.value,
        stage=SoundtrackJobStage.POLLING,
        progress=40,
        progress_message="Text ready, generating audio...",
    )


def test_publish_job_sends_snapshot(monkeypatch):
    monkeypatch.setattr(publisher_module, "KafkaProducer", RecordingProducer)
    events = JobEventPublisher(bootstrap_servers="localhost:9092", topic="soundtrack_updates")
    job = _job()

    events.publish_job(job)

    [(topic, raw)] = events._producer.sent
    assert topic == "soundtrack_updates"
    assert str(job.id).encode() in raw
    assert b'"stage": "polling"' in raw
    assert b'"progress": 40' in raw


def test_publish_failures_are_logged_not_raised(monkeypatch):
    monkeypatch.setattr(publisher_module, "KafkaProducer", BrokenProducer)
    events = JobEventPublisher(bootstrap_servers="localhost:9092", topic="soundtrack_updates")

    events.publish_job(_job())


def test_publisher_requires_topic(monkeypatch):
    monkeypatch.setattr(publisher_module, "KafkaProducer", RecordingProducer)
    with pytest.raises(ValueError):
        JobEventPublisher(bootstrap_servers="localhost:9092", topic="")
