from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from queue import Queue
from typing import Awaitable, Callable
from uuid import UUID

try:
    from kafka import KafkaConsumer, KafkaProducer
except ImportError:  # pragma: no cover - optional dependency
    KafkaConsumer = None  # type: ignore
    KafkaProducer = None  # type: ignore

JobProcessor = Callable[[UUID], Awaitable[None]]

log = logging.getLogger(__name__)


class BaseQueue:
    def enqueue(self, job_id: UUID) -> None: ...  # pragma: no cover


def _run_job(processor: JobProcessor, job_id: UUID) -> None:
    # every job gets its own event loop; jobs never share poll state
    try:
        asyncio.run(processor(job_id))
    except Exception:
        log.exception("soundtrack job crashed", extra={"job_id": str(job_id)})


class LocalQueue(BaseQueue):
    def __init__(self, processor: JobProcessor) -> None:
        self._processor = processor
        self._queue: Queue[UUID] = Queue()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def enqueue(self, job_id: UUID) -> None:
        self._queue.put(job_id)

    def _run(self) -> None:
        while True:
            job_id = self._queue.get()
            try:
                _run_job(self._processor, job_id)
            finally:
                self._queue.task_done()


class KafkaQueue(BaseQueue):
    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        group_id: str,
        processor: JobProcessor,
    ) -> None:
        if KafkaProducer is None or KafkaConsumer is None:
            raise RuntimeError("kafka-python is not installed")
        self._topic = topic
        self._processor = processor
        self._producer = KafkaProducer(
            bootstrap_servers=bootstrap_servers,
            value_serializer=lambda value: json.dumps(value).encode("utf-8"),
        )
        self._consumer = KafkaConsumer(
            topic,
            bootstrap_servers=bootstrap_servers,
            group_id=group_id,
            auto_offset_reset="earliest",
            enable_auto_commit=True,
            value_deserializer=lambda value: json.loads(value.decode("utf-8")),
        )
        self._thread = threading.Thread(target=self._consume, daemon=True)
        self._thread.start()

    def enqueue(self, job_id: UUID) -> None:
        payload = {"job_id": str(job_id), "ts": time.time()}
        self._producer.send(self._topic, payload)
        self._producer.flush()

    def _consume(self) -> None:
        for message in self._consumer:
            try:
                job_id = UUID(message.value["job_id"])
            except (KeyError, TypeError, ValueError):
                log.warning("skipping malformed job message", extra={"value": message.value})
                continue
            _run_job(self._processor, job_id)
