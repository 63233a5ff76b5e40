"""Polling state machine for long-running music generation tasks.

Phases and the transitions allowed between them::

    SUBMITTED -> POLLING
    POLLING   -> POLLING | SUCCESS | FAILED | TIMED_OUT

Each iteration sleeps ``interval`` seconds, advances ``attempt`` and queries
the task once. The outcome of that query decides the next phase:

    transport / envelope error   consecutive_errors += 1, FAILED once it
                                 reaches ``error_threshold``
    non-terminal status          consecutive_errors = 0, stay POLLING
    success-class status         SUCCESS with tracks, or FAILED when no
                                 track carries audio
    failure-class status         FAILED, never retried
    attempt == max_attempts      TIMED_OUT
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol

from soundtrack.errors import ParseError, ProviderError, TimeoutExceededError, UpstreamError
from soundtrack.models.domain import GenerationTask, TaskStatus
from soundtrack.services.normalizer import ResultNormalizer, StatusClass, classify_status

ProgressCallback = Callable[[str, Optional[int]], Any]

PROGRESS_LABELS: dict[str, tuple[str, int]] = {
    "PENDING": ("Task queued...", 10),
    "TEXT_SUCCESS": ("Text ready, generating audio...", 40),
    "FIRST_SUCCESS": ("First track ready...", 70),
    "SUCCESS": ("Audio generation complete!", 100),
}


class StatusSource(Protocol):
    async def fetch_status(self, task_id: str, *, api_key: str | None = None) -> dict[str, Any]: ...


class PollPhase(str, Enum):
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


TRANSITIONS: dict[PollPhase, frozenset[PollPhase]] = {
    PollPhase.SUBMITTED: frozenset({PollPhase.POLLING}),
    PollPhase.POLLING: frozenset(
        {PollPhase.POLLING, PollPhase.SUCCESS, PollPhase.FAILED, PollPhase.TIMED_OUT}
    ),
    PollPhase.SUCCESS: frozenset(),
    PollPhase.FAILED: frozenset(),
    PollPhase.TIMED_OUT: frozenset(),
}


@dataclass
class PollState:
    attempt: int = 0
    consecutive_errors: int = 0
    last_status: str = PollPhase.SUBMITTED.value
    phase: PollPhase = PollPhase.SUBMITTED
    last_error: Optional[Exception] = None

    def transition(self, phase: PollPhase) -> None:
        if phase not in TRANSITIONS[self.phase]:
            raise RuntimeError(f"illegal poll transition {self.phase.value} -> {phase.value}")
        self.phase = phase


class TaskPoller:
    def __init__(
        self,
        client: StatusSource,
        normalizer: Optional[ResultNormalizer] = None,
        interval: float = 5.0,
        max_attempts: int = 50,
        error_threshold: int = 5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        if error_threshold < 1:
            raise ValueError("error_threshold must be positive")
        self.client = client
        self.normalizer = normalizer or ResultNormalizer()
        self.interval = interval
        self.max_attempts = max_attempts
        self.error_threshold = error_threshold
        self._sleep = sleep
        self.log = logger or logging.getLogger(__name__)

    async def poll(
        self,
        task_id: str,
        *,
        api_key: str | None = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[GenerationTask]:
        state = PollState()
        state.transition(PollPhase.POLLING)

        while state.attempt < self.max_attempts:
            await self._sleep(self.interval)
            state.attempt += 1

            try:
                payload = await self.client.fetch_status(task_id, api_key=api_key)
                record = self.normalizer.record(payload)
            except (UpstreamError, ProviderError, ParseError) as exc:
                self._record_error(state, task_id, exc)
                await self._report(
                    on_progress,
                    f"Connection problem, retrying... ({state.attempt}/{self.max_attempts})",
                    None,
                )
                continue

            state.consecutive_errors = 0
            status = record.status_label or "UNKNOWN"
            state.last_status = status
            outcome = classify_status(status)

            if outcome is StatusClass.FAILURE:
                state.transition(PollPhase.FAILED)
                message = record.error_message or status
                self.log.warning(
                    "suno task failed",
                    extra={"task_id": task_id, "status": status, "error_code": record.error_code},
                )
                raise ProviderError(f"Generation failed: {message}", code=record.error_code, status=status)

            label, percent = PROGRESS_LABELS.get(status, (f"Status: {status}", None))
            if outcome is StatusClass.SUCCESS:
                tasks = self._complete(state, task_id, record)
                await self._report(on_progress, label, percent)
                return tasks

            await self._report(on_progress, label, percent)

            state.transition(PollPhase.POLLING)
            self.log.debug(
                "suno task still running",
                extra={"task_id": task_id, "status": status, "attempt": state.attempt},
            )

        state.transition(PollPhase.TIMED_OUT)
        minutes = state.attempt * self.interval / 60
        self.log.warning(
            "suno task polling timed out",
            extra={"task_id": task_id, "status": state.last_status, "attempts": state.attempt},
        )
        raise TimeoutExceededError(
            f"Generation timed out: task {task_id} was still {state.last_status} "
            f"after {state.attempt} polls (~{minutes:.1f} minutes)",
            last_status=state.last_status,
        )

    def _record_error(self, state: PollState, task_id: str, exc: Exception) -> None:
        state.consecutive_errors += 1
        state.last_error = exc
        self.log.warning(
            "suno polling attempt failed",
            extra={
                "task_id": task_id,
                "attempt": state.attempt,
                "consecutive_errors": state.consecutive_errors,
                "error": str(exc),
            },
        )
        if state.consecutive_errors < self.error_threshold:
            return
        state.transition(PollPhase.FAILED)
        status_code = getattr(exc, "status_code", None)
        body = getattr(exc, "body", None) or getattr(exc, "raw", None) or str(exc)
        raise UpstreamError(
            f"Polling task {task_id} failed {state.consecutive_errors} times in a row: {exc}",
            status_code=status_code,
            body=body,
        ) from exc

    def _complete(self, state: PollState, task_id: str, record: Any) -> List[GenerationTask]:
        try:
            tasks = self.normalizer.normalize(record)
        except ParseError as exc:
            state.transition(PollPhase.FAILED)
            raise ProviderError(
                f"Generation complete but output is malformed: {exc}", status=state.last_status
            ) from exc
        if not any(task.status is TaskStatus.SUCCESS for task in tasks):
            state.transition(PollPhase.FAILED)
            raise ProviderError(
                "Generation complete but missing output: no audio returned",
                status=state.last_status,
            )
        state.transition(PollPhase.SUCCESS)
        self.log.info(
            "suno generation completed",
            extra={"task_id": task_id, "tracks": len(tasks), "attempts": state.attempt},
        )
        return tasks

    async def _report(self, on_progress: Optional[ProgressCallback], message: str, percent: Optional[int]) -> None:
        if on_progress is None:
            return
        try:
            result = on_progress(message, percent)
            if inspect.isawaitable(result):
                await result
        except Exception:
            self.log.warning("progress callback failed", extra={"progress_message": message}, exc_info=True)
