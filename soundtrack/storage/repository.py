from __future__ import annotations

from threading import Lock
from typing import Dict, List
from uuid import UUID

from soundtrack.models.domain import SoundtrackJob


class SoundtrackJobRepository:
    def __init__(self) -> None:
        self._jobs: Dict[UUID, SoundtrackJob] = {}
        self._lock = Lock()

    def save(self, job: SoundtrackJob) -> SoundtrackJob:
        with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)
        return job

    def get(self, job_id: UUID) -> SoundtrackJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def list(self) -> List[SoundtrackJob]:
        with self._lock:
            jobs = [job.model_copy(deep=True) for job in self._jobs.values()]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs
