"""Background execution for archive requests.

Every request gets its own single-worker executor and resolves later through
a ``Future``; nothing mutable is shared between requests. ``JobRegistry``
keeps the latest progress and the terminal outcome so HTTP clients can poll.
There is no cancellation.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ArchiveError
from .models import ArchiveResult, ExtractedFile, ProgressEvent

logger = logging.getLogger(__name__)

JobFn = Callable[[Callable[[ProgressEvent], None]], Any]


def submit(fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
    """Run ``fn`` on a fresh single-worker thread and return its future."""
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gisdata-job")
    try:
        return executor.submit(fn, *args, **kwargs)
    finally:
        # Already-submitted work still runs; this only lets the thread exit afterwards.
        executor.shutdown(wait=False)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class Job:
    id: str
    kind: str
    created_at: float
    status: JobStatus = JobStatus.PENDING
    finished_at: float | None = None
    progress: ProgressEvent | None = None
    result: dict | None = None
    error: dict | None = None
    future: Future | None = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED, JobStatus.FAILED)

    def to_dict(self) -> dict:
        return {
            "jobId": self.id,
            "kind": self.kind,
            "status": self.status.value,
            "progress": self.progress.to_dict() if self.progress else None,
            "result": self.result,
            "error": self.error,
        }


def serialize_result(value: Any) -> dict:
    if isinstance(value, ArchiveResult):
        return value.to_dict()
    if isinstance(value, list) and all(isinstance(v, ExtractedFile) for v in value):
        return {"files": [v.to_dict() for v in value]}
    raise TypeError(f"Unsupported job result: {type(value).__name__}")


class JobRegistry:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def start(self, kind: str, fn: JobFn) -> Job:
        """Accept a request and run it in the background.

        ``fn`` receives a progress callback; it returns an ArchiveResult or a
        list of ExtractedFile, or raises ArchiveError.
        """
        job = Job(id=str(uuid.uuid4()), kind=kind, created_at=self._clock())
        with self._lock:
            self._jobs[job.id] = job
        job.future = submit(self._run, job, fn)
        return job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def snapshot(self, job_id: str) -> dict | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.to_dict() if job else None

    def prune(self, ttl_seconds: float) -> int:
        """Forget finished jobs older than ttl_seconds; returns how many."""
        cutoff = self._clock() - ttl_seconds
        with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.done and job.finished_at is not None and job.finished_at < cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]
        return len(stale)

    def _set_progress(self, job: Job, event: ProgressEvent) -> None:
        with self._lock:
            job.progress = event

    def _finish(self, job: Job, result: dict | None = None, error: dict | None = None) -> None:
        with self._lock:
            job.result = result
            job.error = error
            job.status = JobStatus.FAILED if error is not None else JobStatus.SUCCEEDED
            job.finished_at = self._clock()

    def _run(self, job: Job, fn: JobFn) -> None:
        with self._lock:
            job.status = JobStatus.RUNNING
        try:
            value = fn(lambda event: self._set_progress(job, event))
            result = serialize_result(value)
        except ArchiveError as exc:
            logger.warning("Job %s (%s) failed: %s", job.id, job.kind, exc.reason)
            self._finish(job, error=exc.to_dict())
        except Exception as exc:
            logger.exception("Job %s (%s) crashed", job.id, job.kind)
            self._finish(job, error={"kind": "Error", "reason": f"{job.kind} failed: {exc}"})
        else:
            self._finish(job, result=result)
