"""Run-state guard for long-running jobs.

At most one indexing or discovery job is active per :class:`JobManager`. The manager is
the single writer of job state; callers hold a reference to it instead of reaching for a
module global.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.domain.errors import ConflictError, InvalidInputError, NotFoundError
from sparsetree.domain.model import JobKind, JobStatus, new_canonical_id

if TYPE_CHECKING:
    from sparsetree.domain.ports.progress import ProgressEvent

log = getLogger(__name__)


@dataclass(slots=True, kw_only=True)
class Job:
    job_id: str
    kind: JobKind
    subject: str
    status: JobStatus = JobStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    message: str | None = None
    last_event: ProgressEvent | None = None
    result: object | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()


@dataclass(slots=True, frozen=True)
class JobSnapshot:
    job_id: str | None
    kind: JobKind | None
    subject: str | None
    status: JobStatus
    message: str | None = None
    last_event: ProgressEvent | None = None


class JobManager:
    """State machine ``idle -> running -> completed | failed | cancelled``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: Job | None = None
        self._jobs: dict[str, Job] = {}
        self._last: Job | None = None

    def begin(self, kind: JobKind, subject: str) -> Job:
        with self._lock:
            if self._active is not None:
                raise ConflictError(
                    f"A {self._active.kind} job is already running ({self._active.job_id})"
                )
            job = Job(job_id=new_canonical_id(), kind=kind, subject=subject)
            self._active = job
            self._jobs[job.job_id] = job
        log.info("Started %s job %s for %s", kind, job.job_id, subject)
        return job

    def finish(
        self,
        job_id: str,
        status: JobStatus,
        *,
        message: str | None = None,
        result: object | None = None,
    ) -> Job:
        if not status.is_terminal:
            raise InvalidInputError(f"{status} is not a terminal job status")
        with self._lock:
            job = self._require(job_id)
            if job.status.is_terminal:
                raise ConflictError(f"Job {job_id} already finished as {job.status}")
            job.status = status
            job.message = message
            job.result = result
            job.finished_at = datetime.now(UTC)
            if self._active is job:
                self._active = None
            self._last = job
        log.info("Job %s %s%s", job_id, status, f": {message}" if message else "")
        return job

    def cancel(self, job_id: str | None = None) -> bool:
        """Ask the active job to stop at its next iteration boundary.

        Returns ``False`` when nothing matching is running.
        """

        with self._lock:
            job = self._active
            if job is None or (job_id is not None and job.job_id != job_id):
                return False
            job.cancel_event.set()
        log.info("Cancellation requested for job %s", job.job_id)
        return True

    def record_progress(self, job_id: str, event: ProgressEvent) -> None:
        with self._lock:
            self._require(job_id).last_event = event

    def get(self, job_id: str) -> JobSnapshot:
        with self._lock:
            return _snapshot(self._require(job_id))

    def status(self) -> JobSnapshot:
        """The active job, else the most recently finished one, else idle."""

        with self._lock:
            job = self._active or self._last
            if job is None:
                return JobSnapshot(job_id=None, kind=None, subject=None, status=JobStatus.IDLE)
            return _snapshot(job)

    def is_running(self) -> bool:
        with self._lock:
            return self._active is not None

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Unknown job: {job_id}")
        return job


def _snapshot(job: Job) -> JobSnapshot:
    return JobSnapshot(
        job_id=job.job_id,
        kind=job.kind,
        subject=job.subject,
        status=job.status,
        message=job.message,
        last_event=job.last_event,
    )
