from __future__ import annotations

import pytest

from sparsetree.domain.errors import ConflictError, InvalidInputError, NotFoundError
from sparsetree.domain.indexer import JobManager
from sparsetree.domain.model import JobKind, JobStatus
from sparsetree.domain.ports.progress import ProgressEvent, ProgressPhase


def test_idle_manager_reports_idle() -> None:
    jobs = JobManager()

    snapshot = jobs.status()

    assert snapshot.status is JobStatus.IDLE
    assert snapshot.job_id is None
    assert not jobs.is_running()


def test_only_one_job_runs_at_a_time() -> None:
    jobs = JobManager()
    job = jobs.begin(JobKind.INDEX, "KWQS-BBQ")

    with pytest.raises(ConflictError):
        jobs.begin(JobKind.DISCOVERY, "graph")

    jobs.finish(job.job_id, JobStatus.COMPLETED, message="done")
    follow_up = jobs.begin(JobKind.DISCOVERY, "graph")
    assert follow_up.job_id != job.job_id


def test_finish_moves_job_to_terminal_state_once() -> None:
    jobs = JobManager()
    job = jobs.begin(JobKind.INDEX, "KWQS-BBQ")

    jobs.finish(job.job_id, JobStatus.FAILED, message="boom", result={"errors": 1})

    snapshot = jobs.get(job.job_id)
    assert snapshot.status is JobStatus.FAILED
    assert snapshot.message == "boom"
    assert job.result == {"errors": 1}
    assert job.finished_at is not None
    assert jobs.status().job_id == job.job_id
    with pytest.raises(ConflictError):
        jobs.finish(job.job_id, JobStatus.COMPLETED)


def test_finish_rejects_non_terminal_status() -> None:
    jobs = JobManager()
    job = jobs.begin(JobKind.INDEX, "KWQS-BBQ")

    with pytest.raises(InvalidInputError):
        jobs.finish(job.job_id, JobStatus.RUNNING)


def test_cancel_sets_flag_on_active_job_only() -> None:
    jobs = JobManager()
    assert not jobs.cancel()

    job = jobs.begin(JobKind.INDEX, "KWQS-BBQ")

    assert not jobs.cancel("some-other-job")
    assert not job.cancel_requested
    assert jobs.cancel(job.job_id)
    assert job.cancel_requested
    assert jobs.status().status is JobStatus.RUNNING


def test_record_progress_keeps_last_event() -> None:
    jobs = JobManager()
    job = jobs.begin(JobKind.INDEX, "KWQS-BBQ")
    event = ProgressEvent(
        job_id=job.job_id, phase=ProgressPhase.PROGRESS, fetched=3, total_estimate=9
    )

    jobs.record_progress(job.job_id, event)

    assert jobs.get(job.job_id).last_event == event


def test_unknown_job_is_not_found() -> None:
    jobs = JobManager()

    with pytest.raises(NotFoundError):
        jobs.get("missing")
    with pytest.raises(NotFoundError):
        jobs.finish("missing", JobStatus.COMPLETED)
