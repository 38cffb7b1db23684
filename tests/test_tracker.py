import pytest

from hub.broadcaster import GLOBAL_TOPIC
from hub.models import Job, JobStatus, JobType
from hub.tracker import JobTracker


def _finished_job(tracker: JobTracker, system_id: str = "app", status: JobStatus = JobStatus.COMPLETED) -> Job:
    job = Job.create(JobType.BUILD, system_id)
    job.mark_running()
    tracker.start(job)
    job.finish(status)
    tracker.finish(job)
    return job


def test_job_ids_are_unique_under_bursts():
    ids = {Job.create(JobType.BUILD, "app").id for _ in range(200)}

    assert len(ids) == 200
    assert all(job_id.startswith("build_app_") for job_id in ids)


def test_finish_moves_job_from_active_to_history(tracker):
    job = Job.create(JobType.DEPLOY, "app")
    job.mark_running()
    tracker.start(job)
    assert tracker.active("app") == [job]

    job.finish(JobStatus.FAILED, error="boom")
    assert tracker.finish(job) is True

    assert tracker.active() == []
    assert tracker.history("app") == [job]
    assert tracker.get(job.id) is job


def test_finish_is_idempotent(tracker):
    job = _finished_job(tracker)

    assert tracker.finish(job) is False
    assert len(tracker.history()) == 1


def test_finish_ignores_non_terminal_job(tracker):
    job = Job.create(JobType.BUILD, "app")
    job.mark_running()
    tracker.start(job)

    assert tracker.finish(job) is False
    assert tracker.active() == [job]


def test_history_cap_evicts_oldest_first(broadcaster):
    tracker = JobTracker(broadcaster, history_limit=5)
    jobs = [_finished_job(tracker) for _ in range(8)]

    history = tracker.history(limit=100)

    assert len(history) == 5
    assert [job.id for job in history] == [job.id for job in reversed(jobs[3:])]
    assert all(tracker.get(job.id) is None for job in jobs[:3])


def test_history_filters_by_system_and_limit(tracker):
    for system_id in ("a", "b", "a", "a"):
        _finished_job(tracker, system_id)

    assert len(tracker.history("a")) == 3
    assert len(tracker.history("a", limit=2)) == 2
    assert len(tracker.history("b")) == 1


def test_history_limit_must_be_positive(broadcaster):
    with pytest.raises(ValueError):
        JobTracker(broadcaster, history_limit=0)


def test_lifecycle_events_are_emitted(broadcaster, tracker):
    subscription = broadcaster.subscribe(GLOBAL_TOPIC)
    job = Job.create(JobType.BUILD, "app")
    job.mark_running()
    tracker.start(job)
    entry = job.append_log("stdout", "compiling")
    tracker.log(job, entry)
    job.finish(JobStatus.COMPLETED)
    tracker.finish(job)

    events = subscription.pending()

    assert [event.name for event in events] == ["build-started", "build-log", "build-completed"]
    assert events[1].payload["job_id"] == job.id
    assert events[1].payload["message"] == "compiling"
    assert events[2].payload["status"] == "completed"


def test_terminal_job_rejects_log_lines():
    job = Job.create(JobType.BUILD, "app")
    job.mark_running()
    job.append_log("info", "one")
    job.finish(JobStatus.CANCELLED)

    assert job.append_log("info", "late") is None
    assert [entry.message for entry in job.logs] == ["one"]
    assert job.finish(JobStatus.FAILED) is False
    assert job.status == JobStatus.CANCELLED
