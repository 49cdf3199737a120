"""Tests for JobManager."""

from datetime import timedelta
from unittest.mock import MagicMock

from jobs.scheduler import JobManager
from utils.timeutils import utcnow


async def noop():
    pass


def test_schedule_once_clamps_past_times():
    scheduler = MagicMock()
    manager = JobManager(scheduler=scheduler)

    manager.schedule_once(noop, run_at=utcnow() - timedelta(minutes=5), job_id="ai_review_1", args=[1])

    kwargs = scheduler.add_job.call_args.kwargs
    assert kwargs["id"] == "ai_review_1"
    assert kwargs["args"] == [1]
    assert kwargs["replace_existing"] is True
    assert scheduler.add_job.call_args.args[1].run_date >= utcnow() - timedelta(seconds=5)


def test_start_and_stop_once():
    scheduler = MagicMock()
    manager = JobManager(scheduler=scheduler)

    manager.start()
    manager.start()
    assert manager.is_running
    scheduler.start.assert_called_once()

    manager.stop()
    manager.stop()
    assert not manager.is_running
    scheduler.shutdown.assert_called_once_with(wait=False)


def test_recurring_jobs_registered():
    scheduler = MagicMock()
    manager = JobManager(scheduler=scheduler)

    manager.add_interval_job(noop, job_id="cache_sweep", name="Cache sweep", seconds=60)
    manager.add_daily_job(noop, job_id="continuous_note_check", name="Daily note check", hour=9)

    ids = [call.kwargs["id"] for call in scheduler.add_job.call_args_list]
    assert ids == ["cache_sweep", "continuous_note_check"]
