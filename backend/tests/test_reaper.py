"""
Tests for the stale job reaper in reaper.py
"""
from datetime import datetime, timedelta

from app.models.generation_job import JobStatus
from app.services.reaper import STALE_JOB_MESSAGE, fail_stale


class TestFailStale:
    """Tests for fail_stale."""

    def test_fails_abandoned_jobs_only(self, make_engine, notifier):
        engine = make_engine()
        pending = engine.submit("never picked up")
        running = engine.submit("worker died")
        engine.store.claim(running)
        done = engine.submit("finished")
        engine.run(done)

        sub = notifier.subscribe(running)
        later = datetime.utcnow() + timedelta(hours=1)
        try:
            assert fail_stale(engine, stale_after_seconds=900, now=later) == 2
            assert sub.wait(0) is True
        finally:
            sub.close()

        for job_id in (pending, running):
            job = engine.store.get_job(job_id)
            assert job.status == JobStatus.FAILED
            assert job.error_message == STALE_JOB_MESSAGE
        assert engine.store.get_job(done).status == JobStatus.COMPLETED

    def test_recent_jobs_are_left_alone(self, make_engine):
        engine = make_engine()
        job_id = engine.submit("just submitted")

        assert fail_stale(engine, stale_after_seconds=900) == 0
        assert engine.store.get_job(job_id).status == JobStatus.PENDING

    def test_second_pass_finds_nothing(self, make_engine):
        engine = make_engine()
        engine.submit("abandoned")
        later = datetime.utcnow() + timedelta(hours=1)

        assert fail_stale(engine, stale_after_seconds=900, now=later) == 1
        assert fail_stale(engine, stale_after_seconds=900, now=later) == 0
