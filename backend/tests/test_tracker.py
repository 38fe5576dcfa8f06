"""
Tests for JobTracker and SnapshotHolder in client/tracker.py
"""
import threading
import time
from uuid import uuid4

import pytest

from app.client.tracker import JobTracker, SnapshotHolder
from app.models.generation_job import JobStage, JobStatus
from app.services.dispatch import ThreadDispatcher
from app.services.progress import ProgressChannel

from tests.fixtures.fakes import FakeBackend, make_snapshot


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class ScriptedFetch:
    """Returns the scripted snapshots in order, then repeats the last one."""

    def __init__(self, snapshots):
        self.snapshots = list(snapshots)
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, job_id):
        with self._lock:
            idx = min(self.calls, len(self.snapshots) - 1)
            self.calls += 1
            return self.snapshots[idx]


class TestSnapshotHolder:
    """Tests for the version-ordered state holder."""

    def test_accepts_only_newer_versions(self):
        holder = SnapshotHolder()
        job_id = uuid4()

        assert holder.offer(make_snapshot(2, job_id=job_id)) is True
        assert holder.offer(make_snapshot(1, job_id=job_id)) is False
        assert holder.offer(make_snapshot(2, job_id=job_id)) is False
        assert holder.offer(make_snapshot(5, job_id=job_id)) is True
        assert holder.latest.version == 5


class TestJobTracker:
    """Tests for polling, push signals and detach."""

    def test_poll_stops_at_terminal(self):
        job_id = uuid4()
        fetch = ScriptedFetch(
            [
                make_snapshot(1, JobStage.INITIALIZING, job_id=job_id),
                make_snapshot(3, JobStage.GENERATING, job_id=job_id),
                make_snapshot(8, JobStage.COMPLETED, job_id=job_id),
            ]
        )
        seen = []
        tracker = JobTracker(job_id, fetch, on_update=lambda s: seen.append(s.version), poll_interval=0.01)

        tracker.attach()
        final = tracker.wait(5)

        assert final.status == JobStatus.COMPLETED
        assert tracker.is_terminal is True
        assert seen == [1, 3, 8]

        calls = fetch.calls
        time.sleep(0.1)
        assert fetch.calls == calls
        tracker.detach()

    def test_stale_and_duplicate_snapshots_are_dropped(self):
        job_id = uuid4()
        fetch = ScriptedFetch(
            [
                make_snapshot(4, job_id=job_id),
                make_snapshot(2, job_id=job_id),
                make_snapshot(4, job_id=job_id),
                make_snapshot(6, JobStage.COMPLETED, job_id=job_id),
            ]
        )
        seen = []
        with JobTracker(job_id, fetch, on_update=lambda s: seen.append(s.version), poll_interval=0.01) as tracker:
            tracker.wait(5)

        assert seen == [4, 6]

    def test_terminal_on_attach_starts_nothing(self, notifier):
        job_id = uuid4()
        fetch = ScriptedFetch([make_snapshot(7, JobStage.COMPLETED, job_id=job_id)])
        seen = []
        tracker = JobTracker(
            job_id,
            fetch,
            subscribe=notifier.subscribe,
            on_update=lambda s: seen.append(s.version),
            poll_interval=0.01,
        )

        tracker.attach()

        assert tracker.wait(0).version == 7
        assert seen == [7]
        assert fetch.calls == 1
        assert notifier.subscriber_count(job_id) == 0
        tracker.detach()

    def test_failed_job_is_terminal(self):
        job_id = uuid4()
        fetch = ScriptedFetch(
            [make_snapshot(5, JobStage.GENERATING, status=JobStatus.FAILED, job_id=job_id, error_message="boom")]
        )
        tracker = JobTracker(job_id, fetch).attach()

        assert tracker.is_terminal is True
        assert tracker.latest.error_message == "boom"
        tracker.detach()

    def test_detach_stops_callbacks(self):
        job_id = uuid4()
        counter = {"version": 0}
        lock = threading.Lock()

        def fetch(_):
            with lock:
                counter["version"] += 1
                return make_snapshot(counter["version"], job_id=job_id)

        seen = []
        tracker = JobTracker(job_id, fetch, on_update=lambda s: seen.append(s.version), poll_interval=0.01)
        tracker.attach()
        assert _wait_for(lambda: len(seen) >= 3)

        tracker.detach()
        delivered = len(seen)
        time.sleep(0.1)

        assert len(seen) == delivered
        assert tracker.is_terminal is False

    def test_detach_from_callback_while_other_producer_fetches(self, notifier):
        job_id = uuid4()
        counter = {"version": 0}
        lock = threading.Lock()

        def fetch(_):
            with lock:
                counter["version"] += 1
                version = counter["version"]
            # Keep the push loop busy alongside the poll loop
            notifier.publish(job_id)
            return make_snapshot(version, job_id=job_id)

        attacher = threading.current_thread()
        detached = threading.Event()
        seen = []

        def on_update(snap):
            seen.append(snap.version)
            if threading.current_thread() is attacher or detached.is_set():
                return
            # The other producer reaches delivery and waits while this sleeps
            time.sleep(0.2)
            tracker.detach()
            detached.set()

        tracker = JobTracker(
            job_id,
            fetch,
            subscribe=notifier.subscribe,
            on_update=on_update,
            poll_interval=0.01,
            signal_wait=0.01,
        )
        tracker.attach()
        try:
            assert detached.wait(3)
            delivered = len(seen)
            assert _wait_for(lambda: notifier.subscriber_count(job_id) == 0)

            fetches = tracker.fetch_count
            time.sleep(0.1)
            assert tracker.fetch_count == fetches
            assert len(seen) == delivered
        finally:
            tracker.detach()

    def test_detach_from_callback_during_attach(self, notifier):
        job_id = uuid4()
        fetch = ScriptedFetch(
            [
                make_snapshot(1, JobStage.INITIALIZING, job_id=job_id),
                make_snapshot(2, JobStage.ANALYZING, job_id=job_id),
            ]
        )
        seen = []

        def on_update(snap):
            seen.append(snap.version)
            tracker.detach()

        tracker = JobTracker(
            job_id,
            fetch,
            subscribe=notifier.subscribe,
            on_update=on_update,
            poll_interval=0.01,
            signal_wait=0.01,
        )
        tracker.attach()
        notifier.publish(job_id)
        time.sleep(0.1)

        assert seen == [1]
        assert fetch.calls == 1
        assert notifier.subscriber_count(job_id) == 0
        tracker.detach()

    def test_push_signal_triggers_fetch(self, notifier):
        job_id = uuid4()
        fetch = ScriptedFetch(
            [
                make_snapshot(1, JobStage.INITIALIZING, job_id=job_id),
                make_snapshot(2, JobStage.ANALYZING, job_id=job_id),
            ]
        )
        tracker = JobTracker(
            job_id,
            fetch,
            subscribe=notifier.subscribe,
            poll_interval=60,
            signal_wait=0.01,
        )
        tracker.attach()
        try:
            assert fetch.calls == 1
            assert notifier.subscriber_count(job_id) == 1

            notifier.publish(job_id)

            assert _wait_for(lambda: fetch.calls >= 2)
            assert _wait_for(lambda: tracker.latest.version == 2)
        finally:
            tracker.detach()

        assert notifier.subscriber_count(job_id) == 0

    def test_fetch_errors_are_recorded(self):
        job_id = uuid4()

        def fetch(_):
            raise ConnectionError("api unreachable")

        tracker = JobTracker(job_id, fetch, poll_interval=0.01)
        tracker.attach()
        try:
            assert isinstance(tracker.error, ConnectionError)
            assert tracker.latest is None
            assert _wait_for(lambda: tracker.fetch_count >= 3)
        finally:
            tracker.detach()

    def test_recovers_after_fetch_error(self):
        job_id = uuid4()
        calls = {"n": 0}

        def fetch(_):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConnectionError("blip")
            return make_snapshot(8, JobStage.COMPLETED, job_id=job_id)

        tracker = JobTracker(job_id, fetch, poll_interval=0.01).attach()

        assert tracker.wait(5).status == JobStatus.COMPLETED
        assert tracker.error is None
        tracker.detach()

    def test_callback_errors_do_not_stop_tracking(self):
        job_id = uuid4()
        fetch = ScriptedFetch(
            [
                make_snapshot(1, JobStage.INITIALIZING, job_id=job_id),
                make_snapshot(8, JobStage.COMPLETED, job_id=job_id),
            ]
        )

        def explode(_):
            raise RuntimeError("ui bug")

        tracker = JobTracker(job_id, fetch, on_update=explode, poll_interval=0.01).attach()

        assert tracker.wait(5).status == JobStatus.COMPLETED
        tracker.detach()

    def test_attach_twice_raises(self):
        job_id = uuid4()
        tracker = JobTracker(job_id, ScriptedFetch([make_snapshot(8, JobStage.COMPLETED, job_id=job_id)]))
        tracker.attach()

        with pytest.raises(RuntimeError):
            tracker.attach()
        tracker.detach()


class TestTrackingALiveJob:
    """JobTracker over the real ProgressChannel and a running engine."""

    def test_tracks_job_to_completion(self, make_engine, store, notifier):
        gate = threading.Event()
        engine = make_engine(FakeBackend(gate=gate))
        dispatcher = ThreadDispatcher(engine.run)
        engine.dispatcher = dispatcher
        channel = ProgressChannel(store, notifier)

        seen = []
        job_id = engine.submit("A landing page for vegan protein bars")
        tracker = JobTracker(
            job_id,
            channel.fetch_once,
            subscribe=notifier.subscribe,
            on_update=seen.append,
            poll_interval=0.05,
            signal_wait=0.01,
        )
        try:
            tracker.attach()
            gate.set()
            final = tracker.wait(10)
        finally:
            gate.set()
            tracker.detach()
            dispatcher.join(10)

        assert final.status == JobStatus.COMPLETED
        assert final.page_slug is not None
        versions = [s.version for s in seen]
        assert versions == sorted(set(versions))
        assert seen[-1].is_terminal
        assert notifier.subscriber_count(job_id) == 0
