# backend/app/client/tracker.py
"""
Observer-side tracking of one job.

Two producers feed one state holder:

- push: a notifier subscription; every signal triggers a re-fetch
- poll: an unconditional re-fetch every ``poll_interval`` seconds

The holder only accepts snapshots with a higher ``version`` than the one it
has, so duplicates and late, out-of-order fetches are dropped and the
``on_update`` callback sees a strictly advancing sequence. Both producers
stop as soon as a terminal snapshot is accepted.
"""
from __future__ import annotations

from typing import Callable, Optional
from uuid import UUID
import logging
import threading

from ..schemas.jobs import JobSnapshot
from ..services.notifier import Subscription

logger = logging.getLogger(__name__)

FetchFn = Callable[[UUID], JobSnapshot]
SubscribeFn = Callable[[UUID], Subscription]
UpdateFn = Callable[[JobSnapshot], None]


class SnapshotHolder:
    """Last-write-wins by version; never moves backwards."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: Optional[JobSnapshot] = None

    @property
    def latest(self) -> Optional[JobSnapshot]:
        with self._lock:
            return self._latest

    def offer(self, snap: JobSnapshot) -> bool:
        with self._lock:
            if not snap.is_newer_than(self._latest):
                return False
            self._latest = snap
            return True


class JobTracker:
    def __init__(
        self,
        job_id: UUID,
        fetch: FetchFn,
        *,
        subscribe: Optional[SubscribeFn] = None,
        on_update: Optional[UpdateFn] = None,
        poll_interval: float = 2.0,
        signal_wait: float = 0.25,
    ) -> None:
        self.job_id = job_id
        self.poll_interval = poll_interval
        self.signal_wait = signal_wait
        self.error: Optional[Exception] = None
        self.fetch_count = 0

        self._fetch = fetch
        self._subscribe = subscribe
        self._on_update = on_update
        self._holder = SnapshotHolder()

        # Guards delivery so detach() can promise no callback after it returns
        self._lock = threading.RLock()
        self._count_lock = threading.Lock()
        self._stopped = False
        self._attached = False
        self._stop = threading.Event()
        self._done = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def latest(self) -> Optional[JobSnapshot]:
        return self._holder.latest

    @property
    def is_terminal(self) -> bool:
        snap = self._holder.latest
        return snap is not None and snap.is_terminal

    # ------------------------------------------------------------------

    def attach(self) -> "JobTracker":
        if self._attached:
            raise RuntimeError("tracker already attached")
        self._attached = True

        subscription = self._subscribe(self.job_id) if self._subscribe else None
        self._refresh()

        if self.is_terminal or self._stopped:
            if subscription is not None:
                subscription.close()
            return self

        if subscription is not None:
            self._start(self._push_loop, "push", subscription)
        self._start(self._poll_loop, "poll")
        return self

    def detach(self) -> None:
        with self._lock:
            self._stopped = True
        self._stop.set()
        if threading.current_thread() in self._threads:
            # Called from on_update; the other loop is blocked on _lock until
            # the callback returns and exits on its own after that
            return
        for t in self._threads:
            t.join()

    def wait(self, timeout: Optional[float] = None) -> Optional[JobSnapshot]:
        """Block until a terminal snapshot arrives (or timeout); return the latest."""
        self._done.wait(timeout)
        return self._holder.latest

    def __enter__(self) -> "JobTracker":
        return self.attach()

    def __exit__(self, *exc) -> None:
        self.detach()

    # ------------------------------------------------------------------

    def _start(self, target, label: str, *args) -> None:
        t = threading.Thread(
            target=target,
            args=args,
            name=f"job-tracker-{label}-{self.job_id}",
            daemon=True,
        )
        self._threads.append(t)
        t.start()

    def _poll_loop(self) -> None:
        while not self._stop.wait(self.poll_interval):
            if self.is_terminal:
                return
            self._refresh()

    def _push_loop(self, subscription: Subscription) -> None:
        try:
            while not self._stop.is_set():
                if subscription.wait(self.signal_wait) and not self._stop.is_set():
                    self._refresh()
        finally:
            subscription.close()

    def _refresh(self) -> None:
        if self._stop.is_set():
            return
        with self._count_lock:
            self.fetch_count += 1
        try:
            snap = self._fetch(self.job_id)
        except Exception as e:
            # Keep the last good snapshot; the next poll tries again
            self.error = e
            logger.warning(
                "Job status fetch failed: %s",
                e,
                extra={"job_id": str(self.job_id), "step": "tracker_fetch"},
            )
            return
        self._deliver(snap)

    def _deliver(self, snap: JobSnapshot) -> None:
        with self._lock:
            if self._stopped or not self._holder.offer(snap):
                return
            self.error = None
            if self._on_update is not None:
                try:
                    self._on_update(snap)
                except Exception:
                    logger.exception(
                        "Job update callback raised",
                        extra={"job_id": str(self.job_id), "step": "tracker_callback"},
                    )
            if snap.is_terminal:
                self._stop.set()
                self._done.set()
