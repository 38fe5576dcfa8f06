# backend/app/services/progress.py
"""
Read side of job progress: snapshots for pollers and a push stream.

``fetch_once`` always reads the store, so it is the recovery path for any
missed push signal. ``subscribe`` is built on it and only ever yields
snapshots with a strictly higher ``version`` than the last one it yielded.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Iterator
from uuid import UUID
import logging

from ..core.config import get_settings
from ..core.errors import JobNotFound
from ..schemas.jobs import JobProgress, JobSnapshot, JobUpdateOut
from .job_store import JobStore
from .notifier import ProgressNotifier, get_notifier

logger = logging.getLogger(__name__)


class ProgressChannel:
    def __init__(
        self,
        store: JobStore,
        notifier: ProgressNotifier,
        *,
        recent_limit: int | None = None,
        poll_interval: float | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.notifier = notifier
        self.recent_limit = recent_limit or settings.RECENT_UPDATES_LIMIT
        self.poll_interval = poll_interval or settings.PROGRESS_POLL_INTERVAL_SECONDS

    def fetch_once(self, job_id: UUID) -> JobSnapshot:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)

        events = self.store.list_events(job_id, limit=self.recent_limit)
        return JobSnapshot(
            job_id=job.id,
            status=job.status,
            progress=JobProgress.model_validate(job.progress),
            result=job.result,
            page_slug=job.page_slug,
            error_message=job.error_message,
            version=job.version,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
            updates=[JobUpdateOut.model_validate(e) for e in events],
        )

    def subscribe(self, job_id: UUID, *, poll_interval: float | None = None) -> Iterator[JobSnapshot]:
        """
        Yield snapshots as the job advances; stop after the terminal one.

        The notifier subscription is opened before the first read so a write
        landing between the read and the subscribe is not missed. When no
        signal arrives within ``poll_interval`` the store is read anyway.
        Closing the generator releases the subscription.
        """
        interval = poll_interval or self.poll_interval
        sub = self.notifier.subscribe(job_id)
        try:
            last: JobSnapshot | None = None
            while True:
                snap = self.fetch_once(job_id)
                if snap.is_newer_than(last):
                    last = snap
                    yield snap
                if last.is_terminal:
                    return
                sub.wait(interval)
        finally:
            sub.close()


@lru_cache(maxsize=1)
def get_progress_channel() -> ProgressChannel:
    return ProgressChannel(JobStore(), get_notifier())
