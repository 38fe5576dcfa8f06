from __future__ import annotations

from typing import Callable, Protocol
from uuid import UUID
import logging
import threading

logger = logging.getLogger(__name__)

RUN_TASK_NAME = "app.services.engine.run_generation_job"


class Dispatcher(Protocol):
    def __call__(self, job_id: UUID) -> None:
        """Schedule ``run(job_id)`` and return without waiting for it."""


class CeleryDispatcher:
    """Hands the job to a Celery worker on the ``generation`` queue."""

    def __init__(self, celery_app=None) -> None:
        self._celery_app = celery_app

    def __call__(self, job_id: UUID) -> None:
        app = self._celery_app
        if app is None:
            from ..core.celery_app import celery_app as app
        app.send_task(RUN_TASK_NAME, args=[str(job_id)], queue="generation")


class ThreadDispatcher:
    """
    Runs each job on its own daemon thread in this process.

    Meant for local development and tests; jobs in flight are lost if the
    process exits, and the stale-job reaper later fails them.
    """

    def __init__(self, run: Callable[[UUID], None]) -> None:
        self._run = run
        self._lock = threading.Lock()
        self._threads: dict[UUID, threading.Thread] = {}

    def __call__(self, job_id: UUID) -> None:
        thread = threading.Thread(
            target=self._run,
            args=(job_id,),
            name=f"generation-job-{job_id}",
            daemon=True,
        )
        with self._lock:
            self._threads = {k: t for k, t in self._threads.items() if t.is_alive()}
            self._threads[job_id] = thread
            thread.start()

    def join(self, timeout: float | None = None) -> None:
        """Wait for every job started so far (test helper)."""
        with self._lock:
            threads = list(self._threads.values())
        for t in threads:
            t.join(timeout)
