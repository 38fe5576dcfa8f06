from __future__ import annotations

from datetime import datetime, timedelta
import logging

from ..core.celery_app import celery_app
from ..core.config import get_settings
from .engine import JobEngine, get_job_engine

logger = logging.getLogger(__name__)

STALE_JOB_MESSAGE = "Generation did not finish in time. Please try again."


def fail_stale(engine: JobEngine, *, stale_after_seconds: int, now: datetime | None = None) -> int:
    """
    Fail jobs that have not been written for ``stale_after_seconds``.

    Only reachable when the worker running a job died: a live run writes at
    every stage and is bounded by the generation timeout, which is far below
    the stale threshold. Goes through ``engine.finalize`` so a run that does
    finish concurrently still wins or loses atomically.
    """
    cutoff = (now or datetime.utcnow()) - timedelta(seconds=stale_after_seconds)
    failed = 0
    for job_id in engine.store.find_stale(cutoff):
        if engine.finalize(job_id, error=STALE_JOB_MESSAGE):
            failed += 1
            logger.warning(
                "Failed stale generation job",
                extra={"job_id": str(job_id), "step": "reaper"},
            )
    return failed


@celery_app.task(name="app.services.reaper.fail_stale_jobs")
def fail_stale_jobs() -> int:
    """
    Periodic task: finalize generation jobs abandoned by a dead worker.
    """
    settings = get_settings()
    try:
        failed = fail_stale(get_job_engine(), stale_after_seconds=settings.JOB_STALE_AFTER_SECONDS)
    except Exception:
        logger.exception(
            "Error during fail_stale_jobs",
            extra={"step": "reaper"},
        )
        raise

    if failed:
        logger.info(
            "Failed stale generation jobs",
            extra={"step": "reaper", "failed_jobs": failed},
        )
    else:
        logger.info(
            "No stale generation jobs found",
            extra={"step": "reaper"},
        )
    return failed
