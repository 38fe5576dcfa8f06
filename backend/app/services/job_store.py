# backend/app/services/job_store.py
"""
Durable job records and their progress log.

All state transitions are single guarded UPDATE statements so that two
writers can never both win:

- ``claim``           pending    -> processing
- ``record_progress`` processing -> processing (new stage), + event append
- ``finalize``        non-terminal -> completed | failed

The event for a transition is inserted in the same transaction as the
snapshot write, so the log never contains an event whose snapshot write lost.
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator
from uuid import UUID
import logging
import secrets

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..core.db import SessionLocal
from ..models.generation_job import GenerationJob, JobStage, JobStatus, TERMINAL_STATUSES
from ..models.job_update import JobUpdate
from ..models.page import Page

logger = logging.getLogger(__name__)

INITIAL_MESSAGE = "Preparing AI generation..."
COMPLETED_MESSAGE = "Website ready! Redirecting..."
MAX_SLUG_ATTEMPTS = 3


def progress_payload(stage: JobStage, message: str, percent: int) -> dict[str, Any]:
    return {"stage": stage.value, "message": message, "percent": percent}


def new_page_slug() -> str:
    return f"page-{secrets.token_hex(6)}"


class JobStore:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Basic record operations
    # ------------------------------------------------------------------

    def create_job(self, user_prompt: str) -> GenerationJob:
        with self._session() as db:
            now = datetime.utcnow()
            job = GenerationJob(
                user_prompt=user_prompt,
                status=JobStatus.PENDING,
                progress=progress_payload(JobStage.INITIALIZING, INITIAL_MESSAGE, 0),
                version=1,
                created_at=now,
                updated_at=now,
            )
            db.add(job)
            db.commit()
            db.refresh(job)
            return job

    def get_job(self, job_id: UUID) -> GenerationJob | None:
        with self._session() as db:
            return db.get(GenerationJob, job_id)

    def update_job(self, job_id: UUID, **fields: Any) -> bool:
        """Unconditional partial update. Returns False when the job does not exist."""
        with self._session() as db:
            now = datetime.utcnow()
            res = db.execute(
                update(GenerationJob)
                .where(GenerationJob.id == job_id)
                .values(updated_at=now, version=GenerationJob.version + 1, **fields)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return res.rowcount == 1

    def append_event(
        self,
        job_id: UUID,
        *,
        stage: JobStage,
        message: str,
        percent: int,
    ) -> JobUpdate:
        with self._session() as db:
            evt = self._add_event(db, job_id, stage, message, percent, datetime.utcnow())
            db.commit()
            db.refresh(evt)
            return evt

    def list_events(self, job_id: UUID, limit: int = 10) -> list[JobUpdate]:
        """Most recent first."""
        with self._session() as db:
            rows = db.execute(
                select(JobUpdate)
                .where(JobUpdate.job_id == job_id)
                .order_by(JobUpdate.created_at.desc(), JobUpdate.id.desc())
                .limit(limit)
            ).scalars()
            return list(rows)

    # ------------------------------------------------------------------
    # Guarded transitions
    # ------------------------------------------------------------------

    def claim(self, job_id: UUID, message: str = INITIAL_MESSAGE) -> bool:
        """Move a pending job to processing. Only one caller can ever succeed."""
        with self._session() as db:
            now = datetime.utcnow()
            res = db.execute(
                update(GenerationJob)
                .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.PENDING)
                .values(
                    status=JobStatus.PROCESSING,
                    progress=progress_payload(JobStage.INITIALIZING, message, 0),
                    updated_at=now,
                    version=GenerationJob.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                db.rollback()
                return False
            self._add_event(db, job_id, JobStage.INITIALIZING, message, 0, now)
            db.commit()
            return True

    def record_progress(self, job_id: UUID, stage: JobStage, message: str, percent: int) -> bool:
        """
        Overwrite the progress snapshot and append the matching event.

        No-op (returns False) once the job has left ``processing``.
        """
        with self._session() as db:
            now = datetime.utcnow()
            res = db.execute(
                update(GenerationJob)
                .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.PROCESSING)
                .values(
                    progress=progress_payload(stage, message, percent),
                    updated_at=now,
                    version=GenerationJob.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                db.rollback()
                return False
            self._add_event(db, job_id, stage, message, percent, now)
            db.commit()
            return True

    def finalize(
        self,
        job_id: UUID,
        *,
        result: dict[str, Any] | None = None,
        page_slug: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """
        First terminal write wins; later calls return False and change nothing.

        Success also writes the final ``completed/100`` progress and event.
        """
        succeeded = error_message is None
        with self._session() as db:
            now = datetime.utcnow()
            values: dict[str, Any] = {
                "status": JobStatus.COMPLETED if succeeded else JobStatus.FAILED,
                "completed_at": now,
                "updated_at": now,
                "version": GenerationJob.version + 1,
            }
            if succeeded:
                values["result"] = result
                values["page_slug"] = page_slug
                values["progress"] = progress_payload(JobStage.COMPLETED, COMPLETED_MESSAGE, 100)
            else:
                values["error_message"] = error_message

            res = db.execute(
                update(GenerationJob)
                .where(GenerationJob.id == job_id, GenerationJob.status.notin_(TERMINAL_STATUSES))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                db.rollback()
                return False
            if succeeded:
                self._add_event(db, job_id, JobStage.COMPLETED, COMPLETED_MESSAGE, 100, now)
            db.commit()
            return True

    def find_stale(self, cutoff: datetime, limit: int = 100) -> list[UUID]:
        """Non-terminal jobs whose last write is older than ``cutoff``."""
        with self._session() as db:
            rows = db.execute(
                select(GenerationJob.id)
                .where(
                    GenerationJob.status.notin_(TERMINAL_STATUSES),
                    GenerationJob.updated_at < cutoff,
                )
                .order_by(GenerationJob.updated_at.asc())
                .limit(limit)
            ).scalars()
            return list(rows)

    # ------------------------------------------------------------------
    # Published pages
    # ------------------------------------------------------------------

    def create_page(
        self,
        *,
        page_spec: dict[str, Any],
        copy_spec: dict[str, Any],
        theme_tokens: dict[str, Any] | None,
        job_id: UUID | None = None,
    ) -> str:
        """Insert a published page under a fresh slug and return the slug."""
        for attempt in range(1, MAX_SLUG_ATTEMPTS + 1):
            slug = new_page_slug()
            with self._session() as db:
                try:
                    db.add(
                        Page(
                            slug=slug,
                            page_spec=page_spec,
                            copy_spec=copy_spec,
                            theme_tokens=theme_tokens,
                            published=True,
                            job_id=job_id,
                        )
                    )
                    db.commit()
                    return slug
                except IntegrityError:
                    db.rollback()
                    if attempt == MAX_SLUG_ATTEMPTS:
                        raise
                    logger.warning(
                        "Page slug collision, regenerating",
                        extra={"job_id": str(job_id), "page_slug": slug},
                    )
        raise RuntimeError("unreachable")

    def get_page(self, slug: str) -> Page | None:
        with self._session() as db:
            return db.execute(
                select(Page).where(Page.slug == slug, Page.published.is_(True))
            ).scalar_one_or_none()

    def list_pages(self, limit: int = 50, offset: int = 0) -> list[Page]:
        with self._session() as db:
            rows = db.execute(
                select(Page)
                .where(Page.published.is_(True))
                .order_by(Page.created_at.desc(), Page.id.desc())
                .offset(offset)
                .limit(limit)
            ).scalars()
            return list(rows)

    @staticmethod
    def _add_event(
        db: Session,
        job_id: UUID,
        stage: JobStage,
        message: str,
        percent: int,
        created_at: datetime,
    ) -> JobUpdate:
        evt = JobUpdate(
            job_id=job_id,
            stage=stage.value,
            message=message,
            percent=percent,
            created_at=created_at,
        )
        db.add(evt)
        return evt
