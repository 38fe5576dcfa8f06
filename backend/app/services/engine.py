from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from uuid import UUID
import json
import logging
import re

from sqlalchemy.exc import SQLAlchemyError

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.errors import (
    EngineUnavailable,
    GenerationError,
    InvalidInput,
    MalformedResponse,
    PersistenceFailed,
)
from ..models.generation_job import JobStage, STAGE_ORDER
from ..schemas.jobs import normalize_prompt
from ..schemas.page_spec import validate_generated_site
from .dispatch import CeleryDispatcher, Dispatcher, RUN_TASK_NAME, ThreadDispatcher
from .job_store import JobStore
from .llm import GenerationBackend
from .notifier import ProgressNotifier, get_notifier
from .photos import PhotoSearchClient, enrich_page_images
from .prompts import SYSTEM_PROMPT, build_generation_prompt

logger = logging.getLogger(__name__)

STAGE_PLAN: dict[JobStage, tuple[int, str]] = {
    JobStage.INITIALIZING: (0, "Preparing AI generation..."),
    JobStage.ANALYZING: (10, "Analyzing your business requirements..."),
    JobStage.GENERATING: (30, "Generating website content with AI..."),
    JobStage.PROCESSING: (60, "Processing AI response..."),
    JobStage.VALIDATING: (70, "Validating website structure..."),
    JobStage.SAVING: (85, "Saving your website..."),
    JobStage.COMPLETED: (100, "Website ready! Redirecting..."),
}

GENERIC_FAILURE = "Generation failed for an unknown reason"
MAX_ERROR_LEN = 500

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_generation_payload(raw: str) -> dict[str, Any]:
    """
    Decode the model's raw text into a JSON object.

    A single surrounding ```json fence is tolerated; anything else that is
    not a JSON object raises MalformedResponse.
    """
    text = (raw or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedResponse("AI returned invalid JSON") from e
    if not isinstance(data, dict):
        raise MalformedResponse("AI returned JSON that is not an object")
    return data


class _RunAborted(Exception):
    """The job left ``processing`` underneath this run (e.g. reaped)."""


@dataclass
class _RunState:
    job_id: UUID
    stage: JobStage = JobStage.INITIALIZING


class JobEngine:
    """
    Owns the lifecycle of generation jobs.

    ``submit`` creates and dispatches; ``run`` executes one job's stages in
    order on whatever worker the dispatcher chose; every path out of ``run``
    ends in ``finalize``, whose guarded write lets exactly one terminal state
    stick.
    """

    def __init__(
        self,
        store: JobStore,
        backend: GenerationBackend,
        notifier: ProgressNotifier,
        *,
        dispatcher: Dispatcher | None = None,
        photos: PhotoSearchClient | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.backend = backend
        self.notifier = notifier
        self.photos = photos
        self.timeout_seconds = timeout_seconds or settings.GENERATION_TIMEOUT_SECONDS
        if dispatcher is None:
            if settings.JOB_DISPATCH_MODE == "thread":
                dispatcher = ThreadDispatcher(self.run)
            else:
                dispatcher = CeleryDispatcher()
        self.dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, prompt: str, *, request_id: str | None = None) -> UUID:
        try:
            prompt = normalize_prompt(prompt)
        except ValueError as e:
            raise InvalidInput(str(e)) from e

        try:
            job = self.store.create_job(prompt)
        except SQLAlchemyError as e:
            logger.exception(
                "Failed to create generation job",
                extra={"request_id": request_id, "step": "create_job"},
            )
            raise EngineUnavailable("Failed to create generation job") from e

        logger.info(
            "Generation job created",
            extra={"job_id": str(job.id), "request_id": request_id, "step": "job_created"},
        )

        try:
            self.dispatcher(job.id)
        except Exception as e:
            logger.exception(
                "Failed to dispatch generation job",
                extra={"job_id": str(job.id), "request_id": request_id, "step": "dispatch"},
            )
            self.finalize(job.id, error="Generation could not be scheduled. Please try again.")
            raise EngineUnavailable("Failed to schedule generation job") from e

        return job.id

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, job_id: UUID) -> None:
        """Execute the pipeline for one job. Never raises."""
        try:
            claimed = self.store.claim(job_id, STAGE_PLAN[JobStage.INITIALIZING][1])
        except SQLAlchemyError:
            logger.exception("Failed to claim generation job", extra={"job_id": str(job_id), "step": "claim"})
            return
        if not claimed:
            logger.info(
                "Generation job already claimed or finished; skipping",
                extra={"job_id": str(job_id), "step": "claim"},
            )
            return
        self._notify(job_id)

        state = _RunState(job_id=job_id)
        logger.info("Starting generation job", extra={"job_id": str(job_id), "step": "start"})

        try:
            self._execute(state)
        except _RunAborted:
            logger.warning(
                "Generation job left processing during run; stopping",
                extra={"job_id": str(job_id), "stage": state.stage.value},
            )
        except GenerationError as e:
            logger.warning(
                "Generation job failed: %s",
                e,
                extra={"job_id": str(job_id), "stage": state.stage.value, "step": e.code},
            )
            self.finalize(job_id, error=str(e))
        except Exception as e:
            logger.exception(
                "Generation job crashed",
                extra={"job_id": str(job_id), "stage": state.stage.value, "step": "failed"},
            )
            self.finalize(job_id, error=f"Unexpected error while {state.stage.value}: {e}")

    def _execute(self, state: _RunState) -> None:
        job = self.store.get_job(state.job_id)
        if job is None:
            raise _RunAborted()

        self._enter(state, JobStage.ANALYZING)
        user_prompt = build_generation_prompt(job.user_prompt)

        self._enter(state, JobStage.GENERATING)
        raw = self.backend.complete(SYSTEM_PROMPT, user_prompt, timeout=self.timeout_seconds)

        self._enter(state, JobStage.PROCESSING)
        payload = parse_generation_payload(raw)
        self._enrich_images(state.job_id, payload)

        self._enter(state, JobStage.VALIDATING)
        site = validate_generated_site(payload)

        self._enter(state, JobStage.SAVING)
        result = site.to_result()
        try:
            slug = self.store.create_page(
                page_spec=result["pageSpec"],
                copy_spec=result["copySpec"],
                theme_tokens=result["themeTokens"],
                job_id=state.job_id,
            )
        except SQLAlchemyError as e:
            raise PersistenceFailed("Failed to save website to database") from e
        result["pageSlug"] = slug

        state.stage = JobStage.COMPLETED
        if self.finalize(state.job_id, result=result, page_slug=slug):
            logger.info(
                "Generation job completed",
                extra={"job_id": str(state.job_id), "page_slug": slug, "step": "completed"},
            )

    def _enter(self, state: _RunState, stage: JobStage) -> None:
        if STAGE_ORDER.index(stage) <= STAGE_ORDER.index(state.stage):
            raise RuntimeError(f"stage {stage.value} cannot follow {state.stage.value}")
        percent, message = STAGE_PLAN[stage]
        if not self.store.record_progress(state.job_id, stage, message, percent):
            raise _RunAborted()
        state.stage = stage
        self._notify(state.job_id)

    def _enrich_images(self, job_id: UUID, payload: dict[str, Any]) -> None:
        if self.photos is None:
            return
        try:
            resolved = enrich_page_images(payload.get("pageSpec"), self.photos, job_id=job_id)
        except Exception:
            logger.exception(
                "Image enrichment failed; continuing without photos",
                extra={"job_id": str(job_id), "step": "enrich_images"},
            )
            return
        if resolved:
            logger.info(
                "Resolved %d stock photos",
                resolved,
                extra={"job_id": str(job_id), "step": "enrich_images"},
            )

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def finalize(
        self,
        job_id: UUID,
        *,
        result: dict[str, Any] | None = None,
        page_slug: str | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Move the job to its terminal state. Returns True only for the call
        that actually performed the transition; repeats are no-ops.
        """
        if error is not None:
            error = error.strip()[:MAX_ERROR_LEN] or GENERIC_FAILURE
        elif result is None:
            raise ValueError("finalize needs either a result or an error")

        try:
            won = self.store.finalize(
                job_id,
                result=result if error is None else None,
                page_slug=page_slug if error is None else None,
                error_message=error,
            )
        except SQLAlchemyError:
            logger.exception(
                "Failed to finalize generation job",
                extra={"job_id": str(job_id), "step": "finalize"},
            )
            return False

        if not won:
            logger.info(
                "Generation job already terminal; finalize ignored",
                extra={"job_id": str(job_id), "step": "finalize"},
            )
            return False

        self._notify(job_id)
        return True

    def _notify(self, job_id: UUID) -> None:
        try:
            self.notifier.publish(job_id)
        except Exception:
            # Observers fall back to polling
            logger.exception("Failed to publish progress signal", extra={"job_id": str(job_id)})


@lru_cache(maxsize=1)
def get_job_engine() -> JobEngine:
    return JobEngine(
        store=JobStore(),
        backend=GenerationBackend(),
        notifier=get_notifier(),
        photos=PhotoSearchClient(),
    )


@celery_app.task(name=RUN_TASK_NAME, bind=True, queue="generation")
def run_generation_job(self, job_id: str):
    get_job_engine().run(UUID(job_id))
