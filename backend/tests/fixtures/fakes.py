"""
In-process stand-ins for the generation backend, dispatcher and photo
search, plus a snapshot builder for tracker tests.
"""
from datetime import datetime
import threading
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from app.models.generation_job import JobStage, JobStatus
from app.schemas.jobs import JobProgress, JobSnapshot
from app.schemas.page_spec import NormalizedPhoto

from tests.fixtures.generation_fixtures import valid_payload_json


class FakeBackend:
    """
    Returns a canned completion, or raises ``error``.

    When ``gate`` is given the call blocks until it is set, which lets a test
    observe a job while it sits in the ``generating`` stage.
    """

    def __init__(
        self,
        response: Optional[str] = None,
        *,
        error: Optional[Exception] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.response = valid_payload_json() if response is None else response
        self.error = error
        self.gate = gate
        self.entered = threading.Event()
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def complete(self, system_prompt: str, user_prompt: str, *, timeout: float) -> str:
        with self._lock:
            self.calls.append({"system": system_prompt, "user": user_prompt, "timeout": timeout})
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return self.response


class RecordingDispatcher:
    """Remembers job ids instead of running them."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.dispatched: List[UUID] = []

    def __call__(self, job_id: UUID) -> None:
        if self.error is not None:
            raise self.error
        self.dispatched.append(job_id)


class FakePhotos:
    enabled = True

    def __init__(self, photos: Optional[List[NormalizedPhoto]] = None, error: Optional[Exception] = None) -> None:
        self.photos = photos or []
        self.error = error
        self.queries: List[str] = []

    def search(self, query: str, *, orientation: str = "landscape", per_page: int = 20) -> List[NormalizedPhoto]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.photos[:per_page]


class SilentSubscription:
    """Never signals; forces observers onto their polling path."""

    def __init__(self) -> None:
        self.closed = False
        self._stop = threading.Event()

    def wait(self, timeout: float) -> bool:
        self._stop.wait(timeout)
        return False

    def close(self) -> None:
        self.closed = True
        self._stop.set()


class SilentNotifier:
    def __init__(self) -> None:
        self.subscriptions: List[SilentSubscription] = []

    def publish(self, job_id: UUID) -> None:
        pass

    def subscribe(self, job_id: UUID) -> SilentSubscription:
        sub = SilentSubscription()
        self.subscriptions.append(sub)
        return sub


def make_photo(photo_id: int = 7, width: int = 3000, height: int = 2000) -> NormalizedPhoto:
    return NormalizedPhoto(
        id=photo_id,
        alt="Protein bar on a table",
        width=width,
        height=height,
        src={
            "tiny": f"https://img/{photo_id}/tiny",
            "small": f"https://img/{photo_id}/small",
            "medium": f"https://img/{photo_id}/medium",
            "large": f"https://img/{photo_id}/large",
            "original": f"https://img/{photo_id}/original",
        },
        photographer="Someone",
        photographer_url="https://www.pexels.com/@someone",
        pexels_url=f"https://www.pexels.com/photo/{photo_id}/",
    )


_STATUS_FOR_STAGE = {
    JobStage.INITIALIZING: JobStatus.PENDING,
    JobStage.COMPLETED: JobStatus.COMPLETED,
}


def make_snapshot(
    version: int,
    stage: JobStage = JobStage.GENERATING,
    *,
    status: Optional[JobStatus] = None,
    job_id: Optional[UUID] = None,
    error_message: Optional[str] = None,
) -> JobSnapshot:
    now = datetime.utcnow()
    status = status or _STATUS_FOR_STAGE.get(stage, JobStatus.PROCESSING)
    return JobSnapshot(
        job_id=job_id or uuid4(),
        status=status,
        progress=JobProgress(stage=stage, message=f"{stage.value}...", percent=min(version * 10, 100)),
        error_message=error_message,
        version=version,
        created_at=now,
        updated_at=now,
        completed_at=now if status in (JobStatus.COMPLETED, JobStatus.FAILED) else None,
    )
