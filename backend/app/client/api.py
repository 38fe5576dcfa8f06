from __future__ import annotations

from typing import Optional
from uuid import UUID

import httpx

from ..core.errors import EngineUnavailable, InvalidInput, JobNotFound
from ..schemas.jobs import JobSnapshot
from ..services.notifier import ProgressNotifier
from .tracker import JobTracker, UpdateFn


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, list) and detail:
        # FastAPI validation errors
        return "; ".join(str(d.get("msg", d)) for d in detail if isinstance(d, dict)) or str(detail)
    return str(detail or body)


class JobsApiClient:
    """
    Thin HTTP client for the generation API.

    ``fetch_once`` matches the shape JobTracker expects, so a remote caller
    can track a job with ``client.track(job_id)``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        api_prefix: str = "/api",
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_prefix = api_prefix.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "JobsApiClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def submit(self, prompt: str) -> UUID:
        resp = self._client.post(f"{self.api_prefix}/generate-async", json={"prompt": prompt})
        if resp.status_code in (400, 422):
            raise InvalidInput(_detail(resp))
        if resp.status_code == 503:
            raise EngineUnavailable(_detail(resp))
        resp.raise_for_status()
        return UUID(resp.json()["job_id"])

    def fetch_once(self, job_id: UUID) -> JobSnapshot:
        resp = self._client.get(f"{self.api_prefix}/jobs/{job_id}")
        if resp.status_code == 404:
            raise JobNotFound(job_id)
        resp.raise_for_status()
        return JobSnapshot.model_validate(resp.json())

    def track(
        self,
        job_id: UUID,
        *,
        on_update: Optional[UpdateFn] = None,
        notifier: Optional[ProgressNotifier] = None,
        poll_interval: float = 2.0,
    ) -> JobTracker:
        """Build an (unattached) tracker that polls this API, plus push signals if a notifier is given."""
        return JobTracker(
            job_id,
            self.fetch_once,
            subscribe=notifier.subscribe if notifier is not None else None,
            on_update=on_update,
            poll_interval=poll_interval,
        )
