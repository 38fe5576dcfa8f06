from uuid import UUID, uuid4
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ..core.errors import EngineUnavailable, InvalidInput, JobNotFound
from ..schemas.jobs import GenerateRequest, JobCreatedOut, JobSnapshot
from ..services.engine import JobEngine, get_job_engine
from ..services.progress import ProgressChannel, get_progress_channel

router = APIRouter(tags=["jobs"])

logger = logging.getLogger(__name__)


@router.post("/generate-async", response_model=JobCreatedOut, status_code=202)
def create_generation_job(
    payload: GenerateRequest,
    engine: JobEngine = Depends(get_job_engine),
):
    # Correlation ID so the job can be traced end-to-end in logs
    request_id = str(uuid4())

    logger.info(
        "Creating generation job",
        extra={"job_id": None, "request_id": request_id, "step": "create_generation_job"},
    )

    try:
        job_id = engine.submit(payload.prompt, request_id=request_id)
    except InvalidInput as e:
        raise HTTPException(status_code=422, detail=str(e))
    except EngineUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    return JobCreatedOut(job_id=job_id)


@router.get("/jobs/{job_id}", response_model=JobSnapshot)
def get_generation_job(
    job_id: UUID,
    channel: ProgressChannel = Depends(get_progress_channel),
):
    try:
        return channel.fetch_once(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")


@router.get("/jobs/{job_id}/events")
def stream_generation_job(
    job_id: UUID,
    channel: ProgressChannel = Depends(get_progress_channel),
):
    """
    Server-sent events: one ``data:`` frame per new snapshot, closing after
    the terminal one. Clients that drop can reconnect or fall back to
    GET /jobs/{job_id}; both read the same durable state.
    """
    # Resolve 404 before committing to a streaming response
    try:
        channel.fetch_once(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")

    def event_stream():
        try:
            for snap in channel.subscribe(job_id):
                yield f"id: {snap.version}\nevent: snapshot\ndata: {snap.model_dump_json()}\n\n"
        except JobNotFound:
            yield "event: error\ndata: {\"detail\": \"Job not found\"}\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
