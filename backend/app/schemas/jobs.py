# backend/app/schemas/jobs.py
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.generation_job import JobStage, JobStatus, TERMINAL_STATUSES

MAX_PROMPT_LEN = 2000


def normalize_prompt(v: Any) -> str:
    """Shared by the HTTP schema and JobEngine.submit so both reject the same input."""
    if not isinstance(v, str):
        raise ValueError("prompt must be a string")
    v = v.strip()
    if not v:
        raise ValueError("prompt must not be empty")
    if len(v) > MAX_PROMPT_LEN:
        raise ValueError(
            f"prompt is too long; maximum length is {MAX_PROMPT_LEN} characters"
        )
    return v


class GenerateRequest(BaseModel):
    prompt: str

    @field_validator("prompt", mode="before")
    @classmethod
    def validate_prompt(cls, v: Any) -> str:
        return normalize_prompt(v)


class JobCreatedOut(BaseModel):
    job_id: UUID
    status: JobStatus = JobStatus.PENDING
    message: str = "Generation started! Use the job ID to track progress."


class JobProgress(BaseModel):
    stage: JobStage
    message: str
    percent: int = Field(ge=0, le=100)


class JobUpdateOut(BaseModel):
    id: int
    stage: JobStage
    message: str
    percent: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class JobSnapshot(BaseModel):
    """Observable state of one job at one point in time."""

    job_id: UUID
    status: JobStatus
    progress: JobProgress
    result: dict | None = None
    page_slug: str | None = None
    error_message: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    # Most recent first
    updates: list[JobUpdateOut] = []

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_newer_than(self, other: "JobSnapshot | None") -> bool:
        if other is None:
            return True
        return self.version > other.version


class PageOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page_spec: dict = Field(alias="pageSpec")
    copy_spec: dict = Field(alias="copySpec")
    theme_tokens: dict | None = Field(default=None, alias="themeTokens")


class PageSummaryOut(BaseModel):
    slug: str
    title: str | None = None
    job_id: UUID | None = None
    created_at: datetime
