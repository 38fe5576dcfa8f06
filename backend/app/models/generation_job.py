from sqlalchemy import Column, String, Text, JSON, Enum, DateTime, Integer, Index, Uuid
from datetime import datetime
import uuid
import enum
from ..core.db import Base

class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

class JobStage(str, enum.Enum):
    INITIALIZING = "initializing"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    PROCESSING = "processing"
    VALIDATING = "validating"
    SAVING = "saving"
    COMPLETED = "completed"

# Fixed pipeline order; a job only ever moves forward through it.
STAGE_ORDER = tuple(JobStage)

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class GenerationJob(Base):
    __tablename__ = "generation_jobs"
    __table_args__ = (
        Index("ix_generation_jobs_status_updated_at", "status", "updated_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_prompt = Column(Text, nullable=False)
    status = Column(
        Enum(JobStatus, name="job_status", native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
        default=JobStatus.PENDING,
    )
    progress = Column(JSON, nullable=False)  # {stage, message, percent}
    result = Column(JSON, nullable=True)
    page_slug = Column(String(64), nullable=True)
    error_message = Column(String, nullable=True)
    # Bumped on every write; observers compare it to discard stale snapshots
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
