from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Uuid
from datetime import datetime

from ..core.db import Base

class JobUpdate(Base):
    """Append-only progress log entry; never updated or deleted by the pipeline."""

    __tablename__ = "job_updates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Uuid,
                    ForeignKey("generation_jobs.id"),
                    index=True,
                    nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    stage = Column(String(32), nullable=False)   # "analyzing", "generating", …
    message = Column(String, nullable=False)     # short human-readable summary
    percent = Column(Integer, nullable=False)
