from sqlalchemy import Column, Integer, String, Boolean, JSON, DateTime, ForeignKey, Uuid
from datetime import datetime

from ..core.db import Base

class Page(Base):
    __tablename__ = "pages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(64), nullable=False, unique=True, index=True)
    page_spec = Column(JSON, nullable=False)
    copy_spec = Column(JSON, nullable=False)
    theme_tokens = Column(JSON, nullable=True)
    published = Column(Boolean, nullable=False, default=True)
    job_id = Column(Uuid, ForeignKey("generation_jobs.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
