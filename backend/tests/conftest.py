"""
Shared pytest fixtures.

Settings are read once and cached, so the environment is pinned here before
any ``app`` module is imported: no Redis, no Celery broker, no live APIs.
Each test gets its own file-backed SQLite database so worker threads can
write to it concurrently.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PROGRESS_NOTIFIER"] = "memory"
os.environ["JOB_DISPATCH_MODE"] = "thread"
os.environ["PEXELS_API_KEY"] = ""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.db import Base
from app.models import generation_job, job_update, page  # noqa: F401
from app.services.engine import JobEngine
from app.services.job_store import JobStore
from app.services.notifier import InMemoryNotifier

from tests.fixtures.fakes import FakeBackend, RecordingDispatcher


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'jobs.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def make_engine(store, notifier):
    """
    Build a JobEngine over the test store. Jobs are only recorded by the
    default dispatcher; tests call ``engine.run`` themselves or swap in a
    ThreadDispatcher.
    """

    def _make(backend=None, *, dispatcher=None, photos=None, notifier_=None, timeout_seconds=5.0):
        return JobEngine(
            store,
            backend or FakeBackend(),
            notifier_ or notifier,
            dispatcher=dispatcher or RecordingDispatcher(),
            photos=photos,
            timeout_seconds=timeout_seconds,
        )

    return _make
