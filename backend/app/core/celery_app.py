from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "site_generator",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={"app.services.engine.run_generation_job": {"queue": "generation"}},
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    imports=("app.services.engine", "app.services.reaper"),
    beat_schedule={
        # Fail jobs whose worker died before reaching a terminal state
        "fail-stale-generation-jobs": {
            "task": "app.services.reaper.fail_stale_jobs",
            "schedule": crontab(minute="*/5"),
        },
    },
)
