import os

from celery import Celery

# Importing config loads .env for BOTH API + Celery worker
from app.core.config import settings
from app.core.celery_settings import celery_overrides


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v and v.strip() else default


BROKER_URL = _env("CELERY_BROKER_URL") or settings.redis_url

RESULT_BACKEND = _env("CELERY_RESULT_BACKEND") or BROKER_URL

# IMPORTANT: the variable name MUST be `celery_app`
celery_app = Celery(
    "compute_dispatch",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
)

# Ensure tasks are discovered
celery_app.autodiscover_tasks(["app.worker"])

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_track_started=True,
    task_ignore_result=True,
    enable_utc=True,
    timezone="UTC",
)
celery_app.conf.update(**celery_overrides())

__all__ = ["celery_app"]
