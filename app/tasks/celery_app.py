from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "visibility_pipeline",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

# Celery Beat schedule: one sweep over every domain with active prompts per day.
celery_app.conf.beat_schedule = {
    "daily-prompt-sweep": {
        "task": "run_all_prompts",
        "schedule": crontab(hour=settings.sweep_hour, minute=settings.sweep_minute),
        "kwargs": {"provider": settings.default_provider},
    },
}

celery_app.conf.include = ["app.tasks.prompt_tasks"]
