"""Celery tasks for Sharpline.

This module configures Celery and registers all periodic tasks.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import get_settings
from app.config.logging import configure_logging

settings = get_settings()
configure_logging(settings.log_level)

# Create Celery application
celery_app = Celery(
    "sharpline",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.tasks.auto_picks",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task behavior
    task_track_started=True,
    task_time_limit=600,  # 10 minute hard limit
    task_soft_time_limit=540,  # 9 minute soft limit
    # Result expiration
    result_expires=3600,  # 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Scheduled picks - every 30 minutes at :10 and :40
    "generate-auto-picks": {
        "task": "app.tasks.auto_picks.generate_auto_picks",
        "schedule": crontab(minute="10,40"),
        "options": {"expires": 1740},
    },
}
