"""
Celery application configuration for background tasks.
"""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from ..config import get_settings
from ..utils.logging_config import setup_logging

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "flightgroup_booking_platform",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "flightgroup_booking_platform.tasks.booking_tasks",
        "flightgroup_booking_platform.tasks.notification_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

# Periodic tasks configuration
celery_app.conf.beat_schedule = {
    "expire-bookings": {
        "task": "expire_bookings_task",
        "schedule": float(settings.expiry_sweep_interval_seconds),
    },
}


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Workers log through the same handlers and filters as the API."""
    setup_logging(
        log_level=settings.log_level,
        enable_json_logging=settings.enable_json_logging or settings.environment == "production",
    )
