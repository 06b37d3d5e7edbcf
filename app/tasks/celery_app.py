from celery import Celery
from celery.schedules import crontab
from app.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "city_alerts",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.tasks.alert_tasks",
    ],
)

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
    result_expires=3600,  # 1 hour
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "expire-alerts": {
        "task": "app.tasks.alert_tasks.expire_alerts",
        "schedule": settings.expiry_sweep_interval_seconds,
    },
    "daily-summary-report": {
        "task": "app.tasks.alert_tasks.send_summary_report",
        "schedule": crontab(hour=7, minute=0),
        "args": ("daily",),
    },
    "weekly-summary-report": {
        "task": "app.tasks.alert_tasks.send_summary_report",
        "schedule": crontab(hour=7, minute=30, day_of_week="mon"),
        "args": ("weekly",),
    },
}

if __name__ == "__main__":
    celery_app.start()
