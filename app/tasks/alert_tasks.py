import logging
from typing import Any, Dict

from app.cache.cache_manager import CacheManager
from app.cache.redis_client import get_redis_client
from app.core.config import get_settings
from app.core.exceptions import AlertServiceError
from app.database.connection import SessionLocal
from app.services.alert_service import AlertService
from app.services.notification_service import NotificationService
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="app.tasks.alert_tasks.expire_alerts")
def expire_alerts(self) -> Dict[str, Any]:
    """Move open alerts past their expiry time to expired"""
    db = SessionLocal()
    try:
        service = AlertService(db, cache=CacheManager(get_redis_client()))
        expired = service.expire_due_alerts()
    except AlertServiceError as e:
        logger.error(f"Alert expiry sweep failed: {e}")
        raise
    finally:
        db.close()

    if expired:
        logger.info(f"Expired {expired} alerts")
    return {"expired": expired, "status": "success"}


@celery_app.task(bind=True, name="app.tasks.alert_tasks.send_summary_report")
def send_summary_report(self, period: str = "daily") -> Dict[str, Any]:
    """Email the daily or weekly alert summary to report subscribers"""
    db = SessionLocal()
    try:
        with NotificationService.from_settings(get_settings(), SessionLocal) as notification_service:
            summary = notification_service.send_summary_report(db, period)
    except AlertServiceError as e:
        logger.error(f"{period} summary report failed: {e}")
        raise
    finally:
        db.close()

    return {"period": period, **summary.to_dict(), "status": "success"}
