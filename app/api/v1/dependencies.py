from typing import Optional
from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from app.cache.cache_manager import CacheManager
from app.core.config import get_settings
from app.database.connection import get_db
from app.services.alert_service import AlertService
from app.services.notification_service import NotificationService


def get_notification_service(request: Request) -> NotificationService:
    """The NotificationService started in the application lifespan"""
    return request.app.state.notification_service


def get_cache_manager(request: Request) -> Optional[CacheManager]:
    return getattr(request.app.state, "cache", None)


def get_alert_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notification_service: NotificationService = Depends(get_notification_service),
    cache: Optional[CacheManager] = Depends(get_cache_manager),
) -> AlertService:
    """Alert service whose notifications run after the response is sent"""

    def schedule_dispatch(alert_id: int, trigger: str) -> None:
        background_tasks.add_task(notification_service.dispatch_alert_by_id, alert_id, trigger)

    return AlertService(db, dispatch_scheduler=schedule_dispatch, cache=cache, settings=get_settings())
