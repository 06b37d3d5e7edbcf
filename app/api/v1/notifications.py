from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.v1.auth import require_roles
from app.api.v1.dependencies import get_notification_service
from app.database.connection import get_db
from app.models.user import User, UserRole
from app.schemas.alert import DispatchSummaryResponse, SystemNotificationRequest
from app.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])

require_admin = require_roles(UserRole.ADMIN.value)


@router.post("/test", response_model=DispatchSummaryResponse)
def send_test_notification(
    current_user: User = Depends(require_admin),
    notification_service: NotificationService = Depends(get_notification_service),
    db: Session = Depends(get_db),
):
    """Send a test notification to the first active admin"""
    return notification_service.send_test_notification(db).to_dict()


@router.post("/system", response_model=DispatchSummaryResponse)
def send_system_notification(
    body: SystemNotificationRequest,
    current_user: User = Depends(require_admin),
    notification_service: NotificationService = Depends(get_notification_service),
    db: Session = Depends(get_db),
):
    """Broadcast a maintenance or status message to the target roles"""
    return notification_service.send_system_notification(
        db,
        title=body.title,
        message=body.message,
        level=body.level,
        target_roles=body.target_roles,
    ).to_dict()
