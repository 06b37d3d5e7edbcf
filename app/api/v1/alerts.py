"""
Alert API - lifecycle, listing, statistics and notification dispatch for city alerts
"""

from datetime import datetime
from math import ceil
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.v1.auth import get_current_user, require_roles
from app.api.v1.dependencies import get_alert_service, get_notification_service
from app.database.connection import get_db
from app.models.alert import AlertCategory, AlertSeverity, AlertStatus
from app.models.user import OFFICER_ROLES, User, UserRole
from app.schemas import ERROR_RESPONSES
from app.schemas.alert import (
    AcknowledgeRequest,
    AlertCreate,
    AlertListItem,
    AlertResponse,
    AlertStatistics,
    AssignRequest,
    CategoryActiveCount,
    DispatchSummaryResponse,
    EscalateRequest,
    FalsePositiveRequest,
    NearbyAlert,
    PaginatedAlerts,
    RelatedAlertsRequest,
    ResolveRequest,
    SeverityChangeRequest,
)
from app.services.alert_service import AlertService
from app.services.notification_service import NotificationService

router = APIRouter(prefix="/alerts", tags=["alerts"], responses=ERROR_RESPONSES)

require_officer = require_roles(*OFFICER_ROLES)
require_admin = require_roles(UserRole.ADMIN.value)


@router.get("", response_model=PaginatedAlerts)
async def list_alerts(
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Page size"),
    status: Optional[AlertStatus] = Query(None, description="Filter by status"),
    severity: Optional[AlertSeverity] = Query(None, description="Filter by severity"),
    category: Optional[AlertCategory] = Query(None, description="Filter by category"),
    assigned_to: Optional[int] = Query(None, description="Filter by assignee ID"),
    start_date: Optional[datetime] = Query(None, description="Created on or after"),
    end_date: Optional[datetime] = Query(None, description="Created on or before"),
    search: Optional[str] = Query(None, max_length=100, description="Search in title, description and source name"),
    current_user: User = Depends(get_current_user),
    alert_service: AlertService = Depends(get_alert_service),
):
    """Get paginated alerts visible to the current user"""
    filters = {
        "status": status.value if status else None,
        "severity": severity.value if severity else None,
        "category": category.value if category else None,
        "assigned_to": assigned_to,
        "start_date": start_date,
        "end_date": end_date,
        "search": search.strip() if search else None,
    }
    alerts, total, summary = alert_service.list_alerts(current_user, filters, page=page, size=size)
    return {
        "items": alerts,
        "total": total,
        "page": page,
        "size": size,
        "pages": ceil(total / size) if total else 0,
        "summary": summary,
    }


@router.get("/statistics/overview", response_model=AlertStatistics)
async def get_statistics(
    period: str = Query("week", pattern="^(day|week|month|year)$"),
    category: Optional[AlertCategory] = Query(None),
    current_user: User = Depends(get_current_user),
    alert_service: AlertService = Depends(get_alert_service),
):
    """Alert statistics for the period"""
    return alert_service.get_statistics(period, category.value if category else None)


@router.get("/statistics/by-category", response_model=List[CategoryActiveCount])
async def get_active_counts_by_category(
    current_user: User = Depends(get_current_user),
    alert_service: AlertService = Depends(get_alert_service),
):
    """Active alert counts per category"""
    return alert_service.get_active_counts_by_category()


@router.get("/nearby", response_model=List[NearbyAlert])
async def get_nearby_alerts(
    longitude: float = Query(..., ge=-180, le=180),
    latitude: float = Query(..., ge=-90, le=90),
    max_distance: float = Query(1000, gt=0, le=50000, description="Radius in meters"),
    current_user: User = Depends(get_current_user),
    alert_service: AlertService = Depends(get_alert_service),
):
    """Alerts within ``max_distance`` meters of a point, closest first"""
    nearby = alert_service.find_nearby(current_user, longitude, latitude, max_distance)
    return [
        NearbyAlert(**AlertListItem.model_validate(alert).model_dump(), distance_m=round(distance, 1))
        for alert, distance in nearby
    ]


@router.get("/code/{alert_code}", response_model=AlertResponse)
async def get_alert_by_code(
    alert_code: str,
    current_user: User = Depends(get_current_user),
    alert_service: AlertService = Depends(get_alert_service),
):
    return alert_service.get_alert_by_code(alert_code, current_user)


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: int,
    current_user: User = Depends(get_current_user),
    alert_service: AlertService = Depends(get_alert_service),
):
    """Get one alert with its history"""
    return alert_service.get_alert(alert_id, current_user)


@router.post("", response_model=AlertResponse, status_code=status.HTTP_201_CREATED)
async def create_alert(
    alert_data: AlertCreate,
    current_user: User = Depends(require_officer),
    alert_service: AlertService = Depends(get_alert_service),
):
    """Create an alert; notifications are sent after the response"""
    return alert_service.create_alert(alert_data, current_user)


@router.put("/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: int,
    body: AcknowledgeRequest,
    current_user: User = Depends(get_current_user),
    alert_service: AlertService = Depends(get_alert_service),
):
    return alert_service.acknowledge(alert_id, current_user, body.notes)


@router.put("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int,
    body: ResolveRequest,
    current_user: User = Depends(get_current_user),
    alert_service: AlertService = Depends(get_alert_service),
):
    actions = [action.model_dump() for action in body.actions]
    return alert_service.resolve(alert_id, current_user, body.notes, actions)


@router.put("/{alert_id}/escalate", response_model=AlertResponse)
async def escalate_alert(
    alert_id: int,
    body: EscalateRequest,
    current_user: User = Depends(get_current_user),
    alert_service: AlertService = Depends(get_alert_service),
):
    """Raise the escalation level; notifications are sent after the response"""
    return alert_service.escalate(alert_id, current_user, body.reason)


@router.put("/{alert_id}/assign", response_model=AlertResponse)
async def assign_alert(
    alert_id: int,
    body: AssignRequest,
    current_user: User = Depends(require_officer),
    alert_service: AlertService = Depends(get_alert_service),
):
    return alert_service.assign(alert_id, current_user, body.user_ids)


@router.put("/{alert_id}/severity", response_model=AlertResponse)
async def change_alert_severity(
    alert_id: int,
    body: SeverityChangeRequest,
    current_user: User = Depends(require_officer),
    alert_service: AlertService = Depends(get_alert_service),
):
    return alert_service.change_severity(alert_id, current_user, body.severity.value)


@router.put("/{alert_id}/false-positive", response_model=AlertResponse)
async def mark_alert_false_positive(
    alert_id: int,
    body: FalsePositiveRequest,
    current_user: User = Depends(require_officer),
    alert_service: AlertService = Depends(get_alert_service),
):
    return alert_service.mark_false_positive(alert_id, current_user, body.notes)


@router.put("/{alert_id}/related", response_model=AlertResponse)
async def link_related_alerts(
    alert_id: int,
    body: RelatedAlertsRequest,
    current_user: User = Depends(require_officer),
    alert_service: AlertService = Depends(get_alert_service),
):
    return alert_service.link_related_alerts(alert_id, current_user, body.alert_ids)


@router.delete("/{alert_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_alert(
    alert_id: int,
    current_user: User = Depends(require_admin),
    alert_service: AlertService = Depends(get_alert_service),
):
    alert_service.delete_alert(alert_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{alert_id}/notify", response_model=DispatchSummaryResponse)
def notify_alert(
    alert_id: int,
    current_user: User = Depends(require_officer),
    alert_service: AlertService = Depends(get_alert_service),
    notification_service: NotificationService = Depends(get_notification_service),
    db: Session = Depends(get_db),
):
    """Dispatch notifications for an alert now and return the delivery summary"""
    alert = alert_service.get_alert(alert_id, current_user)
    return notification_service.dispatch(db, alert).to_dict()
