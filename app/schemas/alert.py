"""
Alert Schemas - Pydantic models for alert-related requests and responses
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from app.models.alert import (
    AlertType,
    AlertCategory,
    AlertSeverity,
    AlertStatus,
    SourceType,
    ThresholdOperator,
)
from app.schemas.base import PaginatedResponse
from app.schemas.user import UserSummary

MAX_EXTENSION_KEYS = 20
MAX_EXTENSION_KEY_LENGTH = 64
_SCALAR_TYPES = (str, int, float, bool, type(None))


def _strip(value):
    return value.strip() if isinstance(value, str) else value


class AlertLocation(BaseModel):
    """Where the source is; coordinates are [longitude, latitude]"""
    coordinates: Optional[List[float]] = None
    address: Optional[str] = Field(None, max_length=255)
    district: Optional[str] = Field(None, max_length=100)

    @validator('coordinates')
    def validate_coordinates(cls, v):
        if v is None:
            return v
        if len(v) != 2:
            raise ValueError('coordinates must be [longitude, latitude]')
        longitude, latitude = v
        if not -180 <= longitude <= 180:
            raise ValueError('longitude must be between -180 and 180')
        if not -90 <= latitude <= 90:
            raise ValueError('latitude must be between -90 and 90')
        return v

    @validator('address', 'district', pre=True)
    def strip_text(cls, v):
        return _strip(v) or None


class AlertSource(BaseModel):
    """What raised the alert"""
    type: SourceType
    id: str = Field(..., min_length=1, max_length=128)
    name: Optional[str] = Field(None, max_length=255)
    location: Optional[AlertLocation] = None


class AlertThreshold(BaseModel):
    """Threshold that was crossed (descriptive only)"""
    parameter: Optional[str] = Field(None, max_length=100)
    threshold_value: Optional[float] = None
    actual_value: Optional[float] = None
    operator: Optional[ThresholdOperator] = None
    unit: Optional[str] = Field(None, max_length=32)


class AlertCreate(BaseModel):
    """Schema for creating an alert"""
    type: AlertType
    category: AlertCategory
    severity: AlertSeverity
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=1000)
    source: AlertSource
    threshold: Optional[AlertThreshold] = None
    assigned_to: List[int] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    auto_resolve: bool = False
    expires_at: Optional[datetime] = None
    correlation_id: Optional[str] = Field(None, max_length=128)
    extensions: Dict[str, Any] = Field(default_factory=dict)

    @validator('title', 'description', pre=True)
    def strip_narrative(cls, v):
        return _strip(v)

    @validator('title')
    def single_line_title(cls, v):
        if "\r" in v or "\n" in v:
            raise ValueError('title must be a single line')
        return v

    @validator('tags')
    def clean_tags(cls, v):
        return [tag.strip() for tag in v if tag and tag.strip()]

    @validator('extensions')
    def validate_extensions(cls, v):
        if len(v) > MAX_EXTENSION_KEYS:
            raise ValueError(f'extensions may hold at most {MAX_EXTENSION_KEYS} keys')
        for key, value in v.items():
            if not key or len(key) > MAX_EXTENSION_KEY_LENGTH:
                raise ValueError(f'extension keys must be 1-{MAX_EXTENSION_KEY_LENGTH} characters')
            if not isinstance(value, _SCALAR_TYPES):
                raise ValueError(f"extension '{key}' must be a string, number, boolean or null")
        return v

    def to_columns(self) -> Dict[str, Any]:
        """Flatten into ``Alert`` column values"""
        location = self.source.location
        coordinates = location.coordinates if location and location.coordinates else [None, None]
        threshold = self.threshold
        return {
            "type": self.type.value,
            "category": self.category.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "source_type": self.source.type.value,
            "source_id": self.source.id,
            "source_name": self.source.name,
            "longitude": coordinates[0],
            "latitude": coordinates[1],
            "address": location.address if location else None,
            "district": location.district if location else None,
            "threshold_parameter": threshold.parameter if threshold else None,
            "threshold_value": threshold.threshold_value if threshold else None,
            "threshold_actual_value": threshold.actual_value if threshold else None,
            "threshold_operator": threshold.operator.value if threshold and threshold.operator else None,
            "threshold_unit": threshold.unit if threshold else None,
            "tags": self.tags,
            "auto_resolve": self.auto_resolve,
            "expires_at": self.expires_at,
            "correlation_id": self.correlation_id,
            "extensions": self.extensions,
        }


class AcknowledgeRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)


class ResolutionActionIn(BaseModel):
    action: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)


class ResolveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)
    actions: List[ResolutionActionIn] = Field(default_factory=list)


class EscalateRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AssignRequest(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)


class SeverityChangeRequest(BaseModel):
    severity: AlertSeverity


class FalsePositiveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


class RelatedAlertsRequest(BaseModel):
    alert_ids: List[int] = Field(..., min_length=1)


class ResolutionActionResponse(BaseModel):
    action: str
    performed_by: Optional[int] = None
    performed_at: datetime
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class EscalationResponse(BaseModel):
    level: int
    escalated_at: datetime
    escalated_by: Optional[int] = None
    reason: Optional[str] = None

    class Config:
        from_attributes = True


class NotificationLogResponse(BaseModel):
    channel: str
    recipient: str
    recipient_type: str
    user_id: Optional[int] = None
    sent_at: datetime
    delivery_status: str
    delivery_id: Optional[str] = None
    delivered_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3

    class Config:
        from_attributes = True


class RelatedAlertSummary(BaseModel):
    id: int
    alert_id: str
    title: str
    severity: AlertSeverity
    status: AlertStatus

    class Config:
        from_attributes = True


class AlertListItem(BaseModel):
    """Alert fields shown in listings"""
    id: int
    alert_id: str
    type: AlertType
    category: AlertCategory
    severity: AlertSeverity
    status: AlertStatus
    priority: int
    title: str
    description: str
    source: AlertSource
    threshold: Optional[AlertThreshold] = None
    escalation_level: int
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AlertResponse(AlertListItem):
    """Full alert document with its history"""
    assigned_to: List[UserSummary] = Field(default_factory=list)
    acknowledged_by: Optional[int] = None
    acknowledged_notes: Optional[str] = None
    resolved_by: Optional[int] = None
    resolution_notes: Optional[str] = None
    resolution_actions: List[ResolutionActionResponse] = Field(default_factory=list)
    escalation_history: List[EscalationResponse] = Field(default_factory=list)
    notifications: List[NotificationLogResponse] = Field(default_factory=list)
    related_alerts: List[RelatedAlertSummary] = Field(default_factory=list)
    auto_resolve: bool = False
    correlation_id: Optional[str] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[int] = None
    last_notification_at: Optional[datetime] = None
    duration: Optional[int] = None
    response_time: Optional[int] = None
    resolution_time: Optional[int] = None


class AlertSummaryCounts(BaseModel):
    total_alerts: int = 0
    active_count: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0


class PaginatedAlerts(PaginatedResponse[AlertListItem]):
    """One page of alerts plus counts over the whole filter"""
    summary: AlertSummaryCounts


class NearbyAlert(AlertListItem):
    distance_m: float


class DispatchDetail(BaseModel):
    user_id: Optional[int] = None
    channel: str
    recipient: str
    status: str
    delivery_id: Optional[str] = None
    error: Optional[str] = None


class DispatchSummaryResponse(BaseModel):
    sent_count: int
    failed_count: int
    details: List[DispatchDetail] = Field(default_factory=list)


class SystemNotificationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    level: str = Field("info", pattern="^(info|warning)$")
    target_roles: List[str] = Field(default_factory=lambda: ["admin"])


class StatisticsOverview(BaseModel):
    total_alerts: int = 0
    active_alerts: int = 0
    acknowledged_alerts: int = 0
    resolved_alerts: int = 0
    critical_alerts: int = 0
    high_alerts: int = 0
    medium_alerts: int = 0
    low_alerts: int = 0
    avg_resolution_time_minutes: Optional[float] = None


class CategoryBreakdownItem(BaseModel):
    category: str
    count: int
    active: int
    critical: int


class DailyTrendItem(BaseModel):
    date: str
    count: int
    critical: int


class AlertStatistics(BaseModel):
    period: str
    category: Optional[str] = None
    since: datetime
    overview: StatisticsOverview
    category_breakdown: List[CategoryBreakdownItem] = Field(default_factory=list)
    daily_trend: List[DailyTrendItem] = Field(default_factory=list)


class CategoryActiveCount(BaseModel):
    category: str
    count: int
    critical_count: int
    high_count: int
