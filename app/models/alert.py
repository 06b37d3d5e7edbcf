"""
Alert Model - Stores city alerts with their assignment, escalation and notification history
"""

import secrets
import string
import time
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, Float, DateTime, ForeignKey, JSON, Boolean, Table
)
from sqlalchemy.orm import relationship

from .base import Base


class AlertType(str, Enum):
    """Alert types"""
    THRESHOLD = "threshold"
    ANOMALY = "anomaly"
    SYSTEM = "system"
    MAINTENANCE = "maintenance"
    SECURITY = "security"


class AlertCategory(str, Enum):
    """Alert categories"""
    AIR_QUALITY = "air_quality"
    TRAFFIC = "traffic"
    ENERGY = "energy"
    WASTE = "waste"
    SYSTEM = "system"
    SECURITY = "security"


class AlertSeverity(str, Enum):
    """Alert severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    """Alert lifecycle status"""
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"
    EXPIRED = "expired"


class SourceType(str, Enum):
    SENSOR = "sensor"
    SYSTEM = "system"
    USER = "user"
    ANALYTICS = "analytics"
    EXTERNAL = "external"


class ThresholdOperator(str, Enum):
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "=="
    NEQ = "!="


class ChannelType(str, Enum):
    """Notification delivery channels"""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"
    WEBHOOK = "webhook"


class RecipientType(str, Enum):
    USER = "user"
    EMAIL = "email"
    PHONE = "phone"
    ENDPOINT = "endpoint"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


TERMINAL_STATUSES = frozenset({
    AlertStatus.RESOLVED.value,
    AlertStatus.FALSE_POSITIVE.value,
    AlertStatus.EXPIRED.value,
})

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_alert_id() -> str:
    """Human readable alert identifier: alert_<epoch ms>_<9 base36 chars>"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"alert_{int(time.time() * 1000)}_{suffix}"


alert_assignees = Table(
    "alert_assignees",
    Base.metadata,
    Column("alert_id", Integer, ForeignKey("alerts.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

alert_relations = Table(
    "alert_relations",
    Base.metadata,
    Column("alert_id", Integer, ForeignKey("alerts.id", ondelete="CASCADE"), primary_key=True),
    Column("related_alert_id", Integer, ForeignKey("alerts.id", ondelete="CASCADE"), primary_key=True),
)


class Alert(Base):
    """A detected condition requiring human attention"""

    __tablename__ = "alerts"

    alert_id = Column(String(64), unique=True, index=True, nullable=False, default=generate_alert_id)

    # Classification
    type = Column(String(32), nullable=False, index=True)
    category = Column(String(32), nullable=False, index=True)
    severity = Column(String(16), nullable=False, index=True)

    # Narrative
    title = Column(String(200), nullable=False)
    description = Column(String(1000), nullable=False)

    # Source
    source_type = Column(String(20), nullable=False)
    source_id = Column(String(128), nullable=False)
    source_name = Column(String(255), nullable=True)
    longitude = Column(Float, nullable=True)
    latitude = Column(Float, nullable=True)
    address = Column(String(255), nullable=True)
    district = Column(String(100), nullable=True, index=True)

    # Threshold that was crossed (descriptive only)
    threshold_parameter = Column(String(100), nullable=True)
    threshold_value = Column(Float, nullable=True)
    threshold_actual_value = Column(Float, nullable=True)
    threshold_operator = Column(String(2), nullable=True)
    threshold_unit = Column(String(32), nullable=True)

    # Lifecycle
    status = Column(String(20), nullable=False, default=AlertStatus.ACTIVE.value, index=True)
    priority = Column(Integer, nullable=False, default=5)

    acknowledged_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_notes = Column(String(500), nullable=True)

    resolved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolution_notes = Column(String(1000), nullable=True)

    escalation_level = Column(Integer, nullable=False, default=0)

    auto_resolve = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime, nullable=True, index=True)

    # Additional metadata
    tags = Column(JSON, nullable=False, default=list)
    extensions = Column(JSON, nullable=False, default=dict)
    correlation_id = Column(String(128), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    last_notification_at = Column(DateTime, nullable=True)

    # Relationships
    assigned_to = relationship("User", secondary=alert_assignees, order_by="User.id")
    acknowledged_by_user = relationship("User", foreign_keys=[acknowledged_by])
    resolved_by_user = relationship("User", foreign_keys=[resolved_by])
    resolution_actions = relationship(
        "AlertResolutionAction",
        back_populates="alert",
        order_by="AlertResolutionAction.id",
        cascade="all, delete-orphan",
    )
    escalation_history = relationship(
        "AlertEscalation",
        back_populates="alert",
        order_by="AlertEscalation.id",
        cascade="all, delete-orphan",
    )
    notifications = relationship(
        "AlertNotification",
        back_populates="alert",
        order_by="AlertNotification.id",
        cascade="all, delete-orphan",
    )
    related_alerts = relationship(
        "Alert",
        secondary=alert_relations,
        primaryjoin=lambda: Alert.id == alert_relations.c.alert_id,
        secondaryjoin=lambda: Alert.id == alert_relations.c.related_alert_id,
        order_by=lambda: Alert.id,
    )

    def __repr__(self):
        return f"<Alert(alert_id='{self.alert_id}', severity='{self.severity}', status='{self.status}')>"

    @property
    def source(self) -> dict:
        location = None
        if self.longitude is not None or self.address or self.district:
            location = {
                "coordinates": (
                    [self.longitude, self.latitude] if self.longitude is not None else None
                ),
                "address": self.address,
                "district": self.district,
            }
        return {
            "type": self.source_type,
            "id": self.source_id,
            "name": self.source_name,
            "location": location,
        }

    @property
    def threshold(self) -> Optional[dict]:
        if self.threshold_parameter is None and self.threshold_actual_value is None:
            return None
        return {
            "parameter": self.threshold_parameter,
            "threshold_value": self.threshold_value,
            "actual_value": self.threshold_actual_value,
            "operator": self.threshold_operator,
            "unit": self.threshold_unit,
        }

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration(self) -> Optional[int]:
        """Minutes since creation, or until resolution"""
        if not self.created_at:
            return None
        end_time = self.resolved_at or datetime.utcnow()
        return _minutes_between(self.created_at, end_time)

    @property
    def response_time(self) -> Optional[int]:
        """Minutes from creation to acknowledgement"""
        if not self.acknowledged_at or not self.created_at:
            return None
        return _minutes_between(self.created_at, self.acknowledged_at)

    @property
    def resolution_time(self) -> Optional[int]:
        """Minutes from creation to resolution"""
        if not self.resolved_at or not self.created_at:
            return None
        return _minutes_between(self.created_at, self.resolved_at)


def _minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


class AlertResolutionAction(Base):
    """Action taken while resolving an alert"""

    __tablename__ = "alert_resolution_actions"

    alert_id = Column(Integer, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(255), nullable=False)
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    performed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    notes = Column(String(1000), nullable=True)

    alert = relationship("Alert", back_populates="resolution_actions")


class AlertEscalation(Base):
    """One step up the escalation ladder"""

    __tablename__ = "alert_escalations"

    alert_id = Column(Integer, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    level = Column(Integer, nullable=False)
    escalated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    escalated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reason = Column(String(500), nullable=True)

    alert = relationship("Alert", back_populates="escalation_history")


class AlertNotification(Base):
    """Delivery attempt of one alert through one channel to one recipient"""

    __tablename__ = "alert_notifications"

    alert_id = Column(Integer, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    channel = Column(String(20), nullable=False)
    recipient = Column(String(255), nullable=False)
    recipient_type = Column(String(20), nullable=False, default=RecipientType.USER.value)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    sent_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value, index=True)
    delivery_id = Column(String(255), nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    error_message = Column(String(1000), nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    alert = relationship("Alert", back_populates="notifications")

    def __repr__(self):
        return f"<AlertNotification(channel='{self.channel}', recipient='{self.recipient}', status='{self.delivery_status}')>"
