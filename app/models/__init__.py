from .base import Base
from .user import User, UserRole, UserStatus
from .alert import (
    Alert,
    AlertType,
    AlertCategory,
    AlertSeverity,
    AlertStatus,
    SourceType,
    ThresholdOperator,
    ChannelType,
    RecipientType,
    DeliveryStatus,
    AlertResolutionAction,
    AlertEscalation,
    AlertNotification,
    TERMINAL_STATUSES,
)

__all__ = [
    "Base",
    "User",
    "UserRole",
    "UserStatus",
    "Alert",
    "AlertType",
    "AlertCategory",
    "AlertSeverity",
    "AlertStatus",
    "SourceType",
    "ThresholdOperator",
    "ChannelType",
    "RecipientType",
    "DeliveryStatus",
    "AlertResolutionAction",
    "AlertEscalation",
    "AlertNotification",
    "TERMINAL_STATUSES",
]
