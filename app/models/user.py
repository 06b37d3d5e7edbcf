from sqlalchemy import Column, String, Boolean, DateTime, JSON
from .base import Base
from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    ENVIRONMENT_OFFICER = "environment_officer"
    TRAFFIC_CONTROL = "traffic_control"
    UTILITY_OFFICER = "utility_officer"
    VIEWER = "viewer"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


# Roles allowed to raise and assign alerts
OFFICER_ROLES = (
    UserRole.ADMIN.value,
    UserRole.ENVIRONMENT_OFFICER.value,
    UserRole.TRAFFIC_CONTROL.value,
    UserRole.UTILITY_OFFICER.value,
)


class User(Base):
    """City department staff member who can be notified about alerts"""

    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    role = Column(String(32), default=UserRole.VIEWER.value, nullable=False, index=True)
    status = Column(String(20), default=UserStatus.ACTIVE.value, nullable=False, index=True)
    last_login = Column(DateTime, nullable=True)

    # Districts this user is responsible for, e.g. ["downtown", "harbor"]
    assigned_districts = Column(JSON, nullable=False, default=list)

    # Notification preferences
    notify_email = Column(Boolean, default=True, nullable=False)
    notify_sms = Column(Boolean, default=True, nullable=False)
    notify_in_app = Column(Boolean, default=True, nullable=False)
    notify_reports = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<User(email='{self.email}', role='{self.role}')>"

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @property
    def notification_preferences(self) -> dict:
        return {
            "email": self.notify_email,
            "sms": self.notify_sms,
            "in_app": self.notify_in_app,
            "reports": self.notify_reports,
        }
