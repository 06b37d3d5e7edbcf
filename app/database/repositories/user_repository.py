from datetime import datetime
from typing import Optional, List, Iterable
from sqlalchemy.orm import Session
from app.models.user import User, UserRole, UserStatus
from .base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User model with authentication and notification lookups"""

    def __init__(self, db: Session):
        super().__init__(User, db)

    def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email address"""
        return self.db.query(User).filter(User.email == email).first()

    def create_user(self, email: str, hashed_password: str, full_name: str, **kwargs) -> User:
        """Create a new user with required fields"""
        user_data = {
            "email": email,
            "hashed_password": hashed_password,
            "full_name": full_name,
            **kwargs
        }
        return self.create(user_data)

    def update_last_login(self, user: User) -> User:
        """Update user's last login timestamp"""
        return self.update(user, {"last_login": datetime.utcnow()})

    def get_active_users(self) -> List[User]:
        """Get every active user, ordered by ID"""
        return (
            self.db.query(User)
            .filter(User.status == UserStatus.ACTIVE.value)
            .order_by(User.id)
            .all()
        )

    def get_active_by_roles(self, roles: Iterable[str]) -> List[User]:
        """Get active users holding any of ``roles``"""
        return (
            self.db.query(User)
            .filter(
                User.status == UserStatus.ACTIVE.value,
                User.role.in_(list(roles)),
            )
            .order_by(User.id)
            .all()
        )

    def get_active_admins(self) -> List[User]:
        return self.get_active_by_roles([UserRole.ADMIN.value])

    def get_report_subscribers(self, roles: Iterable[str]) -> List[User]:
        """Active users in ``roles`` that have not opted out of summary reports"""
        return (
            self.db.query(User)
            .filter(
                User.status == UserStatus.ACTIVE.value,
                User.role.in_(list(roles)),
                User.notify_reports.is_(True),
            )
            .order_by(User.id)
            .all()
        )

    def update_preferences(self, user: User, preferences: dict) -> User:
        """Update notification preference flags"""
        fields = {f"notify_{key}": value for key, value in preferences.items() if value is not None}
        return self.update(user, fields)
