"""
Recipient resolution for alert notifications.

Decides which staff members hear about an alert from its category, district
and severity. ``resolve_recipients`` is pure; ``RecipientResolver`` loads the
candidate users and falls back to administrators if the store misbehaves.
"""

import logging
from typing import Dict, FrozenSet, Iterable, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import StoreUnavailable
from app.database.repositories.user_repository import UserRepository
from app.models.alert import AlertSeverity
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)

_ADMIN = UserRole.ADMIN.value

CATEGORY_ROLES: Dict[str, FrozenSet[str]] = {
    "air_quality": frozenset({_ADMIN, UserRole.ENVIRONMENT_OFFICER.value}),
    "traffic": frozenset({_ADMIN, UserRole.TRAFFIC_CONTROL.value}),
    "energy": frozenset({_ADMIN, UserRole.UTILITY_OFFICER.value}),
    "waste": frozenset({_ADMIN, UserRole.UTILITY_OFFICER.value}),
    "water": frozenset({_ADMIN, UserRole.UTILITY_OFFICER.value}),
    "system": frozenset({_ADMIN}),
}


def _admins(users: Iterable[User]) -> List[User]:
    return [user for user in users if user.role == _ADMIN]


def resolve_recipients(alert, active_users: Iterable[User]) -> List[User]:
    """
    Select the users to notify about ``alert`` from ``active_users``.

    The criteria are unioned: users whose role handles the alert's category,
    users assigned to the alert's district, and every admin when the alert is
    critical. With no category mapping and no district, all admins are used.

    Returns:
        Users deduplicated by id, ordered by id
    """
    users = [user for user in active_users if user.is_active]
    selected: Dict[int, User] = {}
    matched_criterion = False

    roles = CATEGORY_ROLES.get(alert.category)
    if roles:
        matched_criterion = True
        for user in users:
            if user.role in roles:
                selected[user.id] = user

    if alert.district:
        matched_criterion = True
        for user in users:
            if alert.district in (user.assigned_districts or []):
                selected[user.id] = user

    if alert.severity == AlertSeverity.CRITICAL.value:
        for user in _admins(users):
            selected[user.id] = user

    if not matched_criterion:
        for user in _admins(users):
            selected[user.id] = user

    return [selected[user_id] for user_id in sorted(selected)]


class RecipientResolver:
    """Loads candidate users and applies ``resolve_recipients``"""

    def __init__(self, db: Session):
        self.user_repo = UserRepository(db)

    def resolve(self, alert) -> List[User]:
        try:
            active_users = self.user_repo.get_active_users()
        except SQLAlchemyError as e:
            logger.error(f"Recipient lookup failed for alert {alert.alert_id}, falling back to admins: {e}")
            return self._fallback_admins()

        recipients = resolve_recipients(alert, active_users)
        logger.debug(f"Resolved {len(recipients)} recipients for alert {alert.alert_id}")
        return recipients

    def _fallback_admins(self) -> List[User]:
        try:
            self.user_repo.db.rollback()
            return self.user_repo.get_active_admins()
        except SQLAlchemyError as e:
            logger.error(f"Admin fallback lookup failed: {e}")
            raise StoreUnavailable("Could not load notification recipients") from e
