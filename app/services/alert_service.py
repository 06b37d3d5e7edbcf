"""
Alert Service - orchestrates the alert lifecycle on top of the store

The rules for each state change live in ``alert_lifecycle``; this service
loads the alert, checks who is acting, applies the resulting transition
atomically and then schedules notifications and cache invalidation.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.cache.cache_manager import CacheManager, statistics_key
from app.core.config import Settings, get_settings
from app.core.exceptions import InvalidTransition, NotFound, PermissionDenied, StoreUnavailable, ValidationError
from app.database.repositories.alert_repository import AlertRepository
from app.database.repositories.user_repository import UserRepository
from app.models.alert import Alert, AlertCategory, AlertStatus
from app.models.user import OFFICER_ROLES, User, UserRole
from app.schemas.alert import AlertCreate
from app.services import alert_lifecycle as lifecycle

logger = logging.getLogger(__name__)

# alert id, trigger
DispatchScheduler = Callable[[int, str], None]

STATISTICS_PERIODS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}

ROLE_CATEGORY = {
    UserRole.ENVIRONMENT_OFFICER.value: AlertCategory.AIR_QUALITY.value,
    UserRole.UTILITY_OFFICER.value: AlertCategory.ENERGY.value,
    UserRole.TRAFFIC_CONTROL.value: AlertCategory.TRAFFIC.value,
}
VIEWER_VISIBLE_STATUSES = (AlertStatus.ACKNOWLEDGED.value, AlertStatus.RESOLVED.value)


def visibility_filters(actor: User) -> Dict[str, Any]:
    """Listing restrictions implied by the actor's role"""
    if actor.role == UserRole.VIEWER.value:
        return {"statuses": list(VIEWER_VISIBLE_STATUSES)}
    category = ROLE_CATEGORY.get(actor.role)
    if category:
        return {"category": category}
    return {}


class AlertService:
    """Service for the alert lifecycle"""

    def __init__(
        self,
        db: Session,
        dispatch_scheduler: Optional[DispatchScheduler] = None,
        cache: Optional[CacheManager] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.alert_repo = AlertRepository(db)
        self.user_repo = UserRepository(db)
        self.dispatch_scheduler = dispatch_scheduler
        self.cache = cache
        self.settings = settings or get_settings()

    # Helpers

    @staticmethod
    def _require_officer(actor: User, action: str) -> None:
        if actor.role not in OFFICER_ROLES:
            raise PermissionDenied(f"Role '{actor.role}' may not {action}")

    def _load(self, alert_id: int) -> Alert:
        try:
            alert = self.alert_repo.get(alert_id)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not load alert") from e
        if alert is None:
            raise NotFound(f"Alert {alert_id} not found", details={"alert_id": alert_id})
        return alert

    def _load_users(self, user_ids: List[int], field: str) -> List[User]:
        unique_ids = sorted(set(user_ids))
        try:
            users = self.user_repo.get_many(unique_ids)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not load users") from e
        missing = sorted(set(unique_ids) - {user.id for user in users})
        if missing:
            raise ValidationError(
                f"Unknown user ids: {missing}",
                field_errors={field: f"unknown user ids {missing}"},
            )
        return users

    def _schedule_dispatch(self, alert: Alert, trigger: str) -> None:
        if self.dispatch_scheduler is None:
            return
        try:
            self.dispatch_scheduler(alert.id, trigger)
        except Exception as e:
            # The transition is already committed
            logger.error(f"Could not schedule '{trigger}' notifications for alert {alert.alert_id}: {e}")

    def _invalidate_statistics(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_statistics()

    def _apply(self, alert: Alert, transition: lifecycle.Transition, rebuild: Callable[[lifecycle.AlertSnapshot], Any]) -> Alert:
        """
        Commit ``transition`` or explain why it lost.

        ``rebuild`` re-runs the lifecycle rule against the refreshed alert so a
        concurrent writer's change surfaces as the precise InvalidTransition.
        """
        try:
            applied = self.alert_repo.apply_transition(alert, transition)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not update alert") from e

        if not applied:
            try:
                self.db.refresh(alert)
            except SQLAlchemyError as e:
                raise StoreUnavailable("Could not reload alert") from e
            rebuild(lifecycle.AlertSnapshot.from_alert(alert))
            raise InvalidTransition(
                "Alert was modified concurrently, retry the operation",
                current_status=alert.status,
            )

        self._invalidate_statistics()
        return alert

    # Creation and reads

    def create_alert(self, data: Union[AlertCreate, Dict[str, Any]], actor: User) -> Alert:
        """Validate and store a new active alert, then schedule its notifications"""
        self._require_officer(actor, "create alerts")

        if not isinstance(data, AlertCreate):
            try:
                data = AlertCreate.model_validate(data)
            except PydanticValidationError as e:
                field_errors = {
                    ".".join(str(part) for part in error["loc"]): error["msg"] for error in e.errors()
                }
                raise ValidationError("Invalid alert data", field_errors=field_errors) from e

        assignees = self._load_users(data.assigned_to, "assigned_to") if data.assigned_to else []

        columns = data.to_columns()
        columns.update({
            "status": AlertStatus.ACTIVE.value,
            "priority": lifecycle.derive_priority(columns["severity"]),
            "escalation_level": 0,
            "created_by": actor.id,
        })

        try:
            alert = self.alert_repo.create_alert(columns, assignees)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not create alert") from e

        logger.info(f"Alert {alert.alert_id} created by user {actor.id} ({alert.category}/{alert.severity})")
        self._invalidate_statistics()
        self._schedule_dispatch(alert, "created")
        return alert

    def get_alert(self, alert_id: int, actor: User) -> Alert:
        alert = self._load(alert_id)
        self._check_visible(alert, actor)
        return alert

    def get_alert_by_code(self, code: str, actor: User) -> Alert:
        """Look an alert up by its human-readable ``alert_<ms>_<suffix>`` identifier"""
        try:
            alert = self.alert_repo.get_by_alert_id(code)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not load alert") from e
        if alert is None:
            raise NotFound(f"Alert {code} not found", details={"alert_id": code})
        self._check_visible(alert, actor)
        return alert

    def _check_visible(self, alert: Alert, actor: User) -> None:
        if actor.role == UserRole.VIEWER.value and alert.status not in VIEWER_VISIBLE_STATUSES:
            raise PermissionDenied("Access denied to this alert")

    def list_alerts(
        self,
        actor: User,
        filters: Optional[Dict[str, Any]] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Alert], int, Dict[str, int]]:
        """
        Get one page of alerts visible to ``actor``

        Returns:
            (alerts, total, summary counts)
        """
        effective = {key: value for key, value in (filters or {}).items() if value is not None}
        restriction = visibility_filters(actor)
        if "category" in restriction and effective.get("category") not in (None, restriction["category"]):
            return [], 0, self._empty_summary()
        effective.update(restriction)

        try:
            alerts, total = self.alert_repo.list_alerts(effective, skip=(page - 1) * size, limit=size)
            summary = self.alert_repo.summary_counts(effective)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not list alerts") from e
        return alerts, total, summary

    @staticmethod
    def _empty_summary() -> Dict[str, int]:
        return {
            "total_alerts": 0,
            "active_count": 0,
            "critical_count": 0,
            "high_count": 0,
            "medium_count": 0,
            "low_count": 0,
        }

    # Lifecycle transitions

    def acknowledge(self, alert_id: int, actor: User, notes: Optional[str] = None) -> Alert:
        alert = self._load(alert_id)
        now = datetime.utcnow()
        rule = lambda snapshot: lifecycle.acknowledge(snapshot, actor.id, notes, now)
        self._apply(alert, rule(lifecycle.AlertSnapshot.from_alert(alert)), rule)
        logger.info(f"Alert {alert.alert_id} acknowledged by user {actor.id}")
        return alert

    def resolve(
        self,
        alert_id: int,
        actor: User,
        notes: Optional[str] = None,
        actions: Optional[List[Dict[str, Any]]] = None,
    ) -> Alert:
        alert = self._load(alert_id)
        now = datetime.utcnow()
        rule = lambda snapshot: lifecycle.resolve(snapshot, actor.id, notes, actions, now)
        self._apply(alert, rule(lifecycle.AlertSnapshot.from_alert(alert)), rule)
        logger.info(f"Alert {alert.alert_id} resolved by user {actor.id}")
        return alert

    def escalate(self, alert_id: int, actor: User, reason: Optional[str] = None) -> Alert:
        alert = self._load(alert_id)
        now = datetime.utcnow()
        max_level = self.settings.max_escalation_level
        rule = lambda snapshot: lifecycle.escalate(snapshot, actor.id, reason, now, max_level)
        self._apply(alert, rule(lifecycle.AlertSnapshot.from_alert(alert)), rule)
        logger.info(f"Alert {alert.alert_id} escalated to level {alert.escalation_level} by user {actor.id}")
        self._schedule_dispatch(alert, "escalated")
        return alert

    def assign(self, alert_id: int, actor: User, user_ids: List[int]) -> Alert:
        """Replace the assignees; legal in any status"""
        self._require_officer(actor, "assign alerts")
        if not user_ids:
            raise ValidationError("At least one user id is required", field_errors={"user_ids": "empty"})
        alert = self._load(alert_id)
        users = self._load_users(user_ids, "user_ids")
        try:
            self.alert_repo.replace_assignees(alert, users)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not assign alert") from e
        logger.info(f"Alert {alert.alert_id} assigned to {[user.id for user in users]} by user {actor.id}")
        return alert

    def change_severity(self, alert_id: int, actor: User, severity: str) -> Alert:
        self._require_officer(actor, "reclassify alerts")
        alert = self._load(alert_id)
        previous = alert.severity
        rule = lambda snapshot: lifecycle.change_severity(snapshot, severity)
        self._apply(alert, rule(lifecycle.AlertSnapshot.from_alert(alert)), rule)
        logger.info(f"Alert {alert.alert_id} severity changed {previous} -> {severity} by user {actor.id}")
        if self.settings.notify_on_severity_upgrade and lifecycle.is_severity_upgrade(previous, severity):
            self._schedule_dispatch(alert, "severity_upgraded")
        return alert

    def mark_false_positive(self, alert_id: int, actor: User, notes: Optional[str] = None) -> Alert:
        self._require_officer(actor, "mark false positives")
        alert = self._load(alert_id)
        rule = lambda snapshot: lifecycle.mark_false_positive(snapshot, notes)
        self._apply(alert, rule(lifecycle.AlertSnapshot.from_alert(alert)), rule)
        logger.info(f"Alert {alert.alert_id} marked as false positive by user {actor.id}")
        return alert

    def expire_due_alerts(self, now: Optional[datetime] = None) -> int:
        """Move every open alert past its ``expires_at`` to expired"""
        now = now or datetime.utcnow()
        try:
            due = self.alert_repo.find_expirable(now)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not load expirable alerts") from e

        expired = 0
        for alert in due:
            try:
                self._apply(alert, lifecycle.expire(lifecycle.AlertSnapshot.from_alert(alert)), lifecycle.expire)
            except InvalidTransition as e:
                logger.info(f"Skipping expiry of alert {alert.alert_id}: {e.message}")
                continue
            expired += 1
            logger.info(f"Alert {alert.alert_id} expired")
        return expired

    # Relations and deletion

    def link_related_alerts(self, alert_id: int, actor: User, related_ids: List[int]) -> Alert:
        self._require_officer(actor, "link alerts")
        alert = self._load(alert_id)
        if alert.id in related_ids:
            raise ValidationError("An alert cannot be related to itself", field_errors={"alert_ids": "self link"})

        unique_ids = sorted(set(related_ids))
        try:
            others = self.alert_repo.get_many(unique_ids)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not load related alerts") from e
        missing = sorted(set(unique_ids) - {other.id for other in others})
        if missing:
            raise ValidationError(
                f"Unknown alert ids: {missing}",
                field_errors={"alert_ids": f"unknown alert ids {missing}"},
            )

        try:
            self.alert_repo.link_related(alert, others)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not link alerts") from e
        return alert

    def delete_alert(self, alert_id: int, actor: User) -> None:
        if actor.role != UserRole.ADMIN.value:
            raise PermissionDenied("Only admins can delete alerts")
        alert = self._load(alert_id)
        try:
            self.alert_repo.delete_alert(alert)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not delete alert") from e
        self._invalidate_statistics()
        logger.info(f"Alert {alert.alert_id} deleted by user {actor.id}")

    # Statistics and geo queries

    def get_statistics(self, period: str = "week", category: Optional[str] = None) -> Dict[str, Any]:
        """Aggregate statistics for the period, served from the cache when possible"""
        if period not in STATISTICS_PERIODS:
            raise ValidationError(
                f"Unknown period '{period}'",
                field_errors={"period": f"one of {sorted(STATISTICS_PERIODS)}"},
            )

        key = statistics_key(period, category)
        if self.cache is not None:
            cached = self.cache.get_json(key)
            if cached is not None:
                return cached

        since = datetime.utcnow() - STATISTICS_PERIODS[period]
        try:
            stats = self.alert_repo.statistics(since, category)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not compute statistics") from e

        stats.update({"period": period, "category": category, "since": since.isoformat()})
        if self.cache is not None:
            self.cache.set_json(key, stats, ttl=self.settings.statistics_cache_ttl)
        return stats

    def get_active_counts_by_category(self) -> List[Dict[str, Any]]:
        try:
            return self.alert_repo.active_count_by_category()
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not count alerts") from e

    def find_nearby(
        self,
        actor: User,
        longitude: float,
        latitude: float,
        max_distance: float = 1000,
    ) -> List[Tuple[Alert, float]]:
        if not -180 <= longitude <= 180 or not -90 <= latitude <= 90:
            raise ValidationError("Coordinates out of range", field_errors={"coordinates": "out of range"})
        try:
            nearby = self.alert_repo.find_nearby(longitude, latitude, max_distance)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not search nearby alerts") from e
        if actor.role == UserRole.VIEWER.value:
            nearby = [(alert, distance) for alert, distance in nearby if alert.status in VIEWER_VISIBLE_STATUSES]
        return nearby
