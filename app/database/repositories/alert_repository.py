import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func, or_, true
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from app.models.alert import (
    Alert,
    AlertEscalation,
    AlertNotification,
    AlertResolutionAction,
    AlertStatus,
    AlertSeverity,
    alert_assignees,
    alert_relations,
)
from app.models.user import User
from app.services.alert_lifecycle import OPEN_STATUSES, Transition
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000
METERS_PER_DEGREE = 111_320


def haversine_distance(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Great-circle distance in meters"""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def _longitude_window(longitude: float, lon_delta: float):
    """Longitude filter for a bounding box, split in two when it crosses the antimeridian"""
    if lon_delta >= 180:
        return true()
    low, high = longitude - lon_delta, longitude + lon_delta
    if low < -180:
        return or_(Alert.longitude >= low + 360, Alert.longitude <= high)
    if high > 180:
        return or_(Alert.longitude >= low, Alert.longitude <= high - 360)
    return Alert.longitude.between(low, high)


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


class AlertRepository(BaseRepository[Alert]):
    """Repository for Alert documents and their history collections"""

    def __init__(self, db: Session):
        super().__init__(Alert, db)

    def create_alert(self, alert_data: Dict[str, Any], assignees: Optional[List[User]] = None) -> Alert:
        """Insert a new alert with its initial assignees"""
        try:
            alert = Alert(**alert_data)
            alert.assigned_to = list(assignees or [])
            self.db.add(alert)
            self.db.commit()
            self.db.refresh(alert)
            return alert
        except SQLAlchemyError as e:
            logger.error(f"Error creating alert: {e}")
            self.db.rollback()
            raise

    def get_by_alert_id(self, alert_id: str) -> Optional[Alert]:
        return self.db.query(Alert).filter(Alert.alert_id == alert_id).first()

    def _filtered_query(self, filters: Dict[str, Any]) -> Query:
        query = self.db.query(Alert)

        statuses = filters.get("statuses")
        if statuses:
            query = query.filter(Alert.status.in_(statuses))
        if filters.get("status"):
            query = query.filter(Alert.status == filters["status"])
        if filters.get("severity"):
            query = query.filter(Alert.severity == filters["severity"])
        if filters.get("category"):
            query = query.filter(Alert.category == filters["category"])
        if filters.get("assigned_to"):
            query = query.filter(
                Alert.id.in_(
                    self.db.query(alert_assignees.c.alert_id).filter(
                        alert_assignees.c.user_id == filters["assigned_to"]
                    )
                )
            )
        if filters.get("start_date"):
            query = query.filter(Alert.created_at >= filters["start_date"])
        if filters.get("end_date"):
            query = query.filter(Alert.created_at <= filters["end_date"])
        if filters.get("search"):
            term = f"%{filters['search']}%"
            query = query.filter(
                or_(
                    Alert.title.ilike(term),
                    Alert.description.ilike(term),
                    Alert.source_name.ilike(term),
                )
            )
        return query

    def list_alerts(
        self,
        filters: Dict[str, Any],
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Alert], int]:
        """Get one page of alerts matching ``filters``, newest first, with the total count"""
        query = self._filtered_query(filters)
        total = query.count()
        alerts = (
            query.order_by(Alert.created_at.desc(), Alert.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return alerts, total

    def summary_counts(self, filters: Dict[str, Any]) -> Dict[str, int]:
        """Status and severity counts over the alerts matching ``filters``"""
        subquery = self._filtered_query(filters).with_entities(Alert.id).subquery()
        row = (
            self.db.query(
                func.count(Alert.id),
                _count_where(Alert.status == AlertStatus.ACTIVE.value),
                _count_where(Alert.severity == AlertSeverity.CRITICAL.value),
                _count_where(Alert.severity == AlertSeverity.HIGH.value),
                _count_where(Alert.severity == AlertSeverity.MEDIUM.value),
                _count_where(Alert.severity == AlertSeverity.LOW.value),
            )
            .filter(Alert.id.in_(self.db.query(subquery.c.id)))
            .one()
        )
        return {
            "total_alerts": int(row[0]),
            "active_count": int(row[1]),
            "critical_count": int(row[2]),
            "high_count": int(row[3]),
            "medium_count": int(row[4]),
            "low_count": int(row[5]),
        }

    def apply_transition(self, alert: Alert, transition: Transition) -> bool:
        """
        Apply a lifecycle transition as one guarded write.

        The UPDATE only matches while the alert is still in one of the
        transition's expected statuses (and matches its guard columns), so a
        concurrent writer that got there first leaves zero affected rows.

        Returns:
            True if the transition was committed, False if the alert changed
            underneath us and nothing was written
        """
        conditions = [Alert.id == alert.id, Alert.status.in_(transition.expected_statuses)]
        for column, value in transition.guard.items():
            conditions.append(getattr(Alert, column) == value)

        values = dict(transition.changes)
        values["updated_at"] = datetime.utcnow()

        try:
            updated = (
                self.db.query(Alert)
                .filter(*conditions)
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                self.db.rollback()
                return False

            for action in transition.resolution_actions:
                self.db.add(AlertResolutionAction(alert_id=alert.id, **action))
            if transition.escalation:
                self.db.add(AlertEscalation(alert_id=alert.id, **transition.escalation))

            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error applying '{transition.event}' to alert {alert.id}: {e}")
            self.db.rollback()
            raise

        self.db.refresh(alert)
        return True

    def append_notifications(self, alert_id: int, entries: List[Dict[str, Any]]) -> int:
        """Append delivery log entries for one dispatch run in a single transaction"""
        if not entries:
            return 0
        try:
            self.db.add_all([AlertNotification(alert_id=alert_id, **entry) for entry in entries])
            self.db.query(Alert).filter(Alert.id == alert_id).update(
                {"last_notification_at": datetime.utcnow()},
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error appending notifications to alert {alert_id}: {e}")
            self.db.rollback()
            raise
        return len(entries)

    def replace_assignees(self, alert: Alert, users: List[User]) -> Alert:
        try:
            alert.assigned_to = list(users)
            alert.updated_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(alert)
            return alert
        except SQLAlchemyError as e:
            logger.error(f"Error assigning alert {alert.id}: {e}")
            self.db.rollback()
            raise

    def link_related(self, alert: Alert, others: List[Alert]) -> Alert:
        """Add ``others`` to the related alerts, keeping existing links"""
        try:
            existing = {related.id for related in alert.related_alerts}
            for other in others:
                if other.id not in existing:
                    alert.related_alerts.append(other)
            self.db.commit()
            self.db.refresh(alert)
            return alert
        except SQLAlchemyError as e:
            logger.error(f"Error linking alerts to {alert.id}: {e}")
            self.db.rollback()
            raise

    def delete_alert(self, alert: Alert) -> None:
        """Physically delete an alert, its history rows and links in both directions"""
        try:
            self.db.execute(
                alert_relations.delete().where(
                    or_(
                        alert_relations.c.alert_id == alert.id,
                        alert_relations.c.related_alert_id == alert.id,
                    )
                )
            )
            self.db.expire(alert, ["related_alerts"])
            self.db.delete(alert)
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting alert {alert.id}: {e}")
            self.db.rollback()
            raise

    def find_expirable(self, now: datetime) -> List[Alert]:
        """Open alerts whose expiry time has passed"""
        return (
            self.db.query(Alert)
            .filter(
                Alert.status.in_(OPEN_STATUSES),
                Alert.expires_at.isnot(None),
                Alert.expires_at <= now,
            )
            .order_by(Alert.id)
            .all()
        )

    def find_nearby(
        self,
        longitude: float,
        latitude: float,
        max_distance: float = 1000,
        limit: int = 50,
    ) -> List[Tuple[Alert, float]]:
        """Alerts within ``max_distance`` meters, closest first"""
        lat_delta = max_distance / METERS_PER_DEGREE
        cos_lat = max(math.cos(math.radians(latitude)), 1e-6)
        lon_delta = max_distance / (METERS_PER_DEGREE * cos_lat)

        candidates = (
            self.db.query(Alert)
            .filter(
                Alert.longitude.isnot(None),
                Alert.latitude.isnot(None),
                Alert.latitude.between(latitude - lat_delta, latitude + lat_delta),
                _longitude_window(longitude, lon_delta),
            )
            .all()
        )

        nearby = []
        for alert in candidates:
            distance = haversine_distance(longitude, latitude, alert.longitude, alert.latitude)
            if distance <= max_distance:
                nearby.append((alert, distance))
        nearby.sort(key=lambda item: item[1])
        return nearby[:limit]

    def active_count_by_category(self) -> List[Dict[str, Any]]:
        rows = (
            self.db.query(
                Alert.category,
                func.count(Alert.id),
                _count_where(Alert.severity == AlertSeverity.CRITICAL.value),
                _count_where(Alert.severity == AlertSeverity.HIGH.value),
            )
            .filter(Alert.status == AlertStatus.ACTIVE.value)
            .group_by(Alert.category)
            .order_by(Alert.category)
            .all()
        )
        return [
            {
                "category": category,
                "count": int(count),
                "critical_count": int(critical),
                "high_count": int(high),
            }
            for category, count, critical, high in rows
        ]

    def statistics(self, since: datetime, category: Optional[str] = None) -> Dict[str, Any]:
        """Overview, category breakdown and daily trend of alerts created since ``since``"""
        base_filter = [Alert.created_at >= since]
        if category:
            base_filter.append(Alert.category == category)

        row = (
            self.db.query(
                func.count(Alert.id),
                _count_where(Alert.status == AlertStatus.ACTIVE.value),
                _count_where(Alert.status == AlertStatus.ACKNOWLEDGED.value),
                _count_where(Alert.status == AlertStatus.RESOLVED.value),
                _count_where(Alert.severity == AlertSeverity.CRITICAL.value),
                _count_where(Alert.severity == AlertSeverity.HIGH.value),
                _count_where(Alert.severity == AlertSeverity.MEDIUM.value),
                _count_where(Alert.severity == AlertSeverity.LOW.value),
            )
            .filter(*base_filter)
            .one()
        )

        # Averaged in Python to stay portable across SQLite and PostgreSQL
        resolved_pairs = (
            self.db.query(Alert.created_at, Alert.resolved_at)
            .filter(*base_filter, Alert.resolved_at.isnot(None))
            .all()
        )
        avg_resolution_minutes = None
        if resolved_pairs:
            total_seconds = sum(
                (resolved_at - created_at).total_seconds() for created_at, resolved_at in resolved_pairs
            )
            avg_resolution_minutes = round(total_seconds / len(resolved_pairs) / 60, 2)

        category_rows = (
            self.db.query(
                Alert.category,
                func.count(Alert.id),
                _count_where(Alert.status == AlertStatus.ACTIVE.value),
                _count_where(Alert.severity == AlertSeverity.CRITICAL.value),
            )
            .filter(*base_filter)
            .group_by(Alert.category)
            .order_by(func.count(Alert.id).desc(), Alert.category)
            .all()
        )

        day = func.date(Alert.created_at)
        trend_rows = (
            self.db.query(
                day,
                func.count(Alert.id),
                _count_where(Alert.severity == AlertSeverity.CRITICAL.value),
            )
            .filter(*base_filter)
            .group_by(day)
            .order_by(day)
            .all()
        )

        return {
            "overview": {
                "total_alerts": int(row[0]),
                "active_alerts": int(row[1]),
                "acknowledged_alerts": int(row[2]),
                "resolved_alerts": int(row[3]),
                "critical_alerts": int(row[4]),
                "high_alerts": int(row[5]),
                "medium_alerts": int(row[6]),
                "low_alerts": int(row[7]),
                "avg_resolution_time_minutes": avg_resolution_minutes,
            },
            "category_breakdown": [
                {"category": name, "count": int(count), "active": int(active), "critical": int(critical)}
                for name, count, active, critical in category_rows
            ],
            "daily_trend": [
                {"date": str(date), "count": int(count), "critical": int(critical)}
                for date, count, critical in trend_rows
            ],
        }

    def severity_summary(self, since: datetime) -> Dict[str, int]:
        """Alert count per severity created since ``since``"""
        rows = (
            self.db.query(Alert.severity, func.count(Alert.id))
            .filter(Alert.created_at >= since)
            .group_by(Alert.severity)
            .all()
        )
        return {severity: int(count) for severity, count in rows}
