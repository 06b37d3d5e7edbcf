import pytest
from datetime import datetime, timedelta
from sqlalchemy.orm import Session

from app.cache.cache_manager import CacheManager, statistics_key
from app.core.exceptions import (
    EscalationLimitReached,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from app.models.alert import Alert, AlertEscalation
from app.models.user import UserRole
from app.services.alert_service import AlertService


class FakeRedis:
    """Just enough of the redis client for CacheManager"""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value.encode("utf-8")
        return True

    def scan_iter(self, match=None):
        prefix = match.rstrip("*")
        return [key for key in list(self.store) if key.startswith(prefix)]

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.store.pop(key, None) is not None
        return removed


class RecordingScheduler:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def __call__(self, alert_id: int, trigger: str) -> None:
        if self.fail:
            raise RuntimeError("task queue unavailable")
        self.calls.append((alert_id, trigger))


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def service(db: Session, scheduler) -> AlertService:
    return AlertService(db, dispatch_scheduler=scheduler)


class TestCreateAlert:

    def test_traffic_high_alert_is_active_with_priority_8(self, service, admin, alert_payload, scheduler):
        alert = service.create_alert(alert_payload(), admin)

        assert alert.status == "active"
        assert alert.priority == 8
        assert alert.escalation_level == 0
        assert alert.alert_id.startswith("alert_")
        assert alert.district == "downtown"
        assert alert.longitude == -73.98 and alert.latitude == 40.75
        assert alert.threshold["actual_value"] == 3.2
        assert alert.created_by == admin.id
        assert scheduler.calls == [(alert.id, "created")]

    def test_title_and_description_are_stripped(self, service, admin, alert_payload):
        alert = service.create_alert(alert_payload(title="  Smog  ", description="  PM2.5 high "), admin)
        assert alert.title == "Smog"
        assert alert.description == "PM2.5 high"

    @pytest.mark.parametrize("overrides", [
        {"severity": "extreme"},
        {"category": "weather"},
        {"title": ""},
        {"description": "x" * 1001},
        {"source": {"type": "sensor"}},
        {"source": {"type": "sensor", "id": "s1", "location": {"coordinates": [200, 10]}}},
        {"extensions": {"nested": {"not": "allowed"}}},
        {"extensions": {f"k{i}": i for i in range(21)}},
    ])
    def test_invalid_input_is_a_validation_error(self, service, admin, alert_payload, overrides):
        with pytest.raises(ValidationError):
            service.create_alert(alert_payload(**overrides), admin)

    def test_unknown_assignee_is_a_validation_error(self, service, admin, alert_payload, db):
        with pytest.raises(ValidationError) as exc_info:
            service.create_alert(alert_payload(assigned_to=[admin.id, 999]), admin)
        assert "999" in exc_info.value.message
        assert db.query(Alert).count() == 0

    def test_viewer_cannot_create(self, service, make_user, alert_payload):
        viewer = make_user(UserRole.VIEWER.value)
        with pytest.raises(PermissionDenied):
            service.create_alert(alert_payload(), viewer)

    def test_scheduler_failure_does_not_fail_creation(self, db, admin, alert_payload):
        service = AlertService(db, dispatch_scheduler=RecordingScheduler(fail=True))
        alert = service.create_alert(alert_payload(), admin)
        assert db.query(Alert).filter(Alert.id == alert.id).count() == 1


class TestTransitions:

    def test_acknowledge_then_acknowledge_again(self, service, make_alert, admin):
        alert = make_alert()

        acknowledged = service.acknowledge(alert.id, admin, notes="looking into it")
        assert acknowledged.status == "acknowledged"
        assert acknowledged.acknowledged_by == admin.id
        assert acknowledged.acknowledged_at is not None
        assert acknowledged.response_time is not None

        with pytest.raises(InvalidTransition) as exc_info:
            service.acknowledge(alert.id, admin)
        assert exc_info.value.message == "Alert is already acknowledged"

    def test_acknowledged_at_is_never_cleared(self, service, make_alert, admin):
        alert = make_alert()
        service.acknowledge(alert.id, admin)
        stamp = alert.acknowledged_at

        resolved = service.resolve(alert.id, admin)
        assert resolved.acknowledged_at == stamp

    def test_resolve_records_actions(self, service, make_alert, admin, db):
        alert = make_alert()

        resolved = service.resolve(
            alert.id,
            admin,
            notes="cleared",
            actions=[{"action": "Reset signal timing"}, {"action": "Notified transit", "notes": "bus 12"}],
        )

        assert resolved.status == "resolved"
        assert resolved.resolved_by == admin.id
        assert resolved.resolution_notes == "cleared"
        assert [a.action for a in resolved.resolution_actions] == ["Reset signal timing", "Notified transit"]
        assert resolved.resolution_time is not None

        with pytest.raises(InvalidTransition) as exc_info:
            service.resolve(alert.id, admin)
        assert exc_info.value.message == "Alert is already resolved"

    def test_escalate_adds_exactly_one_level_and_history_row(self, service, make_alert, admin, db, scheduler):
        alert = make_alert(severity="medium")

        escalated = service.escalate(alert.id, admin, reason="no response")
        assert escalated.escalation_level == 1
        assert escalated.priority == 7
        assert db.query(AlertEscalation).filter(AlertEscalation.alert_id == alert.id).count() == 1

        service.acknowledge(alert.id, admin)
        escalated = service.escalate(alert.id, admin)
        assert escalated.escalation_level == 2
        assert [row.level for row in escalated.escalation_history] == [1, 2]
        assert (alert.id, "escalated") in scheduler.calls

    def test_escalate_resolved_alert_fails(self, service, make_alert, admin):
        alert = make_alert()
        service.resolve(alert.id, admin)

        with pytest.raises(InvalidTransition):
            service.escalate(alert.id, admin)

    def test_escalation_limit(self, db, make_alert, admin):
        service = AlertService(db)
        service.settings = service.settings.model_copy(update={"max_escalation_level": 2})
        alert = make_alert(severity="low")

        service.escalate(alert.id, admin)
        service.escalate(alert.id, admin)
        with pytest.raises(EscalationLimitReached):
            service.escalate(alert.id, admin)
        assert alert.escalation_level == 2

    def test_severity_upgrade_schedules_dispatch(self, service, make_alert, admin, scheduler):
        alert = make_alert(severity="low")
        scheduler.calls.clear()

        changed = service.change_severity(alert.id, admin, "critical")
        assert changed.severity == "critical"
        assert changed.priority == 10
        assert scheduler.calls == [(alert.id, "severity_upgraded")]

        service.change_severity(alert.id, admin, "medium")
        assert scheduler.calls == [(alert.id, "severity_upgraded")]

    def test_false_positive(self, service, make_alert, admin):
        alert = make_alert()
        marked = service.mark_false_positive(alert.id, admin, notes="maintenance test")

        assert marked.status == "false_positive"
        assert marked.resolution_notes == "maintenance test"
        assert marked.resolved_at is None

        with pytest.raises(InvalidTransition):
            service.resolve(alert.id, admin)

    def test_missing_alert(self, service, admin):
        with pytest.raises(NotFound):
            service.acknowledge(12345, admin)


class TestConcurrency:

    def test_racing_acknowledgements_have_one_winner(self, session_factory, make_alert, admin):
        alert = make_alert()

        first_session = session_factory()
        second_session = session_factory()
        try:
            first = AlertService(first_session)
            second = AlertService(second_session)
            first_actor = first_session.merge(admin)
            second_actor = second_session.merge(admin)

            # Both load the alert while it is still active
            first.alert_repo.get(alert.id)
            second.alert_repo.get(alert.id)

            winner = second.acknowledge(alert.id, second_actor)
            assert winner.status == "acknowledged"

            with pytest.raises(InvalidTransition) as exc_info:
                first.acknowledge(alert.id, first_actor)
            assert exc_info.value.current_status == "acknowledged"
        finally:
            first_session.close()
            second_session.close()


class TestAssignmentAndRelations:

    def test_assign_replaces_assignees_in_any_status(self, service, make_alert, make_user, admin):
        officer = make_user(UserRole.TRAFFIC_CONTROL.value)
        other = make_user(UserRole.TRAFFIC_CONTROL.value)
        alert = make_alert(assigned_to=[officer.id])
        service.resolve(alert.id, admin)

        assigned = service.assign(alert.id, admin, [other.id, admin.id])
        assert [user.id for user in assigned.assigned_to] == sorted([other.id, admin.id])

    def test_assign_requires_known_users(self, service, make_alert, admin):
        alert = make_alert()
        with pytest.raises(ValidationError):
            service.assign(alert.id, admin, [404])
        with pytest.raises(ValidationError):
            service.assign(alert.id, admin, [])

    def test_link_related(self, service, make_alert, admin):
        first = make_alert()
        second = make_alert(title="Second incident")

        linked = service.link_related_alerts(first.id, admin, [second.id])
        assert [related.id for related in linked.related_alerts] == [second.id]

        with pytest.raises(ValidationError):
            service.link_related_alerts(first.id, admin, [first.id])
        with pytest.raises(ValidationError):
            service.link_related_alerts(first.id, admin, [999])

    def test_only_admin_deletes(self, service, make_alert, make_user, admin, db):
        officer = make_user(UserRole.TRAFFIC_CONTROL.value)
        first = make_alert()
        second = make_alert()
        service.link_related_alerts(second.id, admin, [first.id])

        with pytest.raises(PermissionDenied):
            service.delete_alert(first.id, officer)

        service.delete_alert(first.id, admin)
        assert db.query(Alert).filter(Alert.id == first.id).count() == 0
        db.refresh(second)
        assert second.related_alerts == []


class TestExpiry:

    def test_due_open_alerts_expire(self, service, make_alert, admin):
        now = datetime.utcnow()
        due = make_alert(expires_at=(now - timedelta(minutes=5)).isoformat())
        acknowledged_due = make_alert(expires_at=(now - timedelta(minutes=1)).isoformat())
        later = make_alert(expires_at=(now + timedelta(hours=1)).isoformat())
        resolved_due = make_alert(expires_at=(now - timedelta(minutes=5)).isoformat())
        service.acknowledge(acknowledged_due.id, admin)
        service.resolve(resolved_due.id, admin)

        assert service.expire_due_alerts(now) == 2

        assert service.get_alert(due.id, admin).status == "expired"
        assert service.get_alert(acknowledged_due.id, admin).status == "expired"
        assert service.get_alert(later.id, admin).status == "active"
        assert service.get_alert(resolved_due.id, admin).status == "resolved"


class TestQueries:

    def test_visibility_by_role(self, service, make_alert, make_user, admin):
        traffic = make_alert(category="traffic")
        make_alert(category="air_quality")
        energy = make_alert(category="energy")
        service.acknowledge(energy.id, admin)

        _, total, _ = service.list_alerts(admin)
        assert total == 3

        traffic_officer = make_user(UserRole.TRAFFIC_CONTROL.value)
        alerts, total, _ = service.list_alerts(traffic_officer)
        assert [a.id for a in alerts] == [traffic.id]

        alerts, total, _ = service.list_alerts(traffic_officer, {"category": "energy"})
        assert total == 0

        viewer = make_user(UserRole.VIEWER.value)
        alerts, total, _ = service.list_alerts(viewer)
        assert [a.id for a in alerts] == [energy.id]
        with pytest.raises(PermissionDenied):
            service.get_alert(traffic.id, viewer)

    def test_filters_search_and_summary(self, service, make_alert, admin):
        make_alert(severity="critical", title="Water main burst")
        make_alert(severity="low", title="Bin overflow", category="waste")
        make_alert(severity="critical", title="Gas leak", category="energy")

        alerts, total, summary = service.list_alerts(admin, {"severity": "critical"})
        assert total == 2
        assert summary["critical_count"] == 2

        alerts, total, _ = service.list_alerts(admin, {"search": "BURST"})
        assert [a.title for a in alerts] == ["Water main burst"]

        _, _, summary = service.list_alerts(admin)
        assert summary == {
            "total_alerts": 3,
            "active_count": 3,
            "critical_count": 2,
            "high_count": 0,
            "medium_count": 0,
            "low_count": 1,
        }

    def test_pagination_newest_first(self, service, make_alert, admin):
        created = [make_alert(title=f"Alert {i}") for i in range(5)]

        page, total, _ = service.list_alerts(admin, page=2, size=2)
        assert total == 5
        assert [a.id for a in page] == [created[2].id, created[1].id]

    def test_statistics_are_cached_and_invalidated(self, db, make_alert, admin):
        cache = CacheManager(FakeRedis())
        service = AlertService(db, cache=cache)
        alert = make_alert(severity="high")

        stats = service.get_statistics("week")
        assert stats["overview"]["total_alerts"] == 1
        assert stats["overview"]["high_alerts"] == 1
        assert stats["category_breakdown"][0]["category"] == "traffic"
        assert cache.get_json(statistics_key("week")) is not None

        service.resolve(alert.id, admin)
        assert cache.get_json(statistics_key("week")) is None

        stats = service.get_statistics("week")
        assert stats["overview"]["resolved_alerts"] == 1
        assert stats["overview"]["avg_resolution_time_minutes"] is not None

    def test_statistics_period_is_validated(self, service):
        with pytest.raises(ValidationError):
            service.get_statistics("decade")

    def test_active_counts_by_category(self, service, make_alert, admin):
        make_alert(category="traffic", severity="critical")
        make_alert(category="traffic", severity="high")
        resolved = make_alert(category="energy")
        service.resolve(resolved.id, admin)

        assert service.get_active_counts_by_category() == [
            {"category": "traffic", "count": 2, "critical_count": 1, "high_count": 1},
        ]

    def test_find_nearby(self, service, make_alert, admin):
        near = make_alert(source={"type": "sensor", "id": "a", "location": {"coordinates": [-73.9800, 40.7500]}})
        close = make_alert(source={"type": "sensor", "id": "b", "location": {"coordinates": [-73.9850, 40.7520]}})
        make_alert(source={"type": "sensor", "id": "c", "location": {"coordinates": [-74.2000, 40.9000]}})

        nearby = service.find_nearby(admin, -73.9801, 40.7501, max_distance=1000)
        assert [alert.id for alert, _ in nearby] == [near.id, close.id]
        assert nearby[0][1] < nearby[1][1] < 1000

    def test_find_nearby_across_antimeridian(self, service, make_alert, admin):
        east = make_alert(source={"type": "sensor", "id": "e", "location": {"coordinates": [-179.9995, 0.0]}})
        west = make_alert(source={"type": "sensor", "id": "w", "location": {"coordinates": [179.9990, 0.0]}})

        from_west = service.find_nearby(admin, 179.9995, 0.0, max_distance=500)
        from_east = service.find_nearby(admin, -179.9995, 0.0, max_distance=500)

        assert [alert.id for alert, _ in from_west] == [west.id, east.id]
        assert [alert.id for alert, _ in from_east] == [east.id, west.id]
        assert all(distance < 500 for _, distance in from_west + from_east)
