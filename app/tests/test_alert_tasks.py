from datetime import datetime, timedelta

import pytest

from app.models.alert import Alert
from app.tasks import alert_tasks


@pytest.fixture
def task_db(monkeypatch, session_factory):
    monkeypatch.setattr(alert_tasks, "SessionLocal", session_factory)
    monkeypatch.setattr(alert_tasks, "get_redis_client", lambda: None)
    return session_factory


def test_expire_alerts_task(task_db, make_alert, db):
    due = make_alert(expires_at=(datetime.utcnow() - timedelta(minutes=1)).isoformat())
    make_alert()

    result = alert_tasks.expire_alerts()

    assert result == {"expired": 1, "status": "success"}
    db.expire_all()
    assert db.query(Alert).filter(Alert.status == "expired").one().id == due.id


def test_summary_report_task_records_failed_deliveries(task_db, admin):
    # No SMTP host is configured, so the email attempt fails without aborting the run
    result = alert_tasks.send_summary_report("weekly")

    assert result["period"] == "weekly"
    assert result["status"] == "success"
    assert result["sent_count"] == 0
    assert result["failed_count"] == 1
