import pytest

from app.core.security import decode_access_token
from app.models.alert import AlertNotification
from app.models.user import UserRole

API = "/api/v1"


def forwarded(ip):
    return {"X-Forwarded-For": ip}


class TestAuthAPI:

    def test_register_roles_and_login(self, client, db):
        first = client.post(
            f"{API}/auth/register",
            json={"email": "chief@city.gov", "full_name": "Chief", "password": "Password123", "role": "viewer"},
            headers=forwarded("10.0.0.1"),
        )
        assert first.status_code == 201
        admin_token = first.json()["access_token"]
        assert decode_access_token(admin_token)["role"] == "admin"

        anonymous_staff = client.post(
            f"{API}/auth/register",
            json={"email": "rogue@city.gov", "full_name": "Rogue", "password": "Password123", "role": "traffic_control"},
            headers=forwarded("10.0.0.1"),
        )
        assert anonymous_staff.status_code == 403
        assert anonymous_staff.json()["code"] == "PERMISSION_DENIED"

        staff = client.post(
            f"{API}/auth/register",
            json={
                "email": "traffic@city.gov",
                "full_name": "Traffic Desk",
                "password": "Password123",
                "role": "traffic_control",
                "assigned_districts": [" downtown "],
            },
            headers={**forwarded("10.0.0.1"), "Authorization": f"Bearer {admin_token}"},
        )
        assert staff.status_code == 201

        login = client.post(
            f"{API}/auth/login",
            json={"email": "traffic@city.gov", "password": "Password123"},
            headers=forwarded("10.0.0.1"),
        )
        assert login.status_code == 200
        me = client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {login.json()['access_token']}"})
        assert me.json()["role"] == "traffic_control"
        assert me.json()["assigned_districts"] == ["downtown"]

        bad_login = client.post(
            f"{API}/auth/login",
            json={"email": "traffic@city.gov", "password": "wrong-Password1"},
            headers=forwarded("10.0.0.1"),
        )
        assert bad_login.status_code == 401
        assert bad_login.json()["code"] == "HTTP_401"

    def test_login_is_rate_limited(self, client):
        statuses = [
            client.post(
                f"{API}/auth/login",
                json={"email": "nobody@city.gov", "password": "Password123"},
                headers=forwarded("10.0.0.2"),
            ).status_code
            for _ in range(6)
        ]
        assert statuses[:5] == [401] * 5
        assert statuses[5] == 429

    def test_missing_token(self, client):
        assert client.get(f"{API}/alerts").status_code in (401, 403)


class TestAlertsAPI:

    def test_create_dispatches_after_response(self, client, admin, make_user, auth_headers, alert_payload, email_channel, session_factory):
        officer = make_user(UserRole.TRAFFIC_CONTROL.value, phone="+15551234567")

        response = client.post(f"{API}/alerts", json=alert_payload(), headers=auth_headers(officer))

        assert response.status_code == 201
        body = response.json()
        assert body["priority"] == 8
        assert body["status"] == "active"
        assert body["source"]["location"]["district"] == "downtown"

        assert sorted(email_channel.recipients()) == sorted([admin.id, officer.id])
        check = session_factory()
        try:
            logged = check.query(AlertNotification).filter(AlertNotification.alert_id == body["id"]).all()
            assert {entry.channel for entry in logged} == {"email", "sms", "in_app"}
        finally:
            check.close()

    def test_create_validation_error_shape(self, client, admin, auth_headers, alert_payload):
        response = client.post(f"{API}/alerts", json=alert_payload(severity="apocalyptic"), headers=auth_headers(admin))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert any("severity" in key for key in body["details"]["field_errors"])

    def test_multiline_title_is_rejected(self, client, admin, auth_headers, alert_payload):
        response = client.post(
            f"{API}/alerts",
            json=alert_payload(title="Congestion\nBcc: victim@example.com"),
            headers=auth_headers(admin),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert any("title" in key for key in response.json()["details"]["field_errors"])

    def test_viewer_cannot_create(self, client, make_user, auth_headers, alert_payload):
        viewer = make_user(UserRole.VIEWER.value)
        response = client.post(f"{API}/alerts", json=alert_payload(), headers=auth_headers(viewer))
        assert response.status_code == 403

    def test_list_with_summary_and_visibility(self, client, admin, make_alert, make_user, auth_headers):
        make_alert(category="traffic", severity="critical")
        make_alert(category="air_quality", severity="low")

        response = client.get(f"{API}/alerts", params={"size": 1}, headers=auth_headers(admin))
        body = response.json()
        assert body["total"] == 2
        assert body["pages"] == 2
        assert len(body["items"]) == 1
        assert body["summary"]["critical_count"] == 1

        environment = make_user(UserRole.ENVIRONMENT_OFFICER.value)
        body = client.get(f"{API}/alerts", headers=auth_headers(environment)).json()
        assert [item["category"] for item in body["items"]] == ["air_quality"]

    def test_viewer_cannot_open_active_alert(self, client, make_alert, make_user, auth_headers):
        alert = make_alert()
        viewer = make_user(UserRole.VIEWER.value)

        response = client.get(f"{API}/alerts/{alert.id}", headers=auth_headers(viewer))
        assert response.status_code == 403

    def test_lifecycle_endpoints(self, client, admin, make_alert, auth_headers):
        alert = make_alert(severity="medium")
        headers = auth_headers(admin)

        response = client.put(f"{API}/alerts/{alert.id}/escalate", json={"reason": "no response"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["escalation_level"] == 1
        assert response.json()["priority"] == 7

        response = client.put(f"{API}/alerts/{alert.id}/acknowledge", json={"notes": "on it"}, headers=headers)
        assert response.json()["status"] == "acknowledged"

        response = client.put(f"{API}/alerts/{alert.id}/acknowledge", json={}, headers=headers)
        assert response.status_code == 409
        assert response.json() == {
            "success": False,
            "error": "Alert is already acknowledged",
            "details": {"current_status": "acknowledged"},
            "code": "INVALID_TRANSITION",
        }

        response = client.put(
            f"{API}/alerts/{alert.id}/resolve",
            json={"notes": "fixed", "actions": [{"action": "Replaced sensor"}]},
            headers=headers,
        )
        body = response.json()
        assert body["status"] == "resolved"
        assert body["resolution_actions"][0]["action"] == "Replaced sensor"
        assert len(body["escalation_history"]) == 1

        response = client.put(f"{API}/alerts/{alert.id}/escalate", json={}, headers=headers)
        assert response.status_code == 409

    def test_severity_assign_and_related(self, client, admin, make_alert, make_user, auth_headers):
        first = make_alert(severity="low")
        second = make_alert()
        officer = make_user(UserRole.TRAFFIC_CONTROL.value)
        headers = auth_headers(admin)

        response = client.put(f"{API}/alerts/{first.id}/severity", json={"severity": "critical"}, headers=headers)
        assert response.json()["priority"] == 10

        response = client.put(f"{API}/alerts/{first.id}/assign", json={"user_ids": [officer.id]}, headers=headers)
        assert [user["id"] for user in response.json()["assigned_to"]] == [officer.id]

        response = client.put(f"{API}/alerts/{first.id}/assign", json={"user_ids": []}, headers=headers)
        assert response.status_code == 400

        response = client.put(f"{API}/alerts/{first.id}/related", json={"alert_ids": [second.id]}, headers=headers)
        assert [related["id"] for related in response.json()["related_alerts"]] == [second.id]

        response = client.put(f"{API}/alerts/{second.id}/false-positive", json={"notes": "drill"}, headers=headers)
        assert response.json()["status"] == "false_positive"

    def test_lookup_by_code(self, client, admin, make_alert, auth_headers):
        alert = make_alert()

        response = client.get(f"{API}/alerts/code/{alert.alert_id}", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["id"] == alert.id

        assert client.get(f"{API}/alerts/code/alert_0_missing", headers=auth_headers(admin)).status_code == 404

    def test_unknown_alert(self, client, admin, auth_headers):
        response = client.put(f"{API}/alerts/999/acknowledge", json={}, headers=auth_headers(admin))
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_delete_is_admin_only(self, client, admin, make_alert, make_user, auth_headers):
        alert = make_alert()
        officer = make_user(UserRole.TRAFFIC_CONTROL.value)

        assert client.delete(f"{API}/alerts/{alert.id}", headers=auth_headers(officer)).status_code == 403
        assert client.delete(f"{API}/alerts/{alert.id}", headers=auth_headers(admin)).status_code == 204
        assert client.get(f"{API}/alerts/{alert.id}", headers=auth_headers(admin)).status_code == 404

    def test_notify_returns_delivery_summary(self, client, admin, make_alert, auth_headers):
        alert = make_alert()

        response = client.post(f"{API}/alerts/{alert.id}/notify", headers=auth_headers(admin))

        assert response.status_code == 200
        body = response.json()
        assert body["failed_count"] == 0
        assert {detail["channel"] for detail in body["details"]} == {"email", "in_app"}

    def test_statistics_and_nearby(self, client, admin, make_alert, auth_headers):
        make_alert(severity="critical")
        headers = auth_headers(admin)

        stats = client.get(f"{API}/alerts/statistics/overview", params={"period": "day"}, headers=headers).json()
        assert stats["overview"]["critical_alerts"] == 1
        assert stats["period"] == "day"

        assert client.get(f"{API}/alerts/statistics/overview", params={"period": "decade"}, headers=headers).status_code == 400

        by_category = client.get(f"{API}/alerts/statistics/by-category", headers=headers).json()
        assert by_category == [{"category": "traffic", "count": 1, "critical_count": 1, "high_count": 0}]

        nearby = client.get(
            f"{API}/alerts/nearby",
            params={"longitude": -73.9801, "latitude": 40.7501, "max_distance": 500},
            headers=headers,
        ).json()
        assert len(nearby) == 1
        assert nearby[0]["distance_m"] < 500


class TestUserAndNotificationAPI:

    def test_notification_preferences(self, client, make_user, auth_headers):
        user = make_user(UserRole.UTILITY_OFFICER.value)
        headers = auth_headers(user)

        assert client.get(f"{API}/users/me/preferences", headers=headers).json() == {
            "email": True, "sms": True, "in_app": True, "reports": True,
        }
        updated = client.put(f"{API}/users/me/preferences", json={"sms": False}, headers=headers).json()
        assert updated == {"email": True, "sms": False, "in_app": True, "reports": True}

    def test_admin_notifications(self, client, admin, make_user, auth_headers, email_channel):
        officer = make_user(UserRole.TRAFFIC_CONTROL.value)

        response = client.post(f"{API}/notifications/test", headers=auth_headers(admin))
        assert response.status_code == 200
        assert email_channel.recipients() == [admin.id]

        response = client.post(
            f"{API}/notifications/system",
            json={"title": "Maintenance", "message": "Tonight", "target_roles": ["traffic_control"]},
            headers=auth_headers(admin),
        )
        assert response.json()["sent_count"] == 2
        assert email_channel.recipients() == [admin.id, officer.id]

        assert client.post(f"{API}/notifications/test", headers=auth_headers(officer)).status_code == 403


class TestWebSocket:

    def test_ping_pong(self, client, admin, auth_headers):
        token = auth_headers(admin)["Authorization"].split(" ", 1)[1]

        with client.websocket_connect(f"{API}/ws/notifications?token={token}") as websocket:
            connected = websocket.receive_json()
            assert connected["type"] == "connected"
            assert connected["user_id"] == admin.id

            websocket.send_text('{"type": "ping"}')
            assert websocket.receive_json()["type"] == "pong"

            websocket.send_text("not json")
            assert websocket.receive_json() == {"type": "error", "message": "Invalid JSON"}

    def test_bad_token_is_rejected(self, client):
        from starlette.websockets import WebSocketDisconnect

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"{API}/ws/notifications?token=garbage") as websocket:
                websocket.receive_json()
        assert exc_info.value.code == 1008

    def test_auth_session_closed_while_socket_open(self, client, admin, auth_headers, session_factory, monkeypatch):
        from app.api.v1 import websocket as websocket_routes

        opened = []

        def tracking_session():
            session = session_factory()
            opened.append(session)
            return session

        monkeypatch.setattr(websocket_routes, "SessionLocal", tracking_session)
        token = auth_headers(admin)["Authorization"].split(" ", 1)[1]

        with client.websocket_connect(f"{API}/ws/notifications?token={token}") as websocket:
            assert websocket.receive_json()["type"] == "connected"
            assert len(opened) == 1
            # close() expunges everything from the session
            assert not list(opened[0])
            assert not opened[0].in_transaction()

            websocket.send_text('{"type": "ping"}')
            assert websocket.receive_json()["type"] == "pong"

    def test_non_object_json_gets_error_frame(self, client, admin, auth_headers):
        token = auth_headers(admin)["Authorization"].split(" ", 1)[1]

        with client.websocket_connect(f"{API}/ws/notifications?token={token}") as websocket:
            websocket.receive_json()

            for payload in ("[1]", "5"):
                websocket.send_text(payload)
                assert websocket.receive_json() == {"type": "error", "message": "Invalid JSON"}

            websocket.send_text('{"type": "ping"}')
            assert websocket.receive_json()["type"] == "pong"
