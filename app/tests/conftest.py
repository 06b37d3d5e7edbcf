import itertools
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.v1 import websocket as websocket_routes
from app.api.v1.dependencies import get_cache_manager, get_notification_service
from app.core.exceptions import DispatchFailure
from app.core.security import create_token_response, get_password_hash
from app.database.connection import get_db
from app.main import app
from app.models.base import Base
from app.models.user import User, UserRole
from app.notifications.base import NotificationChannel
from app.notifications.in_app_channel import InAppChannel
from app.notifications.realtime import ConnectionManager, RealtimeTransport
from app.services.alert_service import AlertService
from app.services.notification_service import NotificationService

TEST_PASSWORD = "Password123"


class RecordingChannel(NotificationChannel):
    """Channel double that records deliveries and fails for selected users"""

    def __init__(self, channel: str, recipient_type: str, address_attr: str, fail_for=()):
        self.channel = channel
        self.recipient_type = recipient_type
        self.address_attr = address_attr
        self.fail_for = set(fail_for)
        self.sent: List[Tuple[User, Any]] = []
        self.sent_ids: List[int] = []

    def address_for(self, user: User) -> Optional[str]:
        return getattr(user, self.address_attr) or None

    def send(self, user: User, message) -> str:
        if user.id in self.fail_for:
            raise DispatchFailure("provider rejected message", channel=self.channel, recipient=self.address_for(user))
        self.sent.append((user, message))
        self.sent_ids.append(user.id)
        return f"{self.channel}-{len(self.sent)}"

    def recipients(self) -> List[int]:
        return list(self.sent_ids)


class RecordingTransport(RealtimeTransport):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    def emit(self, room: str, event: str, data: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket server unavailable")
        self.events.append((room, event, data))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="session")
def password_hash() -> str:
    return get_password_hash(TEST_PASSWORD)


@pytest.fixture
def make_user(db: Session, password_hash: str):
    counter = itertools.count(1)

    def _make(role: str = UserRole.ADMIN.value, **kwargs) -> User:
        n = next(counter)
        data = {
            "email": f"user{n}@city.gov",
            "hashed_password": password_hash,
            "full_name": f"Staff Member {n}",
            "role": role,
            "assigned_districts": [],
        }
        data.update(kwargs)
        user = User(**data)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def admin(make_user) -> User:
    return make_user(UserRole.ADMIN.value, full_name="City Admin")


def build_alert_payload(**overrides) -> Dict[str, Any]:
    payload = {
        "type": "threshold",
        "category": "traffic",
        "severity": "high",
        "title": "Congestion on Main St",
        "description": "Average speed dropped below 5 km/h",
        "source": {
            "type": "sensor",
            "id": "traffic-sensor-17",
            "name": "Main St loop detector",
            "location": {"coordinates": [-73.98, 40.75], "district": "downtown"},
        },
        "threshold": {
            "parameter": "avg_speed",
            "threshold_value": 5,
            "actual_value": 3.2,
            "operator": "<",
            "unit": "km/h",
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_alert(db: Session, admin: User):
    def _make(actor: Optional[User] = None, **overrides):
        return AlertService(db).create_alert(build_alert_payload(**overrides), actor or admin)

    return _make


@pytest.fixture
def email_channel() -> RecordingChannel:
    return RecordingChannel("email", "email", "email")


@pytest.fixture
def sms_channel() -> RecordingChannel:
    return RecordingChannel("sms", "phone", "phone")


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def notification_service(email_channel, sms_channel, transport, session_factory):
    service = NotificationService(
        [email_channel, sms_channel, InAppChannel(transport)],
        session_factory=session_factory,
        frontend_url="https://city.example",
    )
    service.start()
    yield service
    service.shutdown()


@pytest.fixture
def client(db: Session, notification_service: NotificationService, session_factory, monkeypatch):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_service] = lambda: notification_service
    app.dependency_overrides[get_cache_manager] = lambda: None
    app.state.connection_manager = ConnectionManager()
    monkeypatch.setattr(websocket_routes, "SessionLocal", session_factory)

    yield TestClient(app)

    app.dependency_overrides.clear()


def build_auth_headers(user: User) -> Dict[str, str]:
    token = create_token_response(user.id, user.email, user.role)["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def alert_payload():
    return build_alert_payload


@pytest.fixture
def auth_headers():
    return build_auth_headers


@pytest.fixture
def channel_factory():
    return RecordingChannel


@pytest.fixture
def transport_factory():
    return RecordingTransport
