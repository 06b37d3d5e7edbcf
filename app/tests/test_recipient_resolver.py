import pytest
from types import SimpleNamespace
from sqlalchemy.exc import OperationalError

from app.core.exceptions import StoreUnavailable
from app.models.user import User, UserRole, UserStatus
from app.services.recipient_resolver import RecipientResolver, resolve_recipients


def staff(id, role, districts=None, status=UserStatus.ACTIVE.value):
    return User(
        id=id,
        email=f"staff{id}@city.gov",
        full_name=f"Staff {id}",
        hashed_password="x",
        role=role,
        status=status,
        assigned_districts=districts or [],
    )


def alert(category="traffic", severity="low", district=None):
    return SimpleNamespace(alert_id="alert_test", category=category, severity=severity, district=district)


@pytest.fixture
def city_staff():
    return [
        staff(1, UserRole.ADMIN.value),
        staff(2, UserRole.TRAFFIC_CONTROL.value),
        staff(3, UserRole.ENVIRONMENT_OFFICER.value, districts=["harbor"]),
        staff(4, UserRole.UTILITY_OFFICER.value, districts=["downtown"]),
        staff(5, UserRole.VIEWER.value, districts=["downtown"]),
        staff(6, UserRole.TRAFFIC_CONTROL.value, status=UserStatus.SUSPENDED.value),
        staff(7, UserRole.ADMIN.value),
    ]


def ids(users):
    return [user.id for user in users]


class TestResolveRecipients:

    def test_category_roles_without_district(self, city_staff):
        """Traffic alerts go to admins and traffic control regardless of other districts"""
        assert ids(resolve_recipients(alert("traffic", "low"), city_staff)) == [1, 2, 7]

    @pytest.mark.parametrize("category,expected", [
        ("air_quality", [1, 3, 7]),
        ("energy", [1, 4, 7]),
        ("waste", [1, 4, 7]),
        ("system", [1, 7]),
    ])
    def test_category_mapping(self, city_staff, category, expected):
        assert ids(resolve_recipients(alert(category), city_staff)) == expected

    def test_district_users_are_added(self, city_staff):
        recipients = resolve_recipients(alert("traffic", "medium", district="downtown"), city_staff)
        assert ids(recipients) == [1, 2, 4, 5, 7]

    def test_critical_alerts_include_every_admin(self, city_staff):
        no_admin_category = [user for user in city_staff if user.id != 1] + [staff(8, UserRole.ADMIN.value)]
        recipients = resolve_recipients(alert("air_quality", "critical", district="harbor"), no_admin_category)

        admins = {user.id for user in no_admin_category if user.role == UserRole.ADMIN.value}
        assert admins <= set(ids(recipients))

    def test_unmapped_category_without_district_falls_back_to_admins(self, city_staff):
        assert ids(resolve_recipients(alert("security"), city_staff)) == [1, 7]

    def test_unmapped_category_with_district_uses_district(self, city_staff):
        assert ids(resolve_recipients(alert("security", district="harbor"), city_staff)) == [3]

    def test_inactive_users_are_never_selected(self, city_staff):
        assert 6 not in ids(resolve_recipients(alert("traffic", "critical"), city_staff))

    def test_result_is_deduplicated(self, city_staff):
        recipients = resolve_recipients(alert("energy", "critical", district="downtown"), city_staff)
        assert len(ids(recipients)) == len(set(ids(recipients)))


class TestRecipientResolver:

    def test_loads_active_users_from_store(self, db, make_user):
        admin = make_user(UserRole.ADMIN.value)
        officer = make_user(UserRole.TRAFFIC_CONTROL.value)
        make_user(UserRole.TRAFFIC_CONTROL.value, status=UserStatus.INACTIVE.value)
        make_user(UserRole.ENVIRONMENT_OFFICER.value)

        recipients = RecipientResolver(db).resolve(alert("traffic"))
        assert ids(recipients) == [admin.id, officer.id]

    def test_store_error_falls_back_to_admins(self, db, make_user, monkeypatch):
        admin = make_user(UserRole.ADMIN.value)
        make_user(UserRole.TRAFFIC_CONTROL.value)
        resolver = RecipientResolver(db)

        def broken():
            raise OperationalError("SELECT", {}, Exception("connection reset"))

        monkeypatch.setattr(resolver.user_repo, "get_active_users", broken)

        assert ids(resolver.resolve(alert("traffic"))) == [admin.id]

    def test_fallback_failure_is_store_unavailable(self, db, monkeypatch):
        resolver = RecipientResolver(db)

        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection reset"))

        monkeypatch.setattr(resolver.user_repo, "get_active_users", broken)
        monkeypatch.setattr(resolver.user_repo, "get_active_admins", broken)

        with pytest.raises(StoreUnavailable):
            resolver.resolve(alert("traffic"))
