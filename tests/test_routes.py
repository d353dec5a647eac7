from datetime import date, datetime, timedelta

import pytest

from models import db
from models.audit_log import AuditLog
from models.notification import Notification
from models.session import Session
from scheduling.backend import HttpPrivilegedBackend
from scheduling.errors import AuthorizationError, InvalidTransitionError

SERVICE_HEADERS = {"X-Service-Key": "test-service-key"}


class ClientResponse:
    """requests-style view of a Flask test response."""

    def __init__(self, resp):
        self.status_code = resp.status_code
        self.content = resp.data
        self.reason = resp.status
        self._json = resp.get_json(silent=True)

    def json(self):
        return self._json


class ClientHttp:
    def __init__(self, client):
        self.client = client

    def post(self, url, json=None, headers=None, timeout=None):
        path = url.split("://", 1)[-1].split("/", 1)[-1]
        return ClientResponse(self.client.post("/" + path, json=json, headers=headers))


def _future(days=2):
    return (date.today() + timedelta(days=days)).isoformat()


def _create(client, facility_id, **body):
    body.setdefault("reserved_date", _future())
    body.setdefault("start_time", "10:00")
    return client.post(f"/facilities/{facility_id}/reservations", json=body)


def test_health_reports_schema(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"
    assert resp.get_json()["degraded"] == []
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_slots_require_login(client, enabled_facility):
    assert client.get(f"/facilities/{enabled_facility.id}/slots").status_code == 401


def test_expired_or_revoked_sessions_are_ignored(client, login, enabled_facility, customer):
    login(customer)
    url = f"/facilities/{enabled_facility.id}/slots"
    assert client.get(url).status_code == 200

    sess = Session.query.one()
    sess.revoked = True
    db.session.commit()
    assert client.get(url).status_code == 401

    login(customer)
    Session.query.filter_by(revoked=False).one().expires_at = datetime.utcnow() - timedelta(seconds=1)
    db.session.commit()
    assert client.get(url).status_code == 401


def test_slots_show_remaining_capacity(client, login, enabled_facility, customer, book):
    day = date.today() + timedelta(days=1)
    book(enabled_facility, customer, day=day, today=date.today())
    login(customer)

    resp = client.get(f"/facilities/{enabled_facility.id}/slots?date={day.isoformat()}")
    data = resp.get_json()
    assert resp.status_code == 200
    assert len(data["slots"]) == 9
    ten = next(s for s in data["slots"] if s["start_time"] == "10:00")
    assert (ten["booked"], ten["remaining"]) == (1, 1)


def test_slots_for_disabled_facility_are_empty(client, login, facility, customer):
    login(customer)
    data = client.get(f"/facilities/{facility.id}/slots").get_json()
    assert data["enabled"] is False
    assert data["slots"] == []


def test_owner_reads_and_updates_settings(client, login, facility, owner):
    login(owner)
    resp = client.put(
        f"/facilities/{facility.id}/reservation-settings",
        json={"enabled": True, "slot_unit_minutes": 30, "auto_message_enabled": True, "auto_message_text": "Thanks!"},
    )
    assert resp.status_code == 200
    assert resp.get_json()["degraded"] is False

    settings = client.get(f"/facilities/{facility.id}/reservation-settings").get_json()["settings"]
    assert settings["slot_unit_minutes"] == 30
    assert settings["auto_message_text"] == "Thanks!"
    assert AuditLog.query.filter_by(action="SETTINGS_UPDATE").count() == 1


def test_settings_validation_and_ownership(client, login, facility, owner, other_user):
    login(other_user)
    assert client.get(f"/facilities/{facility.id}/reservation-settings").status_code == 404

    login(owner)
    resp = client.put(f"/facilities/{facility.id}/reservation-settings", json={"slot_unit_minutes": 7})
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "slot_unit_minutes"
    assert client.put(f"/facilities/{facility.id}/reservation-settings", json=["x"]).status_code == 400


def test_owner_replaces_seats(client, login, facility, owner):
    login(owner)
    resp = client.put(f"/facilities/{facility.id}/seats", json={"seats": ["B", " A ", "B"]})
    assert resp.status_code == 200
    assert client.get(f"/facilities/{facility.id}/seats").get_json()["seats"] == ["B", "A"]
    assert client.put(f"/facilities/{facility.id}/seats", json={"seats": "A"}).status_code == 400


def test_customer_books_and_both_parties_are_notified(client, login, enabled_facility, customer, owner):
    login(customer)
    resp = _create(client, enabled_facility.id, guest_count=2)

    assert resp.status_code == 201
    data = resp.get_json()
    assert data["status"] == "pending"
    assert data["start_time"] == "10:00"
    assert data["customer_name"] == "Hanako"
    assert Notification.query.filter_by(user_id=owner.id).one().title == "New reservation"
    own = Notification.query.filter_by(user_id=customer.id).one()
    assert own.title == "Reservation request received"
    assert "2 guest(s)" in own.message
    assert own.link_url == "https://example.test/my-reservations"


def test_booking_respects_capacity(client, login, enabled_facility, customer):
    login(customer)
    assert _create(client, enabled_facility.id).status_code == 201
    assert _create(client, enabled_facility.id).status_code == 201

    resp = _create(client, enabled_facility.id)
    assert resp.status_code == 409
    assert AuditLog.query.filter_by(action="RESERVATION_CREATE_FAIL").count() == 1


@pytest.mark.parametrize("body, field", [
    ({"start_time": "10:15"}, "start_time"),
    ({"reserved_date": "2001-01-01"}, "reserved_date"),
    ({"guest_count": 0}, "guest_count"),
    ({"guest_count": 21}, "guest_count"),
])
def test_booking_validation(client, login, enabled_facility, customer, body, field):
    login(customer)
    resp = _create(client, enabled_facility.id, **body)
    assert resp.status_code == 400
    assert resp.get_json()["field"] == field


def test_auto_confirm_books_confirmed(client, login, services, enabled_facility, customer):
    services.settings.upsert(enabled_facility.id, {"auto_confirm": True})
    login(customer)
    assert _create(client, enabled_facility.id).get_json()["status"] == "confirmed"
    assert Notification.query.filter_by(user_id=customer.id).one().title == "Reservation confirmed"


def test_owner_lists_with_filters(client, login, enabled_facility, customer, owner):
    login(customer)
    first = _create(client, enabled_facility.id).get_json()
    _create(client, enabled_facility.id, reserved_date=_future(3))

    login(owner)
    resp = client.get(f"/facilities/{enabled_facility.id}/reservations?date={_future()}&status=pending")
    data = resp.get_json()
    assert resp.status_code == 200
    assert [r["id"] for r in data["reservations"]] == [first["id"]]
    assert data["filters"] == {"date": _future(), "status": "pending"}

    assert client.get(f"/facilities/{enabled_facility.id}/reservations?status=done").status_code == 400


def test_confirm_route(client, login, enabled_facility, customer, owner, relay):
    login(customer)
    row = _create(client, enabled_facility.id).get_json()

    login(owner)
    resp = client.post(f"/reservations/{row['id']}/confirm", json={"message": "See you!", "status": "all"})
    data = resp.get_json()
    assert resp.status_code == 200
    assert data["reservation"]["status"] == "confirmed"
    assert data["outcome"]["thread_posted"] is True
    assert data["outcome"]["delivery"]["relay"] == "delivered"
    assert [r["status"] for r in data["reservations"]] == ["confirmed"]
    assert relay.pushed[-1]["to"] == "U1234567890"

    again = client.post(f"/reservations/{row['id']}/confirm", json={})
    assert again.status_code == 409
    assert again.get_json()["current"] == "confirmed"


def test_confirm_route_rejects_strangers(client, login, enabled_facility, customer, other_user):
    login(customer)
    row = _create(client, enabled_facility.id).get_json()

    login(other_user)
    assert client.post(f"/reservations/{row['id']}/confirm", json={"message": 5}).status_code == 400
    assert client.post(f"/reservations/{row['id']}/confirm", json={}).status_code == 403
    assert client.post("/reservations/999/confirm", json={}).status_code == 404


def test_customer_cancels_through_route(client, login, enabled_facility, customer, owner):
    login(customer)
    row = _create(client, enabled_facility.id).get_json()

    resp = client.post(f"/reservations/{row['id']}/cancel", json={"reason": "Rain"})
    assert resp.status_code == 200
    assert resp.get_json()["reservation"]["status"] == "cancelled"
    assert resp.get_json()["reservation"]["cancel_reason"] == "Rain"


def test_backend_routes_need_service_key(client):
    for path in ("/backend/reservations/confirm", "/backend/reservations/cancel", "/backend/notify", "/backend/relay"):
        assert client.post(path, json={}).status_code == 403
        assert client.post(path, json={}, headers={"X-Service-Key": "wrong"}).status_code == 403


def test_backend_notify_and_relay(client, customer, relay):
    payload = {"userId": customer.id, "title": "Hello", "message": "Body", "linkUrl": "https://example.test/x"}
    assert client.post("/backend/notify", json=payload, headers=SERVICE_HEADERS).status_code == 200
    assert Notification.query.one().title == "Hello"

    resp = client.post("/backend/relay", json=payload, headers=SERVICE_HEADERS)
    assert resp.get_json()["outcome"] == "delivered"
    assert relay.pushed[0]["link"] == "https://example.test/x"

    assert client.post("/backend/notify", json={"userId": customer.id}, headers=SERVICE_HEADERS).status_code == 400


def test_http_backend_against_backend_routes(client, make_services, enabled_facility, customer, owner, other_user, book):
    backend = HttpPrivilegedBackend("https://backend.internal", "test-service-key", http=ClientHttp(client))
    row = book(enabled_facility, customer)

    with pytest.raises(AuthorizationError):
        backend.confirm_reservation(other_user.id, row["id"])

    confirmed = backend.confirm_reservation(owner.id, row["id"])
    assert confirmed["status"] == "confirmed"

    with pytest.raises(InvalidTransitionError) as err:
        backend.confirm_reservation(owner.id, row["id"])
    assert err.value.current == "confirmed"


def test_privileged_confirm_over_http(client, make_services, enabled_facility, customer, owner, book):
    backend = HttpPrivilegedBackend("https://backend.internal", "test-service-key", http=ClientHttp(client))
    svc = make_services(OWNER_DIRECT_UPDATES=False, DIRECT_NOTIFICATION_INSERTS=False, backend=backend)
    row = book(enabled_facility, customer)

    result = svc.workflow.confirm(owner.id, row["id"], "Welcome")

    assert result.path == "privileged"
    assert result.delivery.in_app == "fallback"
    assert Notification.query.one().user_id == customer.id


def test_privileged_cancel_over_http(client, make_services, enabled_facility, customer, owner, other_user, book):
    backend = HttpPrivilegedBackend("https://backend.internal", "test-service-key", http=ClientHttp(client))
    row = book(enabled_facility, customer)

    with pytest.raises(AuthorizationError):
        backend.cancel_reservation(other_user.id, row["id"])

    svc = make_services(OWNER_DIRECT_UPDATES=False, backend=backend)
    result = svc.workflow.cancel(owner.id, row["id"], reason="Storm warning")

    assert result.path == "privileged"
    assert result.reservation["status"] == "cancelled"
    assert result.reservation["cancel_reason"] == "Storm warning"
    assert AuditLog.query.filter_by(action="BACKEND_RESERVATION_CANCEL").count() == 1
