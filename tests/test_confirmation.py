from datetime import datetime, timedelta

import pytest

from models.audit_log import AuditLog
from models.notification import Notification
from models.thread_message import ThreadMessage
from scheduling.board import ReservationBoard
from scheduling.errors import (
    AuthorizationError,
    BackendUnavailableError,
    ConfirmationError,
    InvalidTransitionError,
    NotFoundError,
    NotificationDeliveryError,
    ValidationError,
)
from scheduling.filters import ReservationFilters
from scheduling.notifications import DELIVERED, FAILED
from tests.conftest import TODAY, FakeRelay


class RecordingBoard(ReservationBoard):
    """Remembers what the view looked like right after the optimistic step."""

    def apply_optimistic(self, reservation_id, status):
        updated = super().apply_optimistic(reservation_id, status)
        self.after_optimistic = [dict(r) for r in self.rows]
        return updated


class UnreachableBackend:
    def confirm_reservation(self, actor_id, reservation_id):
        raise BackendUnavailableError("connection refused")

    def notify(self, payload):
        raise BackendUnavailableError("connection refused")

    def cancel_reservation(self, actor_id, reservation_id, reason=None):
        raise BackendUnavailableError("connection refused")

    def relay(self, payload):
        raise BackendUnavailableError("connection refused")


def _status(services, reservation_id):
    return services.repository.get(reservation_id)["status"]


def test_confirm_with_message_posts_thread_and_notifies(services, enabled_facility, customer, owner, book, relay):
    row = book(enabled_facility, customer)
    result = services.workflow.confirm(owner.id, row["id"], "  See you at 10!  ")

    assert result.path == "direct"
    assert result.reservation["status"] == "confirmed"
    assert result.message == "See you at 10!"
    assert result.thread_posted is True
    assert result.delivery.in_app == DELIVERED
    assert result.delivery.relay == DELIVERED

    msg = ThreadMessage.query.one()
    assert (msg.sender_id, msg.recipient_id, msg.reservation_id) == (owner.id, customer.id, row["id"])
    assert msg.content == "See you at 10!"
    note = Notification.query.one()
    assert note.user_id == customer.id
    assert note.link_url == "https://example.test/my-reservations"
    assert relay.pushed[0]["message"] == "See you at 10!"


def test_relay_failure_never_blocks_confirmation(make_services, enabled_facility, customer, owner, book):
    svc = make_services(relay_override=FakeRelay(fail=True))
    row = book(enabled_facility, customer)
    result = svc.workflow.confirm(owner.id, row["id"], "Confirmed")

    assert _status(svc, row["id"]) == "confirmed"
    assert result.thread_posted is True
    assert result.delivery.relay == FAILED
    assert ThreadMessage.query.count() == 1


def test_no_message_means_no_dispatch(services, enabled_facility, customer, owner, book):
    row = book(enabled_facility, customer)
    result = services.workflow.confirm(owner.id, row["id"])

    assert _status(services, row["id"]) == "confirmed"
    assert result.message is None
    assert result.delivery is None
    assert Notification.query.count() == 0
    assert ThreadMessage.query.count() == 0


def test_auto_message_is_used_when_no_explicit_message(services, enabled_facility, customer, owner, book):
    services.settings.upsert(enabled_facility.id, {
        "auto_message_enabled": True,
        "auto_message_text": "ご予約を受け付けました",
    })
    row = book(enabled_facility, customer)
    result = services.workflow.confirm(owner.id, row["id"], "")

    assert result.message == "ご予約を受け付けました"
    assert ThreadMessage.query.one().content == "ご予約を受け付けました"


def test_explicit_message_wins_over_auto_message(services, enabled_facility, customer, owner, book):
    services.settings.upsert(enabled_facility.id, {"auto_message_enabled": True, "auto_message_text": "default"})
    row = book(enabled_facility, customer)
    assert services.workflow.confirm(owner.id, row["id"], "custom").message == "custom"


def test_policy_rejection_goes_through_backend_route(make_services, enabled_facility, customer, owner, book):
    svc = make_services(OWNER_DIRECT_UPDATES=False)
    row = book(enabled_facility, customer)
    result = svc.workflow.confirm(owner.id, row["id"])

    assert result.path == "privileged"
    assert _status(svc, row["id"]) == "confirmed"
    audit = AuditLog.query.filter_by(action="RESERVATION_CONFIRM").one()
    assert '"privileged"' in audit.metadata_json


def test_owner_cancel_goes_through_backend_route_when_blocked(make_services, enabled_facility, customer, owner, book):
    svc = make_services(OWNER_DIRECT_UPDATES=False)
    row = book(enabled_facility, customer)
    result = svc.workflow.cancel(owner.id, row["id"], reason="Closed for maintenance")

    assert result.path == "privileged"
    assert result.reservation["status"] == "cancelled"
    assert result.reservation["cancel_reason"] == "Closed for maintenance"
    assert Notification.query.one().user_id == customer.id
    audit = AuditLog.query.filter_by(action="RESERVATION_CANCEL").one()
    assert '"privileged"' in audit.metadata_json


def test_blocked_owner_cancel_with_unreachable_backend(make_services, enabled_facility, customer, owner, book):
    svc = make_services(OWNER_DIRECT_UPDATES=False, backend=UnreachableBackend())
    row = book(enabled_facility, customer)
    with pytest.raises(ConfirmationError):
        svc.workflow.cancel(owner.id, row["id"])
    assert _status(svc, row["id"]) == "pending"


def test_strangers_cannot_cancel(services, enabled_facility, customer, other_user, book):
    row = book(enabled_facility, customer)
    with pytest.raises(AuthorizationError):
        services.workflow.cancel(other_user.id, row["id"])
    assert _status(services, row["id"]) == "pending"


def test_backend_rechecks_ownership(make_services, enabled_facility, customer, other_user, book):
    svc = make_services(OWNER_DIRECT_UPDATES=False)
    row = book(enabled_facility, customer)
    with pytest.raises(ConfirmationError):
        svc.workflow.confirm(other_user.id, row["id"], "hi")
    assert _status(svc, row["id"]) == "pending"
    assert ThreadMessage.query.count() == 0


def test_unreachable_backend_is_fatal(make_services, enabled_facility, customer, owner, book):
    svc = make_services(OWNER_DIRECT_UPDATES=False, backend=UnreachableBackend())
    row = book(enabled_facility, customer)
    with pytest.raises(ConfirmationError):
        svc.workflow.confirm(owner.id, row["id"], "hi")
    assert _status(svc, row["id"]) == "pending"


def test_missing_and_terminal_reservations(services, enabled_facility, customer, owner, book):
    with pytest.raises(NotFoundError):
        services.workflow.confirm(owner.id, 4242)

    row = book(enabled_facility, customer)
    services.workflow.confirm(owner.id, row["id"])
    with pytest.raises(InvalidTransitionError):
        services.workflow.confirm(owner.id, row["id"])


def test_board_is_updated_optimistically_then_reconciled(services, enabled_facility, customer, owner, book):
    row = book(enabled_facility, customer)
    other = book(enabled_facility, customer, start="11:00")
    board = RecordingBoard(services.query, enabled_facility.id, ReservationFilters(status="pending"))
    board.load()

    result = services.workflow.confirm(owner.id, row["id"], board=board)

    assert {r["id"]: r["status"] for r in board.after_optimistic} == {row["id"]: "confirmed", other["id"]: "pending"}
    # the pending filter no longer matches the confirmed row
    assert [r["id"] for r in result.rows] == [other["id"]]
    assert board.rows == result.rows


def test_thread_failure_is_isolated(services, enabled_facility, customer, owner, book, monkeypatch):
    def broken_post(*args, **kwargs):
        raise NotificationDeliveryError("thread store down")

    monkeypatch.setattr(services.workflow.threads, "post", broken_post)
    row = book(enabled_facility, customer)
    result = services.workflow.confirm(owner.id, row["id"], "Thanks")

    assert result.reservation["status"] == "confirmed"
    assert result.thread_posted is False
    assert result.delivery.in_app == DELIVERED


def test_customer_cancels_and_owner_is_told(services, enabled_facility, customer, owner, book):
    row = book(enabled_facility, customer, start="15:00")
    now = datetime.combine(TODAY, datetime.min.time()).replace(hour=9)
    result = services.workflow.cancel(customer.id, row["id"], reason="Dog is sick", now=now)

    assert result.reservation["status"] == "cancelled"
    note = Notification.query.one()
    assert note.user_id == owner.id
    assert "Dog is sick" in note.message
    assert ThreadMessage.query.one().recipient_id == owner.id


def test_customer_cannot_cancel_inside_cutoff(services, enabled_facility, customer, book):
    row = book(enabled_facility, customer, start="10:00")
    now = datetime.combine(TODAY, datetime.min.time()).replace(hour=9, minute=30)
    with pytest.raises(ValidationError):
        services.workflow.cancel(customer.id, row["id"], now=now)
    assert _status(services, row["id"]) == "pending"


def test_owner_cancel_frees_the_slot(services, enabled_facility, customer, other_user, owner, book):
    first = book(enabled_facility, customer)
    book(enabled_facility, other_user)
    services.workflow.cancel(owner.id, first["id"], now=datetime.combine(TODAY, datetime.min.time()) + timedelta(hours=9, minutes=55))
    assert book(enabled_facility, other_user)["status"] == "pending"
    assert Notification.query.one().user_id == customer.id


def test_confirmed_reservations_cannot_be_cancelled(services, enabled_facility, customer, owner, book):
    row = book(enabled_facility, customer)
    services.workflow.confirm(owner.id, row["id"])
    with pytest.raises(InvalidTransitionError):
        services.workflow.cancel(owner.id, row["id"])
