import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from models.notification import Notification
from models.thread_message import ThreadMessage
from scheduling.errors import NotificationDeliveryError
from security.policy import ReservationAccessPolicy

log = logging.getLogger(__name__)

DELIVERED = "delivered"
FALLBACK = "fallback"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class DeliveryReport:
    in_app: str = SKIPPED
    relay: str = SKIPPED
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self):
        return {"in_app": self.in_app, "relay": self.relay, "errors": dict(self.errors)}


class NotificationStore:
    """Direct in-app notification inserts, subject to the access policy."""

    def __init__(self, session, policy: Optional[ReservationAccessPolicy] = None, allow_cross_user: bool = True):
        self.session = session
        self.policy = policy or ReservationAccessPolicy()
        self.allow_cross_user = allow_cross_user

    def insert(self, user_id, title, message, link_url=None, kind="alert", actor_id=None) -> Notification:
        self.policy.check_notify(actor_id, user_id, self.allow_cross_user)
        row = Notification(user_id=user_id, title=title, message=message, link_url=link_url, kind=kind)
        self.session.add(row)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise NotificationDeliveryError(f"in-app insert failed: {exc}") from exc
        return row


class ThreadStore:
    """The owner <-> customer conversation thread of a facility."""

    def __init__(self, session):
        self.session = session

    def post(self, facility_id, sender_id, recipient_id, content, reservation_id=None) -> ThreadMessage:
        msg = ThreadMessage(
            facility_id=facility_id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            reservation_id=reservation_id,
            content=content,
            context="reservation",
        )
        self.session.add(msg)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise NotificationDeliveryError(f"thread post failed: {exc}") from exc
        return msg


class NotificationFanout:
    """
    Deliver one message over every channel, each on its own.

    In-app first, falling back to the privileged backend route; then the
    external relay regardless of how the in-app channel went. Failures are
    logged and written into the report, never raised.
    """

    def __init__(self, store: NotificationStore, backend):
        self.store = store
        self.backend = backend

    def send(self, user_id, title, message, link=None, kind="reservation", actor_id=None) -> DeliveryReport:
        payload = {"userId": user_id, "title": title, "message": message, "linkUrl": link, "kind": kind}
        report = DeliveryReport()

        try:
            self.store.insert(user_id, title, message, link_url=link, kind=kind, actor_id=actor_id)
            report.in_app = DELIVERED
        except Exception as exc:
            log.info("In-app notification for user %s failed (%s), using backend route", user_id, exc)
            try:
                self.backend.notify(payload)
                report.in_app = FALLBACK
            except Exception as fallback_exc:
                log.warning("In-app notification for user %s not delivered: %s", user_id, fallback_exc)
                report.in_app = FAILED
                report.errors["in_app"] = str(fallback_exc)

        try:
            report.relay = self.backend.relay(payload)
        except Exception as exc:
            log.warning("Relay to user %s not delivered: %s", user_id, exc)
            report.relay = FAILED
            report.errors["relay"] = str(exc)

        return report
