"""
The privileged, backend-mediated route.

Used when a direct mutation is rejected by the access policy. The backend
runs with elevated rights, so it checks ownership itself before acting.
Two flavours share one interface: ``LocalPrivilegedBackend`` runs in this
process, ``HttpPrivilegedBackend`` calls the endpoints in ``routes/backend.py``
on another deployment.
"""
import logging

import requests
from sqlalchemy.exc import SQLAlchemyError

from models.facility import Facility
from models.notification import Notification
from models.user import User
from scheduling.errors import (
    AuthorizationError,
    BackendUnavailableError,
    InvalidTransitionError,
    NotFoundError,
    NotificationDeliveryError,
    ValidationError,
)
from scheduling.notifications import DELIVERED, SKIPPED

log = logging.getLogger(__name__)


def _require_payload(payload):
    user_id = payload.get("userId")
    title = (payload.get("title") or "").strip()
    message = (payload.get("message") or "").strip()
    if not user_id or not title or not message:
        raise ValidationError("userId, title, message are required")
    return user_id, title, message


class LocalPrivilegedBackend:
    def __init__(self, session, repository, relay):
        self.session = session
        self.repository = repository
        self.line = relay

    def confirm_reservation(self, actor_id, reservation_id) -> dict:
        self._require_owner(actor_id, reservation_id, "confirm")
        log.info("Confirming reservation %s for owner %s through backend route", reservation_id, actor_id)
        return self.repository.update_status(reservation_id, "confirmed", actor_id=actor_id, privileged=True)

    def cancel_reservation(self, actor_id, reservation_id, reason=None) -> dict:
        self._require_owner(actor_id, reservation_id, "cancel")
        log.info("Cancelling reservation %s for owner %s through backend route", reservation_id, actor_id)
        return self.repository.update_status(
            reservation_id, "cancelled", actor_id=actor_id, privileged=True, reason=reason
        )

    def _require_owner(self, actor_id, reservation_id, action):
        reservation = self.repository.get(reservation_id)
        facility = self.session.get(Facility, reservation["facility_id"])
        if facility is None or facility.owner_user_id != actor_id:
            raise AuthorizationError(f"Only the facility owner can {action} this reservation")

    def notify(self, payload) -> None:
        user_id, title, message = _require_payload(payload)
        if self.session.get(User, user_id) is None:
            raise NotFoundError("User not found")
        self.session.add(Notification(
            user_id=user_id,
            title=title,
            message=message,
            link_url=payload.get("linkUrl"),
            kind=payload.get("kind") or "alert",
        ))
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise NotificationDeliveryError(f"backend in-app insert failed: {exc}") from exc

    def relay(self, payload) -> str:
        user_id, title, message = _require_payload(payload)
        user = self.session.get(User, user_id)
        # only linked accounts that opted in
        if user is None or not user.notify_opt_in or not user.line_user_id:
            return SKIPPED
        self.line.push(user.line_user_id, title, message, payload.get("linkUrl"))
        return DELIVERED


class HttpPrivilegedBackend:
    def __init__(self, base_url: str, service_key: str, timeout: float = 10, http=None):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self.http = http or requests

    def _post(self, path: str, body: dict) -> dict:
        try:
            resp = self.http.post(
                f"{self.base_url}{path}",
                json=body,
                headers={"X-Service-Key": self.service_key or ""},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise BackendUnavailableError(f"backend call {path} failed: {exc}") from exc

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        error = data.get("error") or resp.reason or "backend error"

        if resp.status_code == 400:
            raise ValidationError(error)
        if resp.status_code in (401, 403):
            raise AuthorizationError(error)
        if resp.status_code == 404:
            raise NotFoundError(error)
        if resp.status_code == 409:
            raise InvalidTransitionError(data.get("current", "unknown"), data.get("target", "unknown"))
        if resp.status_code >= 400:
            raise BackendUnavailableError(f"backend call {path} returned {resp.status_code}: {error}")
        return data

    def confirm_reservation(self, actor_id, reservation_id) -> dict:
        data = self._post("/backend/reservations/confirm", {"reservationId": reservation_id, "actorId": actor_id})
        return data.get("reservation") or {}

    def cancel_reservation(self, actor_id, reservation_id, reason=None) -> dict:
        data = self._post(
            "/backend/reservations/cancel",
            {"reservationId": reservation_id, "actorId": actor_id, "reason": reason},
        )
        return data.get("reservation") or {}

    def notify(self, payload) -> None:
        self._post("/backend/notify", payload)

    def relay(self, payload) -> str:
        return self._post("/backend/relay", payload).get("outcome", DELIVERED)
