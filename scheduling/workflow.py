"""
Reservation status transitions.

Confirming runs in five steps, each finished before the next starts:

1. mutate the status (direct update, privileged backend route on a policy
   rejection),
2. mark the reservation confirmed in the caller's board,
3. compose the message (explicit text, else the facility's default),
4. dispatch it: thread post and notification fan-out, best effort,
5. reload the board from the database.

Only step 1 can fail the operation.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from scheduling.errors import (
    AuthorizationError,
    BackendUnavailableError,
    ConfirmationError,
    ValidationError,
)
from scheduling.notifications import DeliveryReport
from scheduling.slots import format_clock

log = logging.getLogger(__name__)

CONFIRMED_TITLE = "Reservation confirmed"
CANCELLED_TITLE = "Reservation cancelled"
PENDING_TITLE = "Reservation request received"


@dataclass
class TransitionResult:
    reservation: dict
    path: str = "direct"
    message: Optional[str] = None
    thread_posted: bool = False
    delivery: Optional[DeliveryReport] = None
    rows: Optional[List[dict]] = None

    def to_dict(self):
        return {
            "path": self.path,
            "message": self.message,
            "thread_posted": self.thread_posted,
            "delivery": self.delivery.to_dict() if self.delivery else None,
        }


def _slot_label(reservation) -> str:
    return "{} {}-{}".format(
        reservation["reserved_date"].isoformat(),
        format_clock(reservation["start_time"]),
        format_clock(reservation["end_time"]),
    )


class ConfirmationWorkflow:
    def __init__(
        self,
        repository,
        settings,
        backend,
        fanout,
        threads,
        audit=None,
        public_base_url: str = "",
        cancel_cutoff_minutes: int = 60,
    ):
        self.repository = repository
        self.settings = settings
        self.backend = backend
        self.fanout = fanout
        self.threads = threads
        self.audit = audit
        self.public_base_url = (public_base_url or "").rstrip("/")
        self.cancel_cutoff_minutes = cancel_cutoff_minutes

    # ---------- confirm ----------

    def confirm(self, actor_id, reservation_id, confirmation_message=None, board=None) -> TransitionResult:
        path = self._mutate_confirm(actor_id, reservation_id)

        if board is not None:
            board.apply_optimistic(reservation_id, "confirmed")

        reservation = self.repository.get(reservation_id)
        self._audit("RESERVATION_CONFIRM", actor_id, reservation_id, {"path": path})

        result = TransitionResult(reservation=reservation, path=path)
        result.message = self.compose_message(reservation["facility_id"], confirmation_message)
        if result.message:
            result.thread_posted = self._post_thread(
                reservation, sender_id=actor_id, recipient_id=reservation["user_id"], content=result.message
            )
            result.delivery = self.fanout.send(
                reservation["user_id"],
                CONFIRMED_TITLE,
                result.message,
                link=f"{self.public_base_url}/my-reservations",
                kind="reservation",
                actor_id=actor_id,
            )

        if board is not None:
            result.rows = board.reconcile_from_source()
        return result

    def _mutate_confirm(self, actor_id, reservation_id) -> str:
        try:
            self.repository.update_status(reservation_id, "confirmed", actor_id=actor_id)
            return "direct"
        except AuthorizationError as exc:
            log.info("Direct confirm of reservation %s rejected (%s), trying backend route", reservation_id, exc)
            self.repository.session.rollback()

        try:
            self.backend.confirm_reservation(actor_id, reservation_id)
        except (AuthorizationError, BackendUnavailableError, ValidationError) as exc:
            log.warning("Backend confirm of reservation %s failed: %s", reservation_id, exc)
            raise ConfirmationError("Could not confirm the reservation") from exc
        return "privileged"

    def compose_message(self, facility_id, explicit=None) -> Optional[str]:
        text = (explicit or "").strip()
        if text:
            return text
        return self.settings.get(facility_id).default_message()

    # ---------- cancel ----------

    def cancel(self, actor_id, reservation_id, reason=None, board=None, now=None) -> TransitionResult:
        """
        pending -> cancelled, by the customer who booked or by the facility
        owner. Customers must cancel at least ``cancel_cutoff_minutes`` before
        the slot starts. The slot's capacity is free again immediately.
        """
        reservation = self.repository.get(reservation_id)
        facility = self.repository.facility(reservation["facility_id"])
        by_owner = facility.owner_user_id == actor_id

        if not by_owner and actor_id == reservation["user_id"]:
            starts_at = datetime.combine(reservation["reserved_date"], reservation["start_time"])
            if starts_at - (now or datetime.now()) < timedelta(minutes=self.cancel_cutoff_minutes):
                raise ValidationError(
                    f"Reservations can be cancelled up to {self.cancel_cutoff_minutes} minutes before start",
                    field="reservation_id",
                )

        reason = (reason or "").strip()[:120] or None
        path = self._mutate_cancel(actor_id, reservation_id, reason, by_owner)
        reservation = self.repository.get(reservation_id)
        if board is not None:
            board.apply_optimistic(reservation_id, "cancelled")
        self._audit(
            "RESERVATION_CANCEL", actor_id, reservation_id, {"by_owner": by_owner, "reason": reason, "path": path}
        )

        recipient = reservation["user_id"] if by_owner else facility.owner_user_id
        content = f"{facility.name} / {_slot_label(reservation)} was cancelled."
        if reason:
            content = f"{content}\n{reason}"

        result = TransitionResult(reservation=reservation, path=path, message=content)
        result.thread_posted = self._post_thread(
            reservation, sender_id=actor_id, recipient_id=recipient, content=content
        )
        link = "/my-reservations" if by_owner else f"/facilities/{facility.id}/reservations"
        result.delivery = self.fanout.send(
            recipient, CANCELLED_TITLE, content, link=f"{self.public_base_url}{link}",
            kind="reservation", actor_id=actor_id,
        )

        if board is not None:
            result.rows = board.reconcile_from_source()
        return result

    def _mutate_cancel(self, actor_id, reservation_id, reason, by_owner) -> str:
        try:
            self.repository.update_status(reservation_id, "cancelled", actor_id=actor_id, reason=reason)
            return "direct"
        except AuthorizationError as exc:
            # customers have no privileged route
            if not by_owner:
                raise
            log.info("Direct cancel of reservation %s rejected (%s), trying backend route", reservation_id, exc)
            self.repository.session.rollback()

        try:
            self.backend.cancel_reservation(actor_id, reservation_id, reason=reason)
        except (AuthorizationError, BackendUnavailableError, ValidationError) as exc:
            log.warning("Backend cancel of reservation %s failed: %s", reservation_id, exc)
            raise ConfirmationError("Could not cancel the reservation") from exc
        return "privileged"

    # ---------- helpers ----------

    def _post_thread(self, reservation, sender_id, recipient_id, content) -> bool:
        try:
            self.threads.post(
                reservation["facility_id"], sender_id, recipient_id, content, reservation_id=reservation["id"]
            )
            return True
        except Exception as exc:
            log.warning("Thread message for reservation %s not posted: %s", reservation["id"], exc)
            return False

    def _audit(self, action, actor_id, reservation_id, metadata):
        if self.audit is None:
            return
        try:
            self.audit(action, user_id=actor_id, entity="reservation", entity_id=reservation_id, metadata=metadata)
        except SQLAlchemyError as exc:
            self.repository.session.rollback()
            log.warning("Audit %s for reservation %s not written: %s", action, reservation_id, exc)
