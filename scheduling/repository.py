import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, insert, literal, select, update

from models.facility import Facility
from models.reservation import Reservation
from scheduling.errors import (
    CapacityExceededError,
    InvalidTransitionError,
    NotFoundError,
    SchemaDriftError,
    ValidationError,
)
from scheduling.schema import SchemaCapabilities
from scheduling.settings_store import ReservationSettingsStore
from scheduling.slots import find_slot, generate_slots, parse_clock, parse_day
from security.policy import ReservationAccessPolicy

log = logging.getLogger(__name__)

STATUSES = ("pending", "confirmed", "cancelled")
ACTIVE_STATUSES = ("pending", "confirmed")
CREATE_STATUSES = ("pending", "confirmed")

# pending is the only non-terminal state
TRANSITIONS = {"pending": ("confirmed", "cancelled")}

CUSTOMER_NAME_MAX_LENGTH = 120
GUEST_COUNT_MAX = 20


class ReservationRepository:
    def __init__(
        self,
        session,
        settings: ReservationSettingsStore,
        capabilities: SchemaCapabilities,
        policy: Optional[ReservationAccessPolicy] = None,
    ):
        self.session = session
        self.settings = settings
        self.capabilities = capabilities
        self.policy = policy or ReservationAccessPolicy()
        self.table = Reservation.__table__

    # ---------- reads ----------

    def _select(self, with_optional: bool):
        t = self.table
        columns = [
            t.c.id,
            t.c.facility_id,
            t.c.user_id,
            t.c.seat_code,
            t.c.reserved_date,
            t.c.start_time,
            t.c.end_time,
            t.c.guest_count,
            t.c.status,
            t.c.cancelled_at,
            t.c.cancel_reason,
            t.c.created_at,
        ]
        if with_optional:
            self.capabilities.require(t.name, ["customer_name"])
            columns.append(t.c.customer_name)
        return select(*columns)

    def _fetch(self, build) -> List[dict]:
        """Run ``build(select)``; when an optional column is absent, run the same query without it."""
        try:
            stmt = build(self._select(with_optional=True))
        except SchemaDriftError as exc:
            log.info("Querying %s without %s", exc.table, ", ".join(exc.columns))
            stmt = build(self._select(with_optional=False))
        return [dict(row._mapping) for row in self.session.execute(stmt)]

    def list(self, facility_id: int, date: Optional[date] = None, status: Optional[str] = None) -> List[dict]:
        t = self.table

        def build(stmt):
            stmt = stmt.where(t.c.facility_id == facility_id)
            if date is not None:
                stmt = stmt.where(t.c.reserved_date == date)
            if status and status != "all":
                stmt = stmt.where(t.c.status == status)
            return stmt.order_by(t.c.reserved_date.asc(), t.c.start_time.asc(), t.c.id.asc())

        return self._fetch(build)

    def get(self, reservation_id: int) -> dict:
        rows = self._fetch(lambda stmt: stmt.where(self.table.c.id == reservation_id))
        if not rows:
            raise NotFoundError("Reservation not found")
        return rows[0]

    def facility(self, facility_id: int) -> Facility:
        facility = self.session.get(Facility, facility_id)
        if facility is None or not facility.is_active:
            raise NotFoundError("Facility not found")
        return facility

    def _active_in_slot(self, facility_id: int, reserved_date: date, start_time):
        t = self.table
        return select(func.count(t.c.id)).where(
            t.c.facility_id == facility_id,
            t.c.reserved_date == reserved_date,
            t.c.start_time == start_time,
            t.c.status.in_(ACTIVE_STATUSES),
        )

    def count_active(self, facility_id: int, reserved_date: date, start_time) -> int:
        return self.session.execute(self._active_in_slot(facility_id, reserved_date, start_time)).scalar_one()

    def occupancy(self, facility_id: int, reserved_date: date) -> Dict:
        t = self.table
        rows = self.session.execute(
            select(t.c.start_time, func.count(t.c.id))
            .where(
                t.c.facility_id == facility_id,
                t.c.reserved_date == reserved_date,
                t.c.status.in_(ACTIVE_STATUSES),
            )
            .group_by(t.c.start_time)
        )
        return {start: count for start, count in rows}

    # ---------- writes ----------

    def create(
        self,
        facility_id: int,
        user_id: int,
        reserved_date,
        start_time,
        seat_code: Optional[str] = None,
        status: str = "pending",
        guest_count: int = 1,
        customer_name: Optional[str] = None,
        today: Optional[date] = None,
    ) -> dict:
        """
        Insert a reservation after checking the booking window, the slot grid,
        the seat list and the slot's remaining capacity.

        The row is written by a single INSERT ... SELECT that only produces a
        row while the slot is below capacity, so the count and the write are
        one statement. SQLite takes its write lock before that statement reads,
        and on databases with row locks the settings row is locked first, so
        concurrent creators for one slot cannot both pass the check.
        """
        facility = self.facility(facility_id)

        if status not in CREATE_STATUSES:
            raise ValidationError("status must be pending or confirmed", field="status")

        settings = self.settings.get(facility_id)
        if not settings.enabled:
            raise ValidationError("Reservations are not enabled for this facility", field="facility_id")

        day = parse_day(reserved_date, "reserved_date")
        today = today or date.today()
        last_day = today + timedelta(days=settings.allowed_days_ahead)
        if day < today or day > last_day:
            raise ValidationError(
                f"reserved_date must be between {today.isoformat()} and {last_day.isoformat()}",
                field="reserved_date",
            )

        start = parse_clock(start_time, "start_time")
        slots = generate_slots(facility.opening_time, facility.closing_time, settings.slot_unit_minutes)
        slot = find_slot(slots, start)
        if slot is None:
            raise ValidationError("start_time does not match a bookable slot", field="start_time")

        seats = self.settings.list_seats(facility_id)
        seat_code = (seat_code or "").strip() or None
        if seats and seat_code not in seats:
            raise ValidationError("seat_code must be one of the facility's seats", field="seat_code")
        if not seats and seat_code:
            raise ValidationError("This facility has no seats", field="seat_code")

        if isinstance(guest_count, bool) or not isinstance(guest_count, int) or guest_count < 1:
            raise ValidationError("guest_count must be a positive integer", field="guest_count")
        if guest_count > GUEST_COUNT_MAX:
            raise ValidationError(f"guest_count must be at most {GUEST_COUNT_MAX}", field="guest_count")

        customer_name = (customer_name or "").strip() or None
        if customer_name and len(customer_name) > CUSTOMER_NAME_MAX_LENGTH:
            raise ValidationError("customer_name is too long", field="customer_name")

        self.settings.lock(facility_id)
        if self.count_active(facility_id, day, slot[0]) >= settings.capacity_per_slot:
            self.session.rollback()
            raise CapacityExceededError("This time slot is fully booked")

        now = datetime.utcnow()
        values = dict(
            facility_id=facility_id,
            user_id=user_id,
            seat_code=seat_code,
            reserved_date=day,
            start_time=slot[0],
            end_time=slot[1],
            guest_count=guest_count,
            status=status,
            created_at=now,
            updated_at=now,
        )
        if customer_name:
            try:
                self.capabilities.require(self.table.name, ["customer_name"])
                values["customer_name"] = customer_name
            except SchemaDriftError:
                log.info("Storing reservation without customer_name (schema %s)", self.capabilities.version)

        new_id = self.session.execute(self._guarded_insert(values, settings.capacity_per_slot)).scalar()
        if new_id is None:
            # another creator took the last place after our count
            self.session.rollback()
            raise CapacityExceededError("This time slot is fully booked")
        self.session.commit()
        return self.get(new_id)

    def _guarded_insert(self, values: dict, capacity: int):
        t = self.table
        taken = self._active_in_slot(
            values["facility_id"], values["reserved_date"], values["start_time"]
        ).scalar_subquery()
        names = list(values)
        source = select(*[literal(values[name], type_=t.c[name].type) for name in names]).where(
            taken < capacity
        )
        return insert(t).from_select(names, source).returning(t.c.id)

    def update_status(
        self,
        reservation_id: int,
        status: str,
        actor_id: Optional[int] = None,
        privileged: bool = False,
        reason: Optional[str] = None,
    ) -> dict:
        t = self.table
        row = self.session.execute(
            select(t.c.id, t.c.status, t.c.user_id, Facility.owner_user_id)
            .select_from(t.join(Facility.__table__, Facility.id == t.c.facility_id))
            .where(t.c.id == reservation_id)
        ).first()
        if row is None:
            raise NotFoundError("Reservation not found")

        if not privileged:
            self.policy.check_update(actor_id, row.owner_user_id, row.user_id, status)

        if status not in TRANSITIONS.get(row.status, ()):
            raise InvalidTransitionError(row.status, status)

        now = datetime.utcnow()
        values = {"status": status, "updated_at": now}
        if status == "cancelled":
            values["cancelled_at"] = now
            values["cancel_reason"] = reason

        result = self.session.execute(
            update(t).where(t.c.id == reservation_id, t.c.status == row.status).values(**values)
        )
        if result.rowcount == 0:
            # someone else moved it first
            self.session.rollback()
            current = self.get(reservation_id)["status"]
            raise InvalidTransitionError(current, status)

        self.session.commit()
        return self.get(reservation_id)
