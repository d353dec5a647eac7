import logging
from datetime import date

from flask import Blueprint, request, jsonify, g

from models import db
from models.facility import Facility
from scheduling import current_services
from scheduling.errors import NotFoundError, SchedulingError
from scheduling.filters import ReservationFilters
from scheduling.slots import format_clock, generate_slots, parse_day
from scheduling.workflow import CONFIRMED_TITLE, PENDING_TITLE
from utils.auth_context import facility_owner_required, login_required
from utils.audit import log_event
from utils.http_errors import error_response
from utils.serializers import reservation_json, reservations_json

log = logging.getLogger(__name__)

reservations_bp = Blueprint("reservations", __name__)


# ---------- ANYONE SIGNED IN: bookable slots for a day ----------
@reservations_bp.get("/facilities/<int:facility_id>/slots")
@login_required
def list_slots(facility_id: int):
    facility = db.session.get(Facility, facility_id)
    if not facility or not facility.is_active:
        return jsonify(error="Facility not found"), 404

    try:
        day = parse_day(request.args.get("date")) if request.args.get("date") else date.today()
    except SchedulingError as exc:
        return error_response(exc)

    svc = current_services()
    settings = svc.settings.get(facility_id)
    if not settings.enabled:
        return jsonify(facility_id=facility_id, date=day.isoformat(), enabled=False, slots=[]), 200

    booked = svc.repository.occupancy(facility_id, day)
    slots = generate_slots(facility.opening_time, facility.closing_time, settings.slot_unit_minutes)
    return jsonify(
        facility_id=facility_id,
        date=day.isoformat(),
        enabled=True,
        slot_unit_minutes=settings.slot_unit_minutes,
        capacity_per_slot=settings.capacity_per_slot,
        allowed_days_ahead=settings.allowed_days_ahead,
        seats=svc.settings.list_seats(facility_id),
        slots=[
            {
                "start_time": format_clock(start),
                "end_time": format_clock(end),
                "booked": booked.get(start, 0),
                "remaining": max(settings.capacity_per_slot - booked.get(start, 0), 0),
            }
            for start, end in slots
        ],
    ), 200


# ---------- OWNER: reservation settings ----------
@reservations_bp.get("/facilities/<int:facility_id>/reservation-settings")
@facility_owner_required
def get_settings(facility_id: int):
    svc = current_services()
    return jsonify(
        settings=svc.settings.get(facility_id).to_dict(),
        seats=svc.settings.list_seats(facility_id),
    ), 200


@reservations_bp.put("/facilities/<int:facility_id>/reservation-settings")
@facility_owner_required
def update_settings(facility_id: int):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify(error="JSON object body required"), 400

    try:
        result = current_services().settings.upsert(facility_id, data)
    except SchedulingError as exc:
        return error_response(exc)

    log_event(
        "SETTINGS_UPDATE", user_id=g.user.id, entity="facility", entity_id=facility_id,
        metadata={"fields": sorted(data), "degraded": result.degraded},
    )
    return jsonify(
        settings=result.settings.to_dict(),
        degraded=result.degraded,
        omitted_fields=list(result.omitted_fields),
    ), 200


@reservations_bp.get("/facilities/<int:facility_id>/seats")
@facility_owner_required
def get_seats(facility_id: int):
    return jsonify(seats=current_services().settings.list_seats(facility_id)), 200


@reservations_bp.put("/facilities/<int:facility_id>/seats")
@facility_owner_required
def replace_seats(facility_id: int):
    data = request.get_json(silent=True) or {}
    seats = data.get("seats")
    if not isinstance(seats, list):
        return jsonify(error="seats must be a list"), 400

    try:
        saved = current_services().settings.replace_seats(facility_id, seats)
    except SchedulingError as exc:
        return error_response(exc)

    log_event("SEATS_REPLACE", user_id=g.user.id, entity="facility", entity_id=facility_id,
              metadata={"count": len(saved)})
    return jsonify(seats=saved), 200


# ---------- OWNER: reservation listing ----------
@reservations_bp.get("/facilities/<int:facility_id>/reservations")
@facility_owner_required
def list_reservations(facility_id: int):
    try:
        filters = ReservationFilters.from_args(request.args)
    except SchedulingError as exc:
        return error_response(exc)

    rows = current_services().query.run(facility_id, filters)
    return jsonify(filters=filters.to_dict(), reservations=reservations_json(rows)), 200


# ---------- CUSTOMER: book a slot ----------
@reservations_bp.post("/facilities/<int:facility_id>/reservations")
@login_required
def create_reservation(facility_id: int):
    data = request.get_json(silent=True) or {}
    svc = current_services()

    try:
        settings = svc.settings.get(facility_id)
        row = svc.repository.create(
            facility_id,
            g.user.id,
            data.get("reserved_date"),
            data.get("start_time"),
            seat_code=data.get("seat_code"),
            status="confirmed" if settings.auto_confirm else "pending",
            guest_count=data.get("guest_count", 1),
            customer_name=data.get("customer_name") or g.user.full_name,
        )
    except SchedulingError as exc:
        if not isinstance(exc, NotFoundError):
            log_event("RESERVATION_CREATE_FAIL", user_id=g.user.id, entity="facility", entity_id=facility_id,
                      metadata={"error": str(exc)})
        return error_response(exc)

    log_event("RESERVATION_CREATE", user_id=g.user.id, entity="reservation", entity_id=row["id"],
              metadata={"status": row["status"]})

    facility = db.session.get(Facility, facility_id)
    summary = (
        f"{row['reserved_date'].isoformat()} "
        f"{format_clock(row['start_time'])}-{format_clock(row['end_time'])} / {row['guest_count']} guest(s)"
    )
    if row["seat_code"]:
        summary = f"{summary} / seat {row['seat_code']}"

    svc.fanout.send(
        g.user.id,
        CONFIRMED_TITLE if row["status"] == "confirmed" else PENDING_TITLE,
        f"{facility.name} / {summary}",
        link=f"{svc.workflow.public_base_url}/my-reservations",
        actor_id=g.user.id,
    )
    svc.fanout.send(
        facility.owner_user_id,
        "New reservation",
        f"{facility.name} / {summary}",
        link=f"{svc.workflow.public_base_url}/facilities/{facility_id}/reservations",
        actor_id=g.user.id,
    )
    return jsonify(reservation_json(row)), 201


# ---------- OWNER: confirm ----------
@reservations_bp.post("/reservations/<int:reservation_id>/confirm")
@login_required
def confirm_reservation(reservation_id: int):
    data = request.get_json(silent=True) or {}
    message = data.get("message")
    if message is not None and not isinstance(message, str):
        return jsonify(error="message must be text"), 400
    svc = current_services()

    try:
        reservation = svc.repository.get(reservation_id)
        filters = ReservationFilters.from_args(data)
        board = svc.board(reservation["facility_id"], filters)
        board.load()
        result = svc.workflow.confirm(g.user.id, reservation_id, message, board=board)
    except SchedulingError as exc:
        log.info("Confirm of reservation %s by user %s failed: %s", reservation_id, g.user.id, exc)
        return error_response(exc)

    return jsonify(
        reservation=reservation_json(result.reservation),
        outcome=result.to_dict(),
        reservations=reservations_json(result.rows),
    ), 200


# ---------- CUSTOMER / OWNER: cancel ----------
@reservations_bp.post("/reservations/<int:reservation_id>/cancel")
@login_required
def cancel_reservation(reservation_id: int):
    data = request.get_json(silent=True) or {}
    reason = data.get("reason")
    if reason is not None and not isinstance(reason, str):
        return jsonify(error="reason must be text"), 400

    try:
        result = current_services().workflow.cancel(g.user.id, reservation_id, reason=reason)
    except SchedulingError as exc:
        return error_response(exc)

    return jsonify(reservation=reservation_json(result.reservation), outcome=result.to_dict()), 200
