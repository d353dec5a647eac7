from flask import Blueprint, jsonify, request

from scheduling import current_services
from scheduling.errors import SchedulingError
from security.service_key import require_service_key
from utils.audit import log_event
from utils.http_errors import error_response
from utils.serializers import reservation_json

backend_bp = Blueprint("backend", __name__, url_prefix="/backend")


# ---------- privileged status mutation (ownership re-checked here) ----------
@backend_bp.post("/reservations/confirm")
@require_service_key
def confirm_reservation():
    data = request.get_json(silent=True) or {}
    reservation_id = data.get("reservationId")
    actor_id = data.get("actorId")
    if not reservation_id or not actor_id:
        return jsonify(error="reservationId and actorId are required"), 400

    try:
        row = current_services().local_backend.confirm_reservation(int(actor_id), int(reservation_id))
    except SchedulingError as exc:
        return error_response(exc)

    log_event("BACKEND_RESERVATION_CONFIRM", user_id=int(actor_id), entity="reservation", entity_id=reservation_id)
    return jsonify(ok=True, reservation=reservation_json(row)), 200


@backend_bp.post("/reservations/cancel")
@require_service_key
def cancel_reservation():
    data = request.get_json(silent=True) or {}
    reservation_id = data.get("reservationId")
    actor_id = data.get("actorId")
    if not reservation_id or not actor_id:
        return jsonify(error="reservationId and actorId are required"), 400
    reason = data.get("reason")
    if reason is not None and not isinstance(reason, str):
        return jsonify(error="reason must be text"), 400

    try:
        row = current_services().local_backend.cancel_reservation(
            int(actor_id), int(reservation_id), reason=(reason or "").strip()[:120] or None
        )
    except SchedulingError as exc:
        return error_response(exc)

    log_event("BACKEND_RESERVATION_CANCEL", user_id=int(actor_id), entity="reservation", entity_id=reservation_id)
    return jsonify(ok=True, reservation=reservation_json(row)), 200


# ---------- privileged in-app notification ----------
@backend_bp.post("/notify")
@require_service_key
def notify():
    data = request.get_json(silent=True) or {}
    try:
        current_services().local_backend.notify(data)
    except SchedulingError as exc:
        return error_response(exc)
    return jsonify(ok=True), 200


# ---------- external relay ----------
@backend_bp.post("/relay")
@require_service_key
def relay():
    data = request.get_json(silent=True) or {}
    try:
        outcome = current_services().local_backend.relay(data)
    except SchedulingError as exc:
        return error_response(exc)
    return jsonify(ok=True, outcome=outcome), 200
