from flask import jsonify

from scheduling.errors import (
    AuthorizationError,
    CapacityExceededError,
    ConfirmationError,
    InvalidTransitionError,
    NotificationDeliveryError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)


def error_response(exc: SchedulingError):
    """Map an engine error onto the JSON error shape used by every endpoint."""
    if isinstance(exc, ValidationError):
        body = {"error": str(exc)}
        if exc.field:
            body["field"] = exc.field
        return jsonify(body), 400
    if isinstance(exc, NotFoundError):
        return jsonify(error=str(exc)), 404
    if isinstance(exc, AuthorizationError):
        return jsonify(error="Forbidden"), 403
    if isinstance(exc, CapacityExceededError):
        return jsonify(error=str(exc)), 409
    if isinstance(exc, InvalidTransitionError):
        return jsonify(error=str(exc), current=exc.current, target=exc.target), 409
    if isinstance(exc, ConfirmationError):
        if isinstance(exc.__cause__, AuthorizationError):
            return jsonify(error="Forbidden"), 403
        return jsonify(error=str(exc)), 502
    if isinstance(exc, NotificationDeliveryError):
        return jsonify(error=str(exc)), 502
    return jsonify(error="Internal error"), 500
