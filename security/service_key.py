import hmac
from functools import wraps
from flask import current_app, jsonify, request

def require_service_key(fn):
    """
    Usage: @require_service_key on backend-only endpoints.
    Callers present BACKEND_SERVICE_KEY in the X-Service-Key header.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("BACKEND_SERVICE_KEY")
        presented = request.headers.get("X-Service-Key", "")
        if not expected or not hmac.compare_digest(presented, expected):
            return jsonify(error="Forbidden"), 403
        return fn(*args, **kwargs)
    return wrapper
