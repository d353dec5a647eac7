from functools import wraps
from flask import g, jsonify
from security.session import get_session_from_request
from models import db
from models.facility import Facility
from models.user import User

def load_current_user():
    sess = get_session_from_request()
    if not sess:
        g.user = None
        g.session = None
        return
    g.session = sess
    g.user = db.session.get(User, sess.user_id)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper

def facility_owner_required(fn):
    """
    Usage: @facility_owner_required on a view taking ``facility_id``.
    Sets g.facility; other owners get the same 404 as a missing facility.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        facility = db.session.get(Facility, kwargs.get("facility_id"))
        if not facility or not facility.is_active or facility.owner_user_id != g.user.id:
            return jsonify(error="Facility not found"), 404
        g.facility = facility
        return fn(*args, **kwargs)
    return wrapper
