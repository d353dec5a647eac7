from flask import Blueprint, current_app, jsonify

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    caps = current_app.extensions.get("schema_capabilities")
    return jsonify(
        status="ok",
        schema_version=caps.version if caps else None,
        degraded=sorted(caps.missing) if caps else [],
    ), 200
