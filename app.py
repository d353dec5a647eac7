import logging

from flask import Flask
from config import Config
from routes import health_bp, reservations_bp, backend_bp

from models import db
from flask_migrate import Migrate
from scheduling import build_services
from scheduling.schema import SchemaCapabilities
from utils.audit import log_event
from utils.auth_context import load_current_user


def create_app(config_object=Config, relay=None, backend=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(reservations_bp)
    app.register_blueprint(backend_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Optional columns are checked once here and passed to the engine
    with app.app_context():
        if app.config.get("AUTO_CREATE_TABLES"):
            db.create_all()
        capabilities = SchemaCapabilities.detect(db.engine)

    install_services(app, capabilities, relay=relay, backend=backend)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app


def install_services(app, capabilities, relay=None, backend=None):
    """(Re)build the engine for ``app``; tests call this after changing the schema."""
    app.extensions["schema_capabilities"] = capabilities
    app.extensions["scheduling"] = build_services(
        app.config, db.session, capabilities, audit=log_event, relay=relay, backend=backend
    )
    return app.extensions["scheduling"]

#-------------------------
import click
from flask import current_app
from models.facility import Facility
from scheduling import current_services
from scheduling.slots import format_clock, generate_slots

def register_cli(app):
    @app.cli.command("slots")
    @click.argument("facility_id", type=int)
    def slots(facility_id):
        """Print the bookable slots of a facility."""
        facility = db.session.get(Facility, facility_id)
        if not facility:
            print("Facility not found")
            return

        settings = current_services().settings.get(facility_id)
        rows = generate_slots(facility.opening_time, facility.closing_time, settings.slot_unit_minutes)
        print(f"{facility.name}: {len(rows)} slot(s) of {settings.slot_unit_minutes} min, "
              f"capacity {settings.capacity_per_slot}")
        for start, end in rows:
            print(f"  {format_clock(start)}-{format_clock(end)}")

    @app.cli.command("schema-capabilities")
    def schema_capabilities():
        """Show which optional columns this database has."""
        caps = current_app.extensions["schema_capabilities"]
        print(f"schema version: {caps.version}")
        if not caps.missing:
            print("all optional columns present")
        for name in sorted(caps.missing):
            print(f"missing: {name}")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
