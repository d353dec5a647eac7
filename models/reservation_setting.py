from datetime import datetime
import sqlalchemy as sa
from models.db import db

class ReservationSetting(db.Model):
    __tablename__ = "reservation_settings"

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, unique=True)

    enabled = db.Column(db.Boolean, default=False, nullable=False)
    slot_unit_minutes = db.Column(db.Integer, default=60, nullable=False)
    allowed_days_ahead = db.Column(db.Integer, default=90, nullable=False)
    capacity_per_slot = db.Column(db.Integer, default=10, nullable=False)
    auto_confirm = db.Column(db.Boolean, default=True, nullable=False)

    # optional: added by migration e4f5a6b7c8d9, older deployments lack them
    auto_message_enabled = db.Column(db.Boolean, server_default=sa.false(), nullable=False)
    auto_message_text = db.Column(db.Text, nullable=True)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
