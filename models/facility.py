from datetime import datetime, time
from models.db import db

class Facility(db.Model):
    __tablename__ = "facilities"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # business hours used to derive bookable slots
    opening_time = db.Column(db.Time, nullable=False, default=time(9, 0))
    closing_time = db.Column(db.Time, nullable=False, default=time(18, 0))

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
