from datetime import datetime
from models.db import db


class ThreadMessage(db.Model):
    __tablename__ = "thread_messages"

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    recipient_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    reservation_id = db.Column(db.Integer, db.ForeignKey("reservations.id"), nullable=True)
    content = db.Column(db.Text, nullable=False)
    context = db.Column(db.String(20), nullable=False, default="reservation")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
