from models.db import db

class Seat(db.Model):
    __tablename__ = "facility_seats"

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)
    seat_code = db.Column(db.String(32), nullable=False)

    __table_args__ = (
        db.UniqueConstraint("facility_id", "seat_code", name="uq_facility_seat_code"),
    )
