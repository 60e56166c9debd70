import uuid
from datetime import datetime
from models.db import db


class BookingStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    # bookings in these states hold their room for the date range
    ACTIVE = (PENDING, CONFIRMED)


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    hotel_id = db.Column(db.String(36), db.ForeignKey("hotels.id"), nullable=False, index=True)
    room_id = db.Column(db.String(36), db.ForeignKey("rooms.id"), nullable=False, index=True)

    checkin_date = db.Column(db.Date, nullable=False)
    checkout_date = db.Column(db.Date, nullable=False)
    nights = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING, index=True)
    # status values: PENDING, CONFIRMED, CANCELLED, EXPIRED

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = db.relationship("User")
    hotel = db.relationship("Hotel")
    room = db.relationship("Room")
    payments = db.relationship("Payment", back_populates="booking", order_by="Payment.created_at")

    __table_args__ = (
        db.CheckConstraint("checkout_date > checkin_date", name="ck_booking_dates"),
        db.CheckConstraint("nights >= 1", name="ck_booking_nights"),
    )

    @property
    def confirmation_number(self) -> str:
        return self.id.replace("-", "")[-8:].upper()
