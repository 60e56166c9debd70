import uuid
from datetime import datetime
from models.db import db


class PaymentLog(db.Model):
    """Append-only audit trail for the booking/payment flow."""

    __tablename__ = "payment_logs"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_id = db.Column(db.String(36), db.ForeignKey("payments.id"), nullable=False, index=True)
    booking_id = db.Column(db.String(36), db.ForeignKey("bookings.id"), nullable=False, index=True)

    action = db.Column(db.String(80), nullable=False)  # e.g. BOOKING_CREATED, PAYMENT_SUCCESS
    details = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    payment = db.relationship("Payment", back_populates="logs")
