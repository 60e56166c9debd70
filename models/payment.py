import uuid
from datetime import datetime
from models.db import db


class PaymentStatus:
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    TERMINAL = (SUCCESS, FAILED)


class PaymentProvider:
    CHAPA = "chapa"
    TELEBIRR = "telebirr"
    EBIRR = "ebirr"
    KAAFI = "kaafi"

    ALL = (CHAPA, TELEBIRR, EBIRR, KAAFI)
    # placeholder until the guest picks a provider
    DEFAULT = TELEBIRR


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = db.Column(db.String(36), db.ForeignKey("bookings.id"), nullable=False, index=True)

    provider = db.Column(db.String(20), nullable=False, default=PaymentProvider.DEFAULT)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="ETB")

    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING)  # PENDING, SUCCESS, FAILED
    provider_reference = db.Column(db.String(120), nullable=True, unique=True, index=True)
    transaction_id = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    booking = db.relationship("Booking", back_populates="payments")
    logs = db.relationship("PaymentLog", back_populates="payment", order_by="PaymentLog.created_at")
