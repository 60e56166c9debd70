import uuid
from datetime import datetime
from models.db import db


class RoomStatus:
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"
    OUT_OF_ORDER = "OUT_OF_ORDER"


class Room(db.Model):
    __tablename__ = "rooms"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    hotel_id = db.Column(db.String(36), db.ForeignKey("hotels.id"), nullable=False, index=True)
    room_number = db.Column(db.String(20), nullable=False)
    room_type = db.Column(db.String(40), nullable=False, default="standard")

    # nightly rate in ETB; bookings snapshot it into total_amount
    price_per_night = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=RoomStatus.AVAILABLE)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    hotel = db.relationship("Hotel", back_populates="rooms")

    __table_args__ = (
        db.UniqueConstraint("hotel_id", "room_number", name="uq_hotel_room_number"),
    )
