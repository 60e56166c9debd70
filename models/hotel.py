import uuid
from datetime import datetime
from models.db import db

HOTEL_ACTIVE = "ACTIVE"
HOTEL_INACTIVE = "INACTIVE"


class Hotel(db.Model):
    __tablename__ = "hotels"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(160), nullable=False)
    location = db.Column(db.String(160), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=HOTEL_ACTIVE)
    # status values: ACTIVE, INACTIVE

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    rooms = db.relationship("Room", back_populates="hotel")
