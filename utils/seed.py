from decimal import Decimal

from models import db
from models.hotel import Hotel
from models.room import Room

DEFAULT_CATALOG = [
    {
        "name": "Skylight Hotel",
        "location": "Addis Ababa",
        "rooms": [("101", "standard", "2000.00"), ("102", "standard", "2000.00"), ("201", "suite", "4500.00")],
    },
    {
        "name": "Haile Resort",
        "location": "Hawassa",
        "rooms": [("11", "standard", "1800.00"), ("12", "deluxe", "2600.00")],
    },
]


def seed_catalog(catalog=None):
    """Insert sample hotels/rooms; hotels that already exist by name are skipped."""
    catalog = catalog or DEFAULT_CATALOG
    existing = {h.name for h in Hotel.query.all()}
    created = 0
    for entry in catalog:
        if entry["name"] in existing:
            continue
        hotel = Hotel(name=entry["name"], location=entry.get("location"))
        db.session.add(hotel)
        db.session.flush()
        for number, room_type, rate in entry["rooms"]:
            db.session.add(Room(hotel_id=hotel.id, room_number=number, room_type=room_type,
                                price_per_night=Decimal(rate)))
        created += 1
    db.session.commit()
    return created
