from flask import Blueprint, request, current_app

from utils.responses import success

booking_bp = Blueprint("booking", __name__, url_prefix="/bookings")


def _guard():
    return current_app.extensions["booking_guard"]


# ---------- GUESTS: reserve a room (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("")
def create_booking():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        data = {}
    result = _guard().create_booking(
        guest_name=data.get("guestName"),
        guest_contact=data.get("guestContact"),
        hotel_id=data.get("hotelId"),
        room_id=data.get("roomId"),
        checkin=data.get("checkIn"),
        checkout=data.get("checkOut"),
    )
    return success(result, "Booking created successfully. Room is temporarily locked pending payment.", 201)


# ---------- view one booking with its payment history ----------
@booking_bp.get("/<booking_id>")
def get_booking(booking_id: str):
    return success(_guard().get_booking(booking_id))
