"""JSON shapes shared by the HTTP layer, receipts and notifications."""


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return float(value) if value is not None else None


def guest_dict(user):
    return {
        "id": user.id,
        "name": user.full_name,
        "phone": user.phone,
        "email": user.email,
    }


def hotel_dict(hotel):
    return {"id": hotel.id, "name": hotel.name, "location": hotel.location}


def room_dict(room):
    return {
        "id": room.id,
        "room_number": room.room_number,
        "room_type": room.room_type,
        "price_per_night": _money(room.price_per_night),
        "status": room.status,
    }


def booking_dict(booking, with_relations: bool = True):
    out = {
        "id": booking.id,
        "status": booking.status,
        "checkin_date": _iso(booking.checkin_date),
        "checkout_date": _iso(booking.checkout_date),
        "nights": booking.nights,
        "total_amount": _money(booking.total_amount),
        "confirmation_number": booking.confirmation_number,
        "created_at": _iso(booking.created_at),
    }
    if with_relations:
        out["guest"] = guest_dict(booking.user)
        out["hotel"] = hotel_dict(booking.hotel)
        out["room"] = room_dict(booking.room)
    return out


def payment_dict(payment):
    return {
        "id": payment.id,
        "booking_id": payment.booking_id,
        "amount": _money(payment.amount),
        "currency": payment.currency,
        "provider": payment.provider,
        "provider_reference": payment.provider_reference,
        "transaction_id": payment.transaction_id,
        "status": payment.status,
        "created_at": _iso(payment.created_at),
        "completed_at": _iso(payment.completed_at),
    }


def log_dict(log):
    return {"action": log.action, "details": log.details, "created_at": _iso(log.created_at)}


def receipt_dict(booking, payment):
    return {
        "confirmation_number": booking.confirmation_number,
        "guest_name": booking.user.full_name,
        "guest_phone": booking.user.phone,
        "hotel": booking.hotel.name,
        "room": booking.room.room_number,
        "checkin": _iso(booking.checkin_date),
        "checkout": _iso(booking.checkout_date),
        "nights": booking.nights,
        "amount_paid": _money(payment.amount),
        "currency": payment.currency,
        "payment_method": payment.provider,
        "transaction_id": payment.transaction_id or payment.provider_reference,
    }
