"""Booking creation: the only gate against double-booking a room."""
import logging
import re
from datetime import date, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking, BookingStatus
from models.hotel import Hotel, HOTEL_ACTIVE
from models.payment import Payment, PaymentProvider, PaymentStatus
from models.room import Room, RoomStatus
from models.user import User, ROLE_CUSTOMER
from services.errors import ValidationFailed, NotFound, RoomUnavailable, DuplicateRequest
from services.presenters import booking_dict, payment_dict
from utils.audit import log_payment_event
from utils.transaction import unit_of_work

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_date(value: str, field: str) -> date:
    if not DATE_RE.match(value or ""):
        raise ValidationFailed(f"Invalid {field} date. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationFailed(f"Invalid {field} date. Use YYYY-MM-DD")


def compute_stay(checkin: date, checkout: date, nightly_rate):
    """nights = max(1, checkout - checkin), total = nights * rate."""
    nights = max(1, (checkout - checkin).days)
    return nights, nightly_rate * nights


def overlap_clause(room_id, checkin, checkout):
    # [checkin, checkout) ranges overlap iff each starts before the other ends
    return (
        Booking.room_id == room_id,
        Booking.status.in_(BookingStatus.ACTIVE),
        Booking.checkin_date < checkout,
        Booking.checkout_date > checkin,
    )


class BookingGuard:

    def __init__(self, room_locks, notifier=None, max_nights: int = 30, max_advance_days: int = 365,
                 currency: str = "ETB"):
        self.room_locks = room_locks
        self.notifier = notifier
        self.max_nights = max_nights
        self.max_advance_days = max_advance_days
        self.currency = currency

    # ---------- input validation ----------
    def validate(self, guest_name, guest_contact, hotel_id, room_id, checkin, checkout, today=None):
        fields = {
            "guestName": guest_name, "guestContact": guest_contact, "hotelId": hotel_id,
            "roomId": room_id, "checkIn": checkin, "checkOut": checkout,
        }
        not_text = [k for k, v in fields.items() if v is not None and not isinstance(v, str)]
        if not_text:
            raise ValidationFailed("Fields must be strings: " + ", ".join(not_text))
        cleaned = {k: (v or "").strip() for k, v in fields.items()}
        missing = [k for k, v in cleaned.items() if not v]
        if missing:
            raise ValidationFailed("All fields are required: " + ", ".join(missing))

        contact = cleaned["guestContact"]
        if not (PHONE_RE.match(contact) or EMAIL_RE.match(contact)):
            raise ValidationFailed("guestContact must be a valid phone number or e-mail address")

        checkin_date = parse_date(cleaned["checkIn"], "check-in")
        checkout_date = parse_date(cleaned["checkOut"], "check-out")
        if checkout_date <= checkin_date:
            raise ValidationFailed("Check-out date must be after check-in date")

        today = today or datetime.utcnow().date()
        if checkin_date < today:
            raise ValidationFailed("Check-in date cannot be in the past")
        if checkin_date > today + timedelta(days=self.max_advance_days):
            raise ValidationFailed(f"Check-in date cannot be more than {self.max_advance_days} days in advance")
        if (checkout_date - checkin_date).days > self.max_nights:
            raise ValidationFailed(f"Booking duration cannot exceed {self.max_nights} nights")

        return cleaned, checkin_date, checkout_date

    # ---------- guest identity ----------
    @staticmethod
    def find_guest(session, contact):
        column = User.email if "@" in contact else User.phone
        return session.execute(select(User).where(column == contact)).scalar_one_or_none()

    @staticmethod
    def create_guest(session, name, contact):
        first, _, last = name.partition(" ")
        guest = User(
            first_name=first,
            last_name=last.strip() or None,
            role=ROLE_CUSTOMER,
            **({"email": contact} if "@" in contact else {"phone": contact}),
        )
        session.add(guest)
        session.flush()
        return guest

    @classmethod
    def _create_or_find_guest(cls, session, name, contact):
        # the contact may have been registered by a concurrent booking on another room
        try:
            with session.begin_nested():
                return cls.create_guest(session, name, contact)
        except IntegrityError:
            guest = cls.find_guest(session, contact)
            if guest is None:
                raise
            logger.info("Guest %s registered concurrently, reusing", contact)
            return guest

    @staticmethod
    def _find_duplicate(session, guest, hotel_id, room_id, checkin, checkout):
        if guest is None:
            return None
        return session.execute(
            select(Booking).where(
                Booking.user_id == guest.id,
                Booking.hotel_id == hotel_id,
                Booking.room_id == room_id,
                Booking.checkin_date == checkin,
                Booking.checkout_date == checkout,
                Booking.status.in_(BookingStatus.ACTIVE),
            )
        ).scalars().first()

    # ---------- createBooking ----------
    def create_booking(self, guest_name, guest_contact, hotel_id, room_id, checkin, checkout, today=None):
        cleaned, checkin_date, checkout_date = self.validate(
            guest_name, guest_contact, hotel_id, room_id, checkin, checkout, today=today)
        name, contact = cleaned["guestName"], cleaned["guestContact"]
        hotel_id, room_id = cleaned["hotelId"], cleaned["roomId"]

        # held from before the room read until after commit
        with self.room_locks.hold(room_id):
            with unit_of_work() as session:
                hotel = session.get(Hotel, hotel_id)
                if not hotel or hotel.status != HOTEL_ACTIVE:
                    raise NotFound("Hotel not found or inactive")

                room = session.execute(
                    select(Room).where(Room.id == room_id, Room.hotel_id == hotel_id).with_for_update()
                ).scalar_one_or_none()
                if not room:
                    raise NotFound("Room not found or does not belong to this hotel")

                conflict = session.execute(
                    select(Booking.id).where(*overlap_clause(room_id, checkin_date, checkout_date))
                ).first()
                guest = self.find_guest(session, contact)

                if room.status != RoomStatus.AVAILABLE or conflict:
                    if self._find_duplicate(session, guest, hotel_id, room_id, checkin_date, checkout_date):
                        logger.info("Duplicate booking request room=%s contact=%s", room_id, contact)
                        raise DuplicateRequest()
                    logger.info("Room %s unavailable for %s..%s", room_id, checkin_date, checkout_date)
                    raise RoomUnavailable()

                if guest is None:
                    guest = self._create_or_find_guest(session, name, contact)

                nights, total = compute_stay(checkin_date, checkout_date, room.price_per_night)
                booking = Booking(
                    user_id=guest.id,
                    hotel_id=hotel.id,
                    room_id=room.id,
                    checkin_date=checkin_date,
                    checkout_date=checkout_date,
                    nights=nights,
                    total_amount=total,
                    status=BookingStatus.PENDING,
                )
                session.add(booking)
                session.flush()

                payment = Payment(
                    booking_id=booking.id,
                    amount=total,
                    currency=self.currency,
                    provider=PaymentProvider.DEFAULT,
                    status=PaymentStatus.PENDING,
                )
                session.add(payment)
                session.flush()
                log_payment_event(payment, "BOOKING_CREATED", f"Booking created for {name} ({contact})",
                                  session=session)

                # compare-and-set: only one transaction can move the room off AVAILABLE
                flipped = session.execute(
                    update(Room)
                    .where(Room.id == room.id, Room.status == RoomStatus.AVAILABLE)
                    .values(status=RoomStatus.OCCUPIED)
                )
                if flipped.rowcount != 1:
                    raise RoomUnavailable()

                result = {
                    "booking": booking_dict(booking),
                    "payment": payment_dict(payment),
                    "next_step": {
                        "action": "initiate_payment",
                        "endpoint": "/payments/initiate",
                        "required_data": {
                            "bookingId": booking.id,
                            "provider": "|".join(PaymentProvider.ALL),
                        },
                    },
                }

        logger.info("Booking %s created room=%s nights=%s total=%s", result["booking"]["id"], room_id,
                    nights, total)
        if self.notifier:
            self.notifier.notify("booking.created", {
                "booking_id": result["booking"]["id"],
                "confirmation_number": result["booking"]["confirmation_number"],
                "hotel": hotel_id,
                "room": room_id,
                "checkin": checkin_date.isoformat(),
                "checkout": checkout_date.isoformat(),
                "total_amount": result["booking"]["total_amount"],
            }, email=result["booking"]["guest"]["email"])
        return result

    # ---------- read ----------
    def get_booking(self, booking_id):
        booking = db.session.get(Booking, booking_id)
        if not booking:
            raise NotFound("Booking not found")
        out = booking_dict(booking)
        out["payments"] = [payment_dict(p) for p in booking.payments]
        return out
