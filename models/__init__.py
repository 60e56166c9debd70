from .db import db
from .hotel import Hotel
from .room import Room, RoomStatus
from .user import User
from .booking import Booking, BookingStatus
from .payment import Payment, PaymentStatus, PaymentProvider
from .payment_log import PaymentLog
