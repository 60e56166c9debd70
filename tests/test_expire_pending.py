from datetime import date, timedelta

import pytest
from sqlalchemy import select

from jobs import expire_pending
from jobs.expire_pending import expire_pending_bookings
from models import db, Booking, BookingStatus, Payment, PaymentLog, PaymentStatus, Room, RoomStatus


@pytest.fixture
def sweeper(app):
    return app.extensions["expiration_sweeper"]


def _created_at(booking_id):
    return db.session.get(Booking, booking_id).created_at


def _created_at_any():
    return db.session.execute(select(Booking.created_at)).scalars().first()


def test_sweeper_respects_grace_window(book, sweeper, catalog):
    created = book()
    booking_id = created["booking"]["id"]
    started = _created_at(booking_id)

    result = sweeper.run_once(now=started + timedelta(minutes=14))
    assert result["success"] is True
    assert result["expired"] == 0
    db.session.expire_all()
    assert db.session.get(Booking, booking_id).status == BookingStatus.PENDING
    assert db.session.get(Room, catalog.room_id).status == RoomStatus.OCCUPIED

    result = sweeper.run_once(now=started + timedelta(minutes=16))
    assert result["expired"] == 1
    db.session.expire_all()
    assert db.session.get(Booking, booking_id).status == BookingStatus.EXPIRED
    assert db.session.get(Room, catalog.room_id).status == RoomStatus.AVAILABLE
    payment = db.session.get(Payment, created["payment"]["id"])
    assert payment.status == PaymentStatus.FAILED
    assert payment.completed_at is not None
    actions = db.session.execute(
        select(PaymentLog.action).where(PaymentLog.booking_id == booking_id)
    ).scalars().all()
    assert "BOOKING_EXPIRED" in actions
    assert sweeper.status()["last_result"]["expired"] == 1


def test_expired_room_can_be_booked_again(book, catalog):
    book()
    assert expire_pending_bookings(now=_created_at_any() + timedelta(minutes=16)) == 1
    again = book(name="Sara Tesfaye", contact="+251922000000")
    assert again["booking"]["status"] == "PENDING"


def test_confirmed_bookings_are_left_alone(book, orchestrator, providers, catalog):
    created = book()
    orchestrator.initiate_payment(created["booking"]["id"], "chapa")
    orchestrator.verify_payment(created["payment"]["id"])

    assert expire_pending_bookings(now=_created_at(created["booking"]["id"]) + timedelta(hours=2)) == 0
    assert db.session.get(Booking, created["booking"]["id"]).status == BookingStatus.CONFIRMED
    assert db.session.get(Room, catalog.room_id).status == RoomStatus.OCCUPIED


def test_room_held_by_another_active_booking_stays_occupied(book, catalog):
    created = book()
    pending = db.session.get(Booking, created["booking"]["id"])
    checkin = date.today() + timedelta(days=60)
    db.session.add(Booking(
        user_id=pending.user_id,
        hotel_id=pending.hotel_id,
        room_id=pending.room_id,
        checkin_date=checkin,
        checkout_date=checkin + timedelta(days=1),
        nights=1,
        total_amount=pending.total_amount,
        status=BookingStatus.CONFIRMED,
    ))
    db.session.commit()

    assert expire_pending_bookings(now=_created_at(created["booking"]["id"]) + timedelta(minutes=16)) == 1
    assert db.session.get(Room, catalog.room_id).status == RoomStatus.OCCUPIED


def test_nothing_to_expire(app):
    assert expire_pending_bookings() == 0


def test_overlapping_tick_is_skipped(sweeper):
    sweeper._running.acquire()
    try:
        assert sweeper.is_running is True
        assert sweeper.run_once() is None
    finally:
        sweeper._running.release()
    assert sweeper.last_result is None


def test_failed_sweep_is_recorded_and_releases_guard(sweeper, monkeypatch):
    def boom(**kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(expire_pending, "expire_pending_bookings", boom)
    result = sweeper.run_once()

    assert result["success"] is False
    assert result["error"] == "database went away"
    assert sweeper.is_running is False


def test_start_and_stop(sweeper, monkeypatch):
    ticks = []
    monkeypatch.setattr(sweeper, "run_once", lambda now=None: ticks.append(now))
    sweeper.interval_seconds = 3600
    sweeper.start()
    try:
        assert sweeper.is_active is True
        sweeper.start()  # second start is ignored
        assert sweeper.is_active is True
    finally:
        sweeper.stop()
    assert sweeper.is_active is False

    status = sweeper.status()
    assert status["interval_seconds"] == 3600
    assert status["grace_minutes"] == 15
