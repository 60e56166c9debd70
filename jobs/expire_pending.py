"""Expire bookings whose payment never completed and give their rooms back."""
import logging
import threading
import time
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import select, update, insert, exists, and_
from sqlalchemy.orm import aliased

from models.booking import Booking, BookingStatus
from models.payment import Payment, PaymentStatus
from models.payment_log import PaymentLog
from models.room import Room, RoomStatus
from utils.transaction import unit_of_work

logger = logging.getLogger(__name__)

JOB_ID = "expire-pending-bookings"


def expire_pending_bookings(now: datetime = None, grace_minutes: int = 15) -> int:
    """Set-based expiry of PENDING bookings created before ``now - grace``.

    In one transaction: bookings -> EXPIRED, their PENDING payments -> FAILED,
    a BOOKING_EXPIRED log per payment, and rooms with no other active booking
    -> AVAILABLE. Returns the number of bookings expired.
    """
    now = now or datetime.utcnow()
    cutoff = now - timedelta(minutes=grace_minutes)

    with unit_of_work() as session:
        rows = session.execute(
            select(Booking.id, Booking.room_id)
            .where(Booking.status == BookingStatus.PENDING, Booking.created_at < cutoff)
            .with_for_update()
        ).all()
        if not rows:
            return 0
        booking_ids = [r.id for r in rows]
        room_ids = {r.room_id for r in rows}

        session.execute(
            update(Booking)
            .where(Booking.id.in_(booking_ids), Booking.status == BookingStatus.PENDING)
            .values(status=BookingStatus.EXPIRED, updated_at=now),
            execution_options={"synchronize_session": False},
        )

        pending_payments = session.execute(
            select(Payment.id, Payment.booking_id)
            .where(Payment.booking_id.in_(booking_ids), Payment.status == PaymentStatus.PENDING)
        ).all()
        if pending_payments:
            session.execute(
                update(Payment)
                .where(Payment.id.in_([p.id for p in pending_payments]))
                .values(status=PaymentStatus.FAILED, completed_at=now),
                execution_options={"synchronize_session": False},
            )
            session.execute(insert(PaymentLog), [
                {
                    "payment_id": p.id,
                    "booking_id": p.booking_id,
                    "action": "BOOKING_EXPIRED",
                    "details": f"Booking expired unpaid after {grace_minutes} minutes; room released",
                    "created_at": now,
                }
                for p in pending_payments
            ])

        other = aliased(Booking)
        session.execute(
            update(Room)
            .where(
                Room.id.in_(room_ids),
                Room.status == RoomStatus.OCCUPIED,
                ~exists().where(and_(other.room_id == Room.id, other.status.in_(BookingStatus.ACTIVE))),
            )
            .values(status=RoomStatus.AVAILABLE),
            execution_options={"synchronize_session": False},
        )

    return len(booking_ids)


class ExpirePendingBookingsJob:
    """Recurring sweeper with start/stop and a single-flight guard.

    A tick that fires while a sweep is still running is skipped, not queued.
    """

    def __init__(self, app, interval_seconds: int = 60, grace_minutes: int = 15):
        self.app = app
        self.interval_seconds = interval_seconds
        self.grace_minutes = grace_minutes
        self._scheduler = None
        self._running = threading.Lock()
        self.last_result = None

    @property
    def is_active(self) -> bool:
        return self._scheduler is not None

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def start(self):
        if self._scheduler is not None:
            logger.warning("ExpirePendingBookingsJob is already running")
            return
        logger.info("Starting ExpirePendingBookingsJob every %ss (grace %s min)",
                    self.interval_seconds, self.grace_minutes)
        self._scheduler = BackgroundScheduler(daemon=True)
        self._scheduler.add_job(
            self.run_once,
            "interval",
            seconds=self.interval_seconds,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
        )
        self._scheduler.start()

    def stop(self):
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("ExpirePendingBookingsJob stopped")

    def run_once(self, now: datetime = None):
        if not self._running.acquire(blocking=False):
            logger.info("ExpirePendingBookingsJob is already running, skipping this execution")
            return None

        started = time.monotonic()
        try:
            with self.app.app_context():
                expired = expire_pending_bookings(now=now, grace_minutes=self.grace_minutes)
            elapsed_ms = int((time.monotonic() - started) * 1000)
            if expired:
                logger.info("ExpirePendingBookingsJob completed: %s booking(s) expired (%sms)", expired, elapsed_ms)
            else:
                logger.debug("ExpirePendingBookingsJob completed: no bookings to expire (%sms)", elapsed_ms)
            self.last_result = {
                "success": True,
                "expired": expired,
                "execution_ms": elapsed_ms,
                "timestamp": datetime.utcnow().isoformat(),
            }
        except Exception as exc:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.exception("ExpirePendingBookingsJob failed after %sms", elapsed_ms)
            self.last_result = {
                "success": False,
                "error": str(exc),
                "execution_ms": elapsed_ms,
                "timestamp": datetime.utcnow().isoformat(),
            }
        finally:
            self._running.release()
        return self.last_result

    def status(self) -> dict:
        return {
            "is_active": self.is_active,
            "is_running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "grace_minutes": self.grace_minutes,
            "last_result": self.last_result,
        }
