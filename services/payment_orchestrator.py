"""Drives a PENDING booking to CONFIRMED or CANCELLED through a payment gateway."""
import logging
from datetime import datetime

from sqlalchemy import select, update

from models import db
from models.booking import Booking, BookingStatus
from models.payment import Payment, PaymentStatus
from models.room import Room, RoomStatus
from services.errors import (
    ValidationFailed, NotFound, PaymentNotFound, InvalidState, PaymentMismatch,
    InvalidSignature, ProviderUnavailable,
)
from services.gateways.base import CallbackData
from services.presenters import booking_dict, payment_dict, log_dict, receipt_dict
from utils.audit import log_payment_event
from utils.transaction import unit_of_work

logger = logging.getLogger(__name__)

# keys providers use for their transaction reference in webhook bodies
_REFERENCE_KEYS = ("provider_reference", "providerReference", "tx_ref", "out_trade_no",
                   "transactionReference", "transactionRef")


def _reference_in(payload: dict):
    for key in _REFERENCE_KEYS:
        if payload.get(key):
            return str(payload[key])
    return None


class PaymentOrchestrator:

    def __init__(self, gateways, notifier=None, callback_url: str = None, return_url: str = None,
                 currency: str = "ETB", require_signature: bool = True):
        self.gateways = gateways
        self.notifier = notifier
        self.callback_url = callback_url
        self.return_url = return_url
        self.currency = currency
        self.require_signature = require_signature

    # ---------- initiatePayment ----------
    def initiate_payment(self, booking_id, provider):
        if not booking_id or not provider:
            raise ValidationFailed("bookingId and provider are required")
        if not isinstance(booking_id, str):
            raise ValidationFailed("bookingId must be a string")
        gateway = self.gateways.get(provider)

        with unit_of_work() as session:
            booking = session.execute(
                select(Booking).where(Booking.id == booking_id).with_for_update()
            ).scalar_one_or_none()
            if not booking:
                raise NotFound("Booking not found")
            if booking.status != BookingStatus.PENDING:
                raise InvalidState(f"Cannot initiate payment for booking with status: {booking.status}")

            payment = session.execute(
                select(Payment)
                .where(Payment.booking_id == booking.id, Payment.status == PaymentStatus.PENDING)
                .order_by(Payment.created_at.desc())
                .with_for_update()
            ).scalars().first()
            if payment is None:
                payment = Payment(booking_id=booking.id, status=PaymentStatus.PENDING, currency=self.currency)
                session.add(payment)
            payment.provider = gateway.get_provider_name()
            payment.amount = booking.total_amount
            session.flush()

            payment_id = payment.id
            amount = payment.amount
            guest = booking.user
            payer_contact = guest.phone or guest.email
            payer_name = guest.full_name

        # provider call runs outside the transaction; it can take up to the HTTP timeout
        result = gateway.initiate(
            amount=amount,
            currency=self.currency,
            booking_id=booking_id,
            payer_contact=payer_contact,
            payer_name=payer_name,
            callback_url=self.callback_url,
            return_url=self.return_url,
        )

        with unit_of_work() as session:
            payment = session.execute(
                select(Payment).where(Payment.id == payment_id).with_for_update()
            ).scalar_one()
            payment.provider_reference = result.provider_reference or None
            if result.success:
                log_payment_event(payment, "PAYMENT_INITIATED",
                                  f"Payment initiated with {payment.provider} - Reference: {result.provider_reference}",
                                  session=session)
            else:
                log_payment_event(payment, "PAYMENT_INITIATION_FAILED",
                                  f"{payment.provider} rejected initiation: {result.message}", session=session)
            still_pending = payment.status == PaymentStatus.PENDING

            out = {
                "payment": payment_dict(payment),
                "booking": booking_dict(payment.booking),
                "payment_instructions": {
                    "provider": payment.provider,
                    "reference": payment.provider_reference,
                    "amount": float(payment.amount),
                    "currency": payment.currency,
                    "callback_url": self.callback_url,
                    "payment_url": result.redirect_url,
                    "expires_at": result.expires_at.isoformat() if result.expires_at else None,
                },
            }

        if not still_pending:
            raise InvalidState("Booking is no longer awaiting payment")
        if not result.success:
            logger.warning("Payment initiation failed booking=%s provider=%s: %s",
                           booking_id, out["payment"]["provider"], result.message)
            raise ProviderUnavailable(result.message or "Payment initiation failed", data=out)

        logger.info("Payment %s initiated booking=%s ref=%s", payment_id, booking_id, result.provider_reference)
        return out

    # ---------- handleCallback ----------
    def resolve_provider(self, payload: dict, provider: str = None):
        provider = provider or payload.get("provider")
        if provider:
            return provider
        provider = self.gateways.provider_for_reference(_reference_in(payload))
        if provider:
            return provider
        booking_id = payload.get("bookingId") or payload.get("booking_id")
        if booking_id:
            payment = db.session.execute(
                select(Payment).where(Payment.booking_id == booking_id).order_by(Payment.created_at.desc())
            ).scalars().first()
            if payment:
                return payment.provider
        raise ValidationFailed("Unable to determine payment provider for callback")

    def handle_callback(self, payload: dict, provider: str = None, signature: str = None,
                        raw_body: bytes = None):
        if not isinstance(payload, dict) or not payload:
            raise ValidationFailed("Callback body must be a JSON object")

        gateway = self.gateways.get(self.resolve_provider(payload, provider))
        if self.require_signature and not gateway.verify_webhook_signature(payload, signature, raw_body):
            logger.warning("Rejected %s callback with invalid signature ref=%s",
                           gateway.get_provider_name(), _reference_in(payload))
            raise InvalidSignature()

        data = gateway.parse_callback(payload)
        if not data.provider_reference and not data.booking_id:
            raise ValidationFailed("Callback carries neither a provider reference nor a booking id")
        if data.status == "pending":
            logger.info("Ignoring pending %s callback ref=%s", gateway.get_provider_name(), data.provider_reference)
            return {"processed": False, "status": "pending"}
        return self.settle(data)

    def _find_payment(self, session, data: CallbackData):
        """Locate the payment a callback refers to, without locking it."""
        if data.provider_reference:
            row = session.execute(
                select(Payment.id, Payment.booking_id).where(Payment.provider_reference == data.provider_reference)
            ).first()
            if row:
                return row
        if data.booking_id:
            return session.execute(
                select(Payment.id, Payment.booking_id)
                .where(Payment.booking_id == data.booking_id)
                .order_by(Payment.created_at.desc())
            ).first()
        return None

    def settle(self, data: CallbackData):
        """Apply a definitive provider outcome. Idempotent on terminal payments."""
        mismatch_payment_id = None
        try:
            with unit_of_work() as session:
                found = self._find_payment(session, data)
                if found is None:
                    raise PaymentNotFound()

                # lock booking then payment, the same order as initiation and the expiry sweep
                booking = session.execute(
                    select(Booking).where(Booking.id == found.booking_id).with_for_update()
                ).scalar_one()
                payment = session.execute(
                    select(Payment).where(Payment.id == found.id).with_for_update()
                ).scalar_one()

                if payment.status in PaymentStatus.TERMINAL:
                    reported = PaymentStatus.SUCCESS if data.status == "success" else PaymentStatus.FAILED
                    if reported != payment.status:
                        logger.warning("Callback for payment %s reports %s but it is already %s",
                                       payment.id, reported, payment.status)
                    return {
                        "processed": False,
                        "duplicate": True,
                        "payment": payment_dict(payment),
                        "booking": booking_dict(booking, with_relations=False),
                    }

                if data.amount is not None and data.amount != payment.amount:
                    mismatch_payment_id = payment.id
                    raise PaymentMismatch(
                        f"Amount mismatch: expected {payment.amount}, received {data.amount}")

                if booking.status != BookingStatus.PENDING:
                    raise InvalidState(f"Booking is {booking.status}; payment can no longer be applied")

                now = datetime.utcnow()
                payment.completed_at = now
                if data.transaction_id:
                    payment.transaction_id = data.transaction_id

                if data.status == "success":
                    payment.status = PaymentStatus.SUCCESS
                    booking.status = BookingStatus.CONFIRMED
                    # room stays OCCUPIED; it was locked when the booking was created
                    log_payment_event(payment, "PAYMENT_SUCCESS",
                                      f"Payment successful - Transaction ID: "
                                      f"{data.transaction_id or payment.provider_reference}",
                                      session=session)
                    out = {
                        "processed": True,
                        "payment": payment_dict(payment),
                        "booking": booking_dict(booking, with_relations=False),
                        "receipt": receipt_dict(booking, payment),
                    }
                    event = "booking.confirmed"
                else:
                    payment.status = PaymentStatus.FAILED
                    booking.status = BookingStatus.CANCELLED
                    session.execute(
                        update(Room).where(Room.id == booking.room_id).values(status=RoomStatus.AVAILABLE)
                    )
                    log_payment_event(payment, "PAYMENT_FAILED",
                                      f"Payment failed - Error: {data.error_message or 'Unknown error'}",
                                      session=session)
                    out = {
                        "processed": True,
                        "payment": {**payment_dict(payment), "error": data.error_message or "Payment failed"},
                        "booking": booking_dict(booking, with_relations=False),
                        "room_released": True,
                    }
                    event = "booking.cancelled"
                guest_email = booking.user.email
        except PaymentMismatch:
            if mismatch_payment_id:
                self._record_mismatch(mismatch_payment_id, data.amount)
            raise

        logger.info("Payment %s settled as %s booking=%s", out["payment"]["id"], out["payment"]["status"],
                    out["booking"]["id"])
        if self.notifier:
            self.notifier.notify(event, out.get("receipt") or {
                "booking_id": out["booking"]["id"],
                "confirmation_number": out["booking"]["confirmation_number"],
                "reason": data.error_message,
            }, email=guest_email)
        return out

    @staticmethod
    def _record_mismatch(payment_id, received):
        # own transaction: the rejected settlement was rolled back
        with unit_of_work() as session:
            payment = session.get(Payment, payment_id)
            log_payment_event(payment, "PAYMENT_MISMATCH",
                              f"Amount mismatch: expected {payment.amount}, received {received}",
                              session=session)
        logger.warning("Payment %s amount mismatch: expected stored amount, received %s", payment_id, received)

    # ---------- explicit verification ----------
    def verify_payment(self, payment_id):
        payment = db.session.get(Payment, payment_id)
        if not payment:
            raise PaymentNotFound()
        if payment.status in PaymentStatus.TERMINAL:
            return {"processed": False, "payment": payment_dict(payment)}
        if not payment.provider_reference:
            raise InvalidState("Payment has not been initiated with a provider")

        gateway = self.gateways.get(payment.provider)
        reference = payment.provider_reference
        db.session.rollback()  # do not hold a read transaction across the provider call

        result = gateway.verify(reference)
        if not result.success:
            raise ProviderUnavailable(result.message or "Payment verification failed")
        if result.status == "pending":
            return {"processed": False, "status": "pending", "payment": payment_dict(db.session.get(Payment, payment_id))}

        return self.settle(CallbackData(
            status=result.status,
            provider_reference=reference,
            amount=result.amount,
            transaction_id=result.transaction_id,
            error_message=None if result.status == "success" else result.message,
        ))

    # ---------- getPaymentStatus ----------
    def get_payment_status(self, payment_id):
        payment = db.session.get(Payment, payment_id)
        if not payment:
            raise PaymentNotFound()
        return {
            "payment": payment_dict(payment),
            "booking": booking_dict(payment.booking),
            "logs": [log_dict(log) for log in payment.logs],
        }
