from models import db
from models.payment_log import PaymentLog


def log_payment_event(payment, action: str, details: str = None, session=None):
    """Append a PaymentLog row to the current unit of work (caller commits)."""
    session = session or db.session
    row = PaymentLog(
        payment_id=payment.id,
        booking_id=payment.booking_id,
        action=action,
        details=details,
    )
    session.add(row)
    return row
