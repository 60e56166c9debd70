import logging
import smtplib
from concurrent.futures import ThreadPoolExecutor
from email.message import EmailMessage

import httpx

logger = logging.getLogger(__name__)


def send_email(settings, to_email: str, subject: str, body: str):
    host = settings.get("SMTP_HOST")
    port = settings.get("SMTP_PORT", 587)
    username = settings.get("SMTP_USERNAME")
    password = settings.get("SMTP_PASSWORD")
    from_email = settings.get("SMTP_FROM_EMAIL") or username
    use_tls = settings.get("SMTP_USE_TLS", True)

    if not host or not from_email:
        return False, "Email not configured"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, port, timeout=10) as server:
            if use_tls:
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        return False, str(exc)


class Notifier:
    """Fire-and-forget push/analytics + e-mail sink for booking events.

    Delivery runs on a small worker pool so it never blocks or fails the
    request that triggered it; errors are logged and dropped.
    """

    def __init__(self, settings, max_workers: int = 2):
        self.settings = dict(settings)
        self.webhook_url = self.settings.get("NOTIFY_WEBHOOK_URL")
        self.timeout = self.settings.get("NOTIFY_TIMEOUT_SECONDS", 5)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def notify(self, event: str, payload: dict, email: str = None):
        if not self.webhook_url and not (email and self.settings.get("SMTP_HOST")):
            return None
        return self._executor.submit(self._deliver, event, payload, email)

    def _deliver(self, event, payload, email):
        try:
            if self.webhook_url:
                resp = httpx.post(self.webhook_url, json={"event": event, "data": payload}, timeout=self.timeout)
                resp.raise_for_status()
            if email:
                ok, err = send_email(self.settings, email, _subject(event, payload), _body(event, payload))
                if not ok:
                    logger.warning("Booking e-mail for %s not sent: %s", event, err)
        except Exception:
            logger.exception("Notification %s failed", event)

    def shutdown(self):
        self._executor.shutdown(wait=False)


def _subject(event, payload):
    code = payload.get("confirmation_number") or payload.get("booking_id")
    if event == "booking.confirmed":
        return f"Booking confirmed ({code})"
    if event == "booking.cancelled":
        return f"Booking cancelled ({code})"
    return f"Booking received ({code})"


def _body(event, payload):
    lines = [f"{k.replace('_', ' ').title()}: {v}" for k, v in payload.items() if v is not None]
    return "\n".join(lines)
