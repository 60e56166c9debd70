import hashlib
import hmac
import json
import logging
import secrets
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

_REF_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class InitiationResult:
    success: bool
    provider_reference: str
    redirect_url: Optional[str] = None
    message: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass
class VerificationResult:
    success: bool
    status: str  # success | pending | failed
    amount: Optional[Decimal] = None
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    message: Optional[str] = None


@dataclass
class CallbackData:
    """A provider webhook body reduced to the fields the orchestrator needs."""

    status: str  # success | pending | failed
    provider_reference: Optional[str] = None
    booking_id: Optional[str] = None
    amount: Optional[Decimal] = None
    transaction_id: Optional[str] = None
    error_message: Optional[str] = None


def to_decimal(value) -> Optional[Decimal]:
    """Parse a provider amount. Absent amounts are None; unreadable ones are NaN.

    NaN never equals a stored amount, so a garbled amount is treated as a
    mismatch rather than as an amount the provider did not send.
    """
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        amount = None
    if amount is None or not amount.is_finite():
        logger.warning("Unreadable provider amount %r", value)
        return Decimal("NaN")
    return amount


def parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def hmac_sha256_hex(key: str, data) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hmac.new(key.encode("utf-8"), data, hashlib.sha256).hexdigest()


def json_body(payload: dict, raw_body: bytes = None) -> bytes:
    # the bytes exactly as received; re-serialising may reorder or re-space them
    if raw_body:
        return raw_body
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def map_status(value, success_values, failed_values) -> str:
    value = (str(value) if value is not None else "").upper()
    if value in success_values:
        return "success"
    if value in failed_values:
        return "failed"
    return "pending"


class PaymentGateway(ABC):
    """One external payment network.

    Adapters never raise for business or network failures: missing
    credentials, rejected requests and timeouts all come back as
    ``success=False`` results so callers can keep working with whichever
    providers are available.
    """

    provider = None
    reference_prefix = None
    signature_header = "X-Signature"

    def __init__(self, settings: dict, timeout: float = 30.0, transport: httpx.BaseTransport = None):
        self.settings = settings
        self.timeout = timeout
        self.client = httpx.Client(
            base_url=self.api_url(),
            headers=self.default_headers(),
            timeout=timeout,
            transport=transport,
        )
        if not self.is_configured():
            logger.warning("%s credentials not configured; payments via %s will be rejected",
                           self.provider, self.provider)

    # --- per-provider hooks ---------------------------------------------

    @abstractmethod
    def api_url(self) -> str:
        ...

    def default_headers(self) -> dict:
        return {"Content-Type": "application/json"}

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    def _initiate(self, reference: str, amount: Decimal, currency: str, booking_id: str,
                  payer_contact: str, payer_name: str, callback_url: str,
                  return_url: str = None) -> InitiationResult:
        ...

    @abstractmethod
    def _verify(self, reference: str) -> VerificationResult:
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: dict, signature: str, raw_body: bytes = None) -> bool:
        ...

    @abstractmethod
    def parse_callback(self, payload: dict) -> CallbackData:
        ...

    # --- public contract ------------------------------------------------

    def get_provider_name(self) -> str:
        return self.provider

    def generate_reference(self) -> str:
        suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(9))
        return f"{self.reference_prefix}_{int(time.time() * 1000)}_{suffix}"

    def initiate(self, amount: Decimal, currency: str, booking_id: str, payer_contact: str,
                 payer_name: str, callback_url: str, return_url: str = None) -> InitiationResult:
        if not self.is_configured():
            return InitiationResult(False, "", message=f"{self.provider} credentials not configured")

        reference = self.generate_reference()
        logger.info("Initiating %s payment ref=%s amount=%s", self.provider, reference, amount)
        try:
            return self._initiate(reference, amount, currency, booking_id, payer_contact,
                                  payer_name, callback_url, return_url)
        except httpx.TimeoutException:
            logger.warning("%s initiation timed out ref=%s", self.provider, reference)
            return InitiationResult(False, reference, message=f"{self.provider} request timed out")
        except httpx.HTTPError as exc:
            logger.warning("%s initiation error ref=%s: %s", self.provider, reference, exc)
            return InitiationResult(False, reference, message=str(exc) or "Payment initiation failed")

    def verify(self, reference: str) -> VerificationResult:
        if not self.is_configured():
            return VerificationResult(False, "failed", message=f"{self.provider} credentials not configured")

        logger.info("Verifying %s payment ref=%s", self.provider, reference)
        try:
            return self._verify(reference)
        except httpx.TimeoutException:
            logger.warning("%s verification timed out ref=%s", self.provider, reference)
            return VerificationResult(False, "pending", message=f"{self.provider} request timed out")
        except httpx.HTTPError as exc:
            logger.warning("%s verification error ref=%s: %s", self.provider, reference, exc)
            return VerificationResult(False, "failed", message=str(exc) or "Verification failed")

    def close(self):
        self.client.close()

    # --- helpers --------------------------------------------------------

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _signatures_match(expected: str, signature: str) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(expected, signature)
