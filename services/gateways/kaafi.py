import time
from datetime import datetime, timedelta

from services.gateways.base import (
    PaymentGateway, InitiationResult, VerificationResult, CallbackData,
    hmac_sha256_hex, map_status, parse_datetime, to_decimal,
)

_SUCCESS = {"COMPLETED", "SUCCESS", "PAID"}
_FAILED = {"FAILED", "CANCELLED", "EXPIRED"}


class KaafiGateway(PaymentGateway):
    """Kaafi mobile payments.

    Signature: HMAC-SHA256(secret, merchantCode + transactionRef + amount + timestamp),
    the same concatenation for requests and webhooks.
    """

    provider = "kaafi"
    reference_prefix = "KAAFI"
    signature_header = "X-Kaafi-Signature"

    def api_url(self) -> str:
        return self.settings.get("KAAFI_API_URL") or "https://api.kaafi.com/v1"

    def default_headers(self) -> dict:
        return {
            "X-API-Key": self.settings.get("KAAFI_API_KEY") or "",
            "Content-Type": "application/json",
        }

    def is_configured(self) -> bool:
        s = self.settings
        return bool(s.get("KAAFI_MERCHANT_CODE") and s.get("KAAFI_API_KEY") and s.get("KAAFI_SECRET_KEY"))

    def sign(self, *parts) -> str:
        return hmac_sha256_hex(self.settings.get("KAAFI_SECRET_KEY") or "", "".join(str(p) for p in parts))

    @staticmethod
    def _ok(resp, body) -> bool:
        return resp.is_success and (body.get("success") is True or body.get("status") == "success")

    def _initiate(self, reference, amount, currency, booking_id, payer_contact,
                  payer_name, callback_url, return_url=None) -> InitiationResult:
        merchant = self.settings["KAAFI_MERCHANT_CODE"]
        timestamp = int(time.time() * 1000)
        amount_str = f"{amount:.2f}"
        payload = {
            "merchantCode": merchant,
            "transactionRef": reference,
            "amount": amount_str,
            "currency": currency or "ETB",
            "customerPhone": payer_contact,
            "customerName": payer_name,
            "description": f"Hotel booking #{booking_id}",
            "callbackUrl": callback_url,
            "returnUrl": return_url or callback_url,
            "metadata": {"bookingId": booking_id, "timestamp": timestamp},
            "timestamp": timestamp,
            "signature": self.sign(merchant, reference, amount_str, timestamp),
        }

        resp = self.client.post("/payments/initiate", json=payload)
        body = self._json(resp)
        if self._ok(resp, body):
            expiry_minutes = self.settings.get("PAYMENT_EXPIRY_MINUTES") or 30
            return InitiationResult(
                True, reference,
                redirect_url=(body.get("data") or {}).get("paymentUrl") or body.get("paymentUrl"),
                message="Payment initiated successfully",
                expires_at=datetime.utcnow() + timedelta(minutes=expiry_minutes),
            )
        return InitiationResult(False, reference, message=body.get("message") or "Failed to initialize payment")

    def _verify(self, reference) -> VerificationResult:
        merchant = self.settings["KAAFI_MERCHANT_CODE"]
        timestamp = int(time.time() * 1000)
        resp = self.client.post("/payments/verify", json={
            "merchantCode": merchant,
            "transactionRef": reference,
            "timestamp": timestamp,
            "signature": self.sign(merchant, reference, timestamp),
        })
        body = self._json(resp)
        if not self._ok(resp, body):
            return VerificationResult(False, "failed", message=body.get("message") or "Payment verification failed")

        data = body.get("data") or body
        payment_status = data.get("paymentStatus") or data.get("status")
        return VerificationResult(
            True,
            map_status(payment_status, _SUCCESS, _FAILED),
            amount=to_decimal(data.get("amount")),
            transaction_id=data.get("kaafiTransactionId") or data.get("transactionId") or reference,
            paid_at=parse_datetime(data.get("completedAt")),
            message=payment_status,
        )

    def verify_webhook_signature(self, payload, signature, raw_body=None) -> bool:
        if not self.settings.get("KAAFI_SECRET_KEY"):
            return False
        signature = signature or payload.get("signature")
        expected = self.sign(
            payload.get("merchantCode", ""),
            payload.get("transactionRef", ""),
            payload.get("amount", ""),
            payload.get("timestamp", ""),
        )
        return self._signatures_match(expected, signature)

    def parse_callback(self, payload) -> CallbackData:
        metadata = payload.get("metadata") or {}
        return CallbackData(
            status=map_status(payload.get("paymentStatus") or payload.get("status"), _SUCCESS, _FAILED),
            provider_reference=payload.get("transactionRef") or payload.get("provider_reference") or payload.get("providerReference"),
            booking_id=metadata.get("bookingId") or payload.get("bookingId"),
            amount=to_decimal(payload.get("amount")),
            transaction_id=payload.get("kaafiTransactionId") or payload.get("transactionId"),
            error_message=payload.get("message") or payload.get("error_message"),
        )
