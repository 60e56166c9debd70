import re
from datetime import datetime, timedelta

from services.gateways.base import (
    PaymentGateway, InitiationResult, VerificationResult, CallbackData,
    hmac_sha256_hex, json_body, map_status, parse_datetime, to_decimal,
)

_SUCCESS = {"COMPLETED", "SUCCESS", "PAID"}
_FAILED = {"FAILED", "CANCELLED", "EXPIRED"}


def local_phone(phone: str) -> str:
    """+2519... -> 09..., the format CBE Birr expects."""
    return re.sub(r"^\+251", "0", phone or "")


class EBirrGateway(PaymentGateway):
    """Commercial Bank of Ethiopia mobile money (CBE Birr)."""

    provider = "ebirr"
    reference_prefix = "EBIRR"
    signature_header = "X-EBirr-Signature"

    def api_url(self) -> str:
        return self.settings.get("EBIRR_API_URL") or "https://api.cbe.com.et/ebirr"

    def default_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.settings.get('EBIRR_API_KEY') or ''}",
            "Content-Type": "application/json",
            "X-Merchant-ID": self.settings.get("EBIRR_MERCHANT_ID") or "",
        }

    def is_configured(self) -> bool:
        return bool(self.settings.get("EBIRR_MERCHANT_ID") and self.settings.get("EBIRR_API_KEY"))

    @staticmethod
    def _ok(resp, body) -> bool:
        return resp.is_success and (body.get("status") == "success" or body.get("statusCode") == 200)

    def _initiate(self, reference, amount, currency, booking_id, payer_contact,
                  payer_name, callback_url, return_url=None) -> InitiationResult:
        expiry_minutes = self.settings.get("PAYMENT_EXPIRY_MINUTES") or 30
        payload = {
            "merchantId": self.settings["EBIRR_MERCHANT_ID"],
            "transactionReference": reference,
            "amount": f"{amount:.2f}",
            "currency": currency or "ETB",
            "customerPhone": local_phone(payer_contact),
            "customerName": payer_name,
            "description": f"Hotel booking payment for {booking_id}",
            "callbackUrl": callback_url,
            "metadata": {"bookingId": booking_id},
            "expiryMinutes": expiry_minutes,
        }

        resp = self.client.post("/v1/payment/initiate", json=payload)
        body = self._json(resp)
        if self._ok(resp, body):
            return InitiationResult(
                True, reference,
                redirect_url=(body.get("data") or {}).get("paymentUrl") or body.get("paymentUrl"),
                message="Payment initiated successfully",
                expires_at=datetime.utcnow() + timedelta(minutes=expiry_minutes),
            )
        return InitiationResult(False, reference, message=body.get("message") or "Failed to initialize payment")

    def _verify(self, reference) -> VerificationResult:
        resp = self.client.get(f"/v1/payment/status/{reference}")
        body = self._json(resp)
        if not self._ok(resp, body):
            return VerificationResult(False, "failed", message=body.get("message") or "Payment verification failed")

        data = body.get("data") or body
        payment_status = data.get("paymentStatus") or data.get("status")
        return VerificationResult(
            True,
            map_status(payment_status, _SUCCESS, _FAILED),
            amount=to_decimal(data.get("amount")),
            transaction_id=data.get("transactionId") or data.get("ebirrReference") or reference,
            paid_at=parse_datetime(data.get("completedAt")),
            message=payment_status,
        )

    def verify_webhook_signature(self, payload, signature, raw_body=None) -> bool:
        api_key = self.settings.get("EBIRR_API_KEY")
        if not api_key:
            return False
        expected = hmac_sha256_hex(api_key, json_body(payload, raw_body))
        return self._signatures_match(expected, signature)

    def parse_callback(self, payload) -> CallbackData:
        metadata = payload.get("metadata") or {}
        return CallbackData(
            status=map_status(payload.get("paymentStatus") or payload.get("status"), _SUCCESS, _FAILED),
            provider_reference=payload.get("transactionReference") or payload.get("provider_reference") or payload.get("providerReference"),
            booking_id=metadata.get("bookingId") or payload.get("bookingId"),
            amount=to_decimal(payload.get("amount")),
            transaction_id=payload.get("transactionId") or payload.get("ebirrReference"),
            error_message=payload.get("message") or payload.get("error_message"),
        )
