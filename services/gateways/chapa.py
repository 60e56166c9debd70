from decimal import Decimal

from services.gateways.base import (
    PaymentGateway, InitiationResult, VerificationResult, CallbackData,
    hmac_sha256_hex, json_body, map_status, parse_datetime, to_decimal,
)

_SUCCESS = {"SUCCESS"}
_FAILED = {"FAILED", "FAIL", "CANCELLED", "EXPIRED"}


class ChapaGateway(PaymentGateway):
    """Chapa hosted checkout (https://developer.chapa.co/docs)."""

    provider = "chapa"
    reference_prefix = "CHAPA"
    signature_header = "Chapa-Signature"

    def api_url(self) -> str:
        return self.settings.get("CHAPA_API_URL") or "https://api.chapa.co/v1"

    def default_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.settings.get('CHAPA_SECRET_KEY') or ''}",
            "Content-Type": "application/json",
        }

    def is_configured(self) -> bool:
        return bool(self.settings.get("CHAPA_SECRET_KEY"))

    def _initiate(self, reference, amount: Decimal, currency, booking_id, payer_contact,
                  payer_name, callback_url, return_url=None) -> InitiationResult:
        first, _, last = (payer_name or "").strip().partition(" ")
        email = payer_contact if "@" in (payer_contact or "") else f"{payer_contact}@guest.hotelbooking.local"
        payload = {
            "amount": f"{amount:.2f}",
            "currency": currency or "ETB",
            "email": email,
            "first_name": first or "Guest",
            "last_name": last or "User",
            "phone_number": None if "@" in (payer_contact or "") else payer_contact,
            "tx_ref": reference,
            "callback_url": callback_url,
            "return_url": return_url or callback_url,
            "customization": {
                "title": "Hotel Booking",
                "description": f"Booking payment for {booking_id}",
            },
            "meta": {"booking_id": booking_id},
        }

        resp = self.client.post("/transaction/initialize", json=payload)
        body = self._json(resp)
        if resp.is_success and body.get("status") == "success":
            return InitiationResult(
                True, reference,
                redirect_url=(body.get("data") or {}).get("checkout_url"),
                message="Payment initiated successfully",
            )
        return InitiationResult(False, reference, message=body.get("message") or "Failed to initialize payment")

    def _verify(self, reference) -> VerificationResult:
        resp = self.client.get(f"/transaction/verify/{reference}")
        body = self._json(resp)
        if not (resp.is_success and body.get("status") == "success"):
            return VerificationResult(False, "failed", message=body.get("message") or "Payment verification failed")

        data = body.get("data") or {}
        return VerificationResult(
            True,
            map_status(data.get("status"), _SUCCESS, _FAILED),
            amount=to_decimal(data.get("amount")),
            transaction_id=data.get("reference") or reference,
            paid_at=parse_datetime(data.get("created_at")),
            message=data.get("status"),
        )

    def verify_webhook_signature(self, payload, signature, raw_body=None) -> bool:
        secret = self.settings.get("CHAPA_SECRET_KEY")
        if not secret:
            return False
        expected = hmac_sha256_hex(secret, json_body(payload, raw_body))
        return self._signatures_match(expected, signature)

    def parse_callback(self, payload) -> CallbackData:
        meta = payload.get("meta") or {}
        return CallbackData(
            status=map_status(payload.get("status"), _SUCCESS, _FAILED),
            provider_reference=payload.get("tx_ref") or payload.get("provider_reference") or payload.get("providerReference"),
            booking_id=meta.get("booking_id") or payload.get("bookingId"),
            amount=to_decimal(payload.get("amount")),
            transaction_id=payload.get("reference") or payload.get("transaction_id"),
            error_message=payload.get("message") or payload.get("error_message"),
        )
