import hashlib
import secrets
from datetime import datetime, timedelta

from services.gateways.base import (
    PaymentGateway, InitiationResult, VerificationResult, CallbackData,
    map_status, parse_datetime, to_decimal,
)

_SUCCESS = {"TRADE_SUCCESS", "SUCCESS"}
_FAILED = {"TRADE_FAILED", "CLOSED", "TRADE_CLOSED", "FAILED"}


class TeleBirrGateway(PaymentGateway):
    """Ethio telecom TeleBirr in-app payments.

    Requests and notifications are signed with an upper-case SHA-256 over the
    sorted ``key=value`` pairs joined by ``&`` with the app key appended.
    """

    provider = "telebirr"
    reference_prefix = "TELEBIRR"
    signature_header = "X-TeleBirr-Signature"

    def api_url(self) -> str:
        return self.settings.get("TELEBIRR_API_URL") or "https://app.ethiotelecom.et:9443/ammapi"

    def is_configured(self) -> bool:
        return bool(self.settings.get("TELEBIRR_APP_ID") and self.settings.get("TELEBIRR_APP_KEY"))

    def sign(self, data: dict) -> str:
        pairs = [
            f"{k}={data[k]}" for k in sorted(data)
            if k not in ("sign", "sign_type") and data[k] is not None
        ]
        sign_string = "&".join(pairs) + (self.settings.get("TELEBIRR_APP_KEY") or "")
        return hashlib.sha256(sign_string.encode("utf-8")).hexdigest().upper()

    def _signed(self, data: dict) -> dict:
        return {**data, "sign": self.sign(data)}

    def _initiate(self, reference, amount, currency, booking_id, payer_contact,
                  payer_name, callback_url, return_url=None) -> InitiationResult:
        expires_at = datetime.utcnow() + timedelta(minutes=self.settings.get("PAYMENT_EXPIRY_MINUTES") or 30)
        request_data = {
            "appid": self.settings["TELEBIRR_APP_ID"],
            "body": f"Hotel booking {booking_id}",
            "nonce_str": secrets.token_hex(16),
            "notify_url": callback_url,
            "out_trade_no": reference,
            "subject": "Hotel Booking",
            "time_expire": expires_at.isoformat(),
            "timestamp": datetime.utcnow().isoformat(),
            "total_amount": f"{amount:.2f}",
            "trade_type": "InApp",
        }

        resp = self.client.post("/payment/v1/merchant/preOrder", json=self._signed(request_data))
        body = self._json(resp)
        if resp.is_success and (body.get("code") == 0 or body.get("msg") == "success"):
            data = body.get("data") or {}
            return InitiationResult(
                True, reference,
                redirect_url=data.get("toPayUrl") or data.get("prepay_id"),
                message="Payment initiated successfully",
                expires_at=expires_at,
            )
        return InitiationResult(False, reference, message=body.get("msg") or "Failed to initialize payment")

    def _verify(self, reference) -> VerificationResult:
        request_data = {
            "appid": self.settings["TELEBIRR_APP_ID"],
            "nonce_str": secrets.token_hex(16),
            "out_trade_no": reference,
            "timestamp": datetime.utcnow().isoformat(),
        }
        resp = self.client.post("/payment/v1/merchant/query", json=self._signed(request_data))
        body = self._json(resp)
        if not (resp.is_success and (body.get("code") == 0 or body.get("msg") == "success")):
            return VerificationResult(False, "failed", message=body.get("msg") or "Payment verification failed")

        data = body.get("data") or {}
        return VerificationResult(
            True,
            map_status(data.get("trade_status"), _SUCCESS, _FAILED),
            amount=to_decimal(data.get("total_amount")),
            transaction_id=data.get("transaction_no") or reference,
            paid_at=parse_datetime(data.get("time_end")),
            message=data.get("trade_status"),
        )

    def verify_webhook_signature(self, payload, signature, raw_body=None) -> bool:
        if not self.settings.get("TELEBIRR_APP_KEY"):
            return False
        # TeleBirr puts the signature inside the notification body
        signature = signature or payload.get("sign")
        return self._signatures_match(self.sign(payload), signature)

    def parse_callback(self, payload) -> CallbackData:
        return CallbackData(
            status=map_status(payload.get("trade_status") or payload.get("status"), _SUCCESS, _FAILED),
            provider_reference=payload.get("out_trade_no") or payload.get("provider_reference") or payload.get("providerReference"),
            booking_id=payload.get("bookingId"),
            amount=to_decimal(payload.get("total_amount") or payload.get("amount")),
            transaction_id=payload.get("transaction_no") or payload.get("transaction_id"),
            error_message=payload.get("msg") or payload.get("error_message"),
        )
