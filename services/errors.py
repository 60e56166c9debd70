"""Error taxonomy for the booking/payment core.

Routes never build error responses for these by hand: the app-level error
handler renders every ``ServiceError`` into the JSON failure envelope.
"""


class ServiceError(Exception):
    kind = "INTERNAL"
    http_status = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None, data: dict = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.data = data

    def to_dict(self) -> dict:
        out = {"success": False, "error": self.kind, "message": self.message}
        if self.data:
            out["data"] = self.data
        return out


class ValidationFailed(ServiceError):
    kind = "VALIDATION_FAILED"
    http_status = 400
    default_message = "Invalid request"


class NotFound(ServiceError):
    kind = "NOT_FOUND"
    http_status = 404
    default_message = "Not found"


class PaymentNotFound(NotFound):
    kind = "PAYMENT_NOT_FOUND"
    default_message = "Payment not found"


class RoomUnavailable(ServiceError):
    kind = "ROOM_UNAVAILABLE"
    http_status = 409
    default_message = "Room is already reserved for the selected dates"


class DuplicateRequest(ServiceError):
    kind = "DUPLICATE_REQUEST"
    http_status = 409
    default_message = "Duplicate booking detected"


class InvalidState(ServiceError):
    kind = "INVALID_STATE"
    http_status = 422
    default_message = "Operation not allowed in the current state"


class PaymentMismatch(ServiceError):
    kind = "PAYMENT_MISMATCH"
    http_status = 422
    default_message = "Payment amount mismatch"


class UnsupportedProvider(ServiceError):
    kind = "UNSUPPORTED_PROVIDER"
    http_status = 400
    default_message = "Unsupported payment provider"


class InvalidSignature(ServiceError):
    kind = "INVALID_SIGNATURE"
    http_status = 401
    default_message = "Invalid webhook signature"


class ProviderUnavailable(ServiceError):
    kind = "PROVIDER_UNAVAILABLE"
    http_status = 502
    default_message = "Payment provider unavailable"


class Internal(ServiceError):
    pass
