from flask import Blueprint, request, current_app

from utils.responses import success

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")

# headers providers put webhook signatures in, checked in order
SIGNATURE_HEADERS = (
    "X-Signature", "Chapa-Signature", "X-Chapa-Signature", "X-TeleBirr-Signature",
    "X-EBirr-Signature", "X-Kaafi-Signature",
)


def _orchestrator():
    return current_app.extensions["payment_orchestrator"]


@payments_bp.get("/providers")
def list_providers():
    gateways = current_app.extensions["payment_gateways"]
    return success({
        "providers": gateways.providers(),
        "configured": gateways.configured_providers(),
    })


@payments_bp.post("/initiate")
def initiate_payment():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        data = {}
    result = _orchestrator().initiate_payment(data.get("bookingId"), data.get("provider"))
    return success(result, "Payment initiated successfully")


# Webhook target for every provider; the signature is verified before the body is trusted
@payments_bp.post("/callback")
def payment_callback():
    payload = request.get_json(silent=True) or {}
    signature = next((request.headers[h] for h in SIGNATURE_HEADERS if request.headers.get(h)), None)
    result = _orchestrator().handle_callback(
        payload,
        provider=request.args.get("provider"),
        signature=signature,
        raw_body=request.get_data(),
    )

    if result.get("duplicate"):
        message = "Callback already processed"
    elif not result.get("processed"):
        message = "Payment still pending"
    elif result["payment"]["status"] == "SUCCESS":
        message = "Payment processed successfully. Booking confirmed."
    else:
        message = "Payment failed. Booking cancelled and room released."
    return success(result, message)


@payments_bp.post("/<payment_id>/verify")
def verify_payment(payment_id: str):
    result = _orchestrator().verify_payment(payment_id)
    return success(result, "Payment verified" if result.get("processed") else "No change")


@payments_bp.get("/<payment_id>")
def get_payment(payment_id: str):
    return success(_orchestrator().get_payment_status(payment_id))
