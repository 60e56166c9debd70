import json
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from app import create_app, release_resources
from config import TestConfig
from models import db, Hotel, Room
from models.hotel import HOTEL_INACTIVE
from services.gateways.base import hmac_sha256_hex

_VERIFY_STATUS = {
    # provider status words returned by the fake APIs for each outcome
    "telebirr": {"success": "TRADE_SUCCESS", "failed": "TRADE_FAILED", "pending": "WAIT_BUYER_PAY"},
    "ebirr": {"success": "COMPLETED", "failed": "FAILED", "pending": "PROCESSING"},
    "kaafi": {"success": "PAID", "failed": "CANCELLED", "pending": "PROCESSING"},
}


class FakeProviders:
    """Stands in for the Chapa, TeleBirr, eBirr and Kaafi HTTP APIs."""

    def __init__(self):
        self.requests = []
        self.reject = False
        self.timeout = False
        self.verify_status = "success"
        self.verify_amount = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.timeout:
            raise httpx.ReadTimeout("provider timed out", request=request)
        if self.reject:
            return httpx.Response(400, json={
                "status": "failed", "success": False, "code": 1,
                "message": "Rejected by provider", "msg": "Rejected by provider",
            })

        path = request.url.path
        if path.endswith("/transaction/initialize"):
            return httpx.Response(200, json={"status": "success", "data": {"checkout_url": "https://chapa.test/pay"}})
        if "/transaction/verify/" in path:
            return httpx.Response(200, json={"status": "success", "data": {
                "status": self.verify_status, "amount": self.verify_amount, "reference": "CHAPA-TX-1"}})
        if path.endswith("/merchant/preOrder"):
            return httpx.Response(200, json={"code": 0, "msg": "success", "data": {"toPayUrl": "https://telebirr.test/pay"}})
        if path.endswith("/merchant/query"):
            return httpx.Response(200, json={"code": 0, "msg": "success", "data": {
                "trade_status": _VERIFY_STATUS["telebirr"][self.verify_status],
                "total_amount": self.verify_amount, "transaction_no": "TB-TX-1"}})
        if path.endswith("/v1/payment/initiate"):
            return httpx.Response(200, json={"status": "success", "data": {"paymentUrl": "https://ebirr.test/pay"}})
        if "/v1/payment/status/" in path:
            return httpx.Response(200, json={"status": "success", "data": {
                "paymentStatus": _VERIFY_STATUS["ebirr"][self.verify_status],
                "amount": self.verify_amount, "transactionId": "EB-TX-1"}})
        if path.endswith("/payments/initiate"):
            return httpx.Response(200, json={"success": True, "data": {"paymentUrl": "https://kaafi.test/pay"}})
        if path.endswith("/payments/verify"):
            return httpx.Response(200, json={"success": True, "data": {
                "paymentStatus": _VERIFY_STATUS["kaafi"][self.verify_status],
                "amount": self.verify_amount, "kaafiTransactionId": "KF-TX-1"}})
        return httpx.Response(404, json={"message": "unknown endpoint"})


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event, payload, email=None):
        self.events.append((event, payload, email))

    def names(self):
        return [e[0] for e in self.events]


@pytest.fixture
def providers():
    return FakeProviders()


@pytest.fixture
def app(tmp_path, providers):
    # a file database so worker threads share it
    config = type("FileDbTestConfig", (TestConfig,), {
        "SQLALCHEMY_DATABASE_URI": "sqlite:///" + str(tmp_path / "hotelbooking-test.db"),
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 15}},
    })
    app = create_app(config, gateway_transport=httpx.MockTransport(providers))
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    release_resources(app)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def guard(app):
    return app.extensions["booking_guard"]


@pytest.fixture
def orchestrator(app):
    return app.extensions["payment_orchestrator"]


@pytest.fixture
def recorder(app):
    rec = RecordingNotifier()
    app.extensions["booking_guard"].notifier = rec
    app.extensions["payment_orchestrator"].notifier = rec
    return rec


@pytest.fixture
def catalog(app):
    hotel = Hotel(name="Skylight Hotel", location="Addis Ababa")
    closed = Hotel(name="Closed Lodge", location="Bahir Dar", status=HOTEL_INACTIVE)
    db.session.add_all([hotel, closed])
    db.session.flush()
    room = Room(hotel_id=hotel.id, room_number="101", room_type="standard", price_per_night=Decimal("2000.00"))
    other = Room(hotel_id=hotel.id, room_number="102", room_type="standard", price_per_night=Decimal("2000.00"))
    closed_room = Room(hotel_id=closed.id, room_number="1", room_type="standard", price_per_night=Decimal("900.00"))
    db.session.add_all([room, other, closed_room])
    db.session.commit()
    return SimpleNamespace(
        hotel_id=hotel.id,
        room_id=room.id,
        other_room_id=other.id,
        closed_hotel_id=closed.id,
        closed_room_id=closed_room.id,
    )


def stay(days_ahead=10, nights=2):
    checkin = datetime.utcnow().date() + timedelta(days=days_ahead)
    return checkin.isoformat(), (checkin + timedelta(days=nights)).isoformat()


@pytest.fixture
def book(guard, catalog):
    """Create a booking through the guard with sensible defaults."""

    def _book(name="Abebe Kebede", contact="+251911234567", room_id=None, hotel_id=None,
              days_ahead=10, nights=2):
        checkin, checkout = stay(days_ahead, nights)
        return guard.create_booking(name, contact, hotel_id or catalog.hotel_id,
                                    room_id or catalog.room_id, checkin, checkout)

    return _book


@pytest.fixture
def sign(app):
    """Return ``(payload, signature)`` signed the way each provider signs webhooks."""
    gateways = app.extensions["payment_gateways"]

    def _sign(provider, payload):
        if provider == "telebirr":
            return {**payload, "sign": gateways.get("telebirr").sign(payload)}, None
        if provider == "kaafi":
            return payload, gateways.get("kaafi").sign(
                payload.get("merchantCode", ""), payload.get("transactionRef", ""),
                payload.get("amount", ""), payload.get("timestamp", ""))
        key = app.config["CHAPA_SECRET_KEY"] if provider == "chapa" else app.config["EBIRR_API_KEY"]
        return payload, hmac_sha256_hex(key, json.dumps(payload, separators=(",", ":")))

    return _sign
