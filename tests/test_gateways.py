import json
import re
from decimal import Decimal

import httpx
import pytest

from services.errors import UnsupportedProvider
from services.gateways import ChapaGateway, GatewayRegistry
from services.gateways.base import hmac_sha256_hex, to_decimal
from services.gateways.ebirr import local_phone

PROVIDERS = ["chapa", "telebirr", "ebirr", "kaafi"]
REFERENCE_RE = re.compile(r"^(CHAPA|TELEBIRR|EBIRR|KAAFI)_\d{13}_[a-z0-9]{9}$")


@pytest.fixture
def gateways(app):
    return app.extensions["payment_gateways"]


def _initiate(gateway):
    return gateway.initiate(
        amount=Decimal("4000.00"),
        currency="ETB",
        booking_id="b-1",
        payer_contact="+251911234567",
        payer_name="Abebe Kebede",
        callback_url="http://localhost/payments/callback",
    )


@pytest.mark.parametrize("provider", PROVIDERS)
def test_initiate_returns_prefixed_reference_and_redirect(gateways, provider):
    result = _initiate(gateways.get(provider))
    assert result.success is True
    assert REFERENCE_RE.match(result.provider_reference)
    assert result.provider_reference.startswith(provider.upper() + "_")
    assert result.redirect_url.startswith("https://")


def test_references_are_unique(gateways):
    gateway = gateways.get("telebirr")
    refs = {gateway.generate_reference() for _ in range(50)}
    assert len(refs) == 50


def test_unconfigured_gateway_refuses_without_network(providers):
    gateway = ChapaGateway({}, transport=httpx.MockTransport(providers))
    try:
        result = _initiate(gateway)
    finally:
        gateway.close()
    assert result.success is False
    assert result.provider_reference == ""
    assert "not configured" in result.message
    assert providers.requests == []


@pytest.mark.parametrize("provider", PROVIDERS)
def test_timeout_keeps_reference_and_does_not_raise(gateways, providers, provider):
    providers.timeout = True
    result = _initiate(gateways.get(provider))
    assert result.success is False
    assert result.provider_reference.startswith(provider.upper() + "_")
    assert "timed out" in result.message


@pytest.mark.parametrize("provider", PROVIDERS)
def test_rejected_initiation(gateways, providers, provider):
    providers.reject = True
    result = _initiate(gateways.get(provider))
    assert result.success is False
    assert result.message == "Rejected by provider"


@pytest.mark.parametrize("provider", PROVIDERS)
@pytest.mark.parametrize("outcome", ["success", "failed", "pending"])
def test_verify_normalises_provider_status(gateways, providers, provider, outcome):
    providers.verify_status = outcome
    providers.verify_amount = "4000.00"
    result = gateways.get(provider).verify(f"{provider.upper()}_1700000000000_abcdefghi")
    assert result.success is True
    assert result.status == outcome
    assert result.amount == Decimal("4000.00")
    assert result.transaction_id


def test_verify_timeout_is_pending(gateways, providers):
    providers.timeout = True
    result = gateways.get("chapa").verify("CHAPA_1700000000000_abcdefghi")
    assert result.success is False
    assert result.status == "pending"


def test_telebirr_request_is_signed(gateways, providers):
    _initiate(gateways.get("telebirr"))
    body = json.loads(providers.requests[-1].content)
    assert body["sign"] == gateways.get("telebirr").sign(body)
    assert body["total_amount"] == "4000.00"


def test_ebirr_sends_local_phone(gateways, providers):
    _initiate(gateways.get("ebirr"))
    body = json.loads(providers.requests[-1].content)
    assert body["customerPhone"] == "0911234567"
    assert local_phone("0911234567") == "0911234567"


def test_chapa_signature(gateways, sign):
    gateway = gateways.get("chapa")
    payload, signature = sign("chapa", {"tx_ref": "CHAPA_1_x", "status": "success", "amount": "4000.00"})
    assert gateway.verify_webhook_signature(payload, signature)
    assert not gateway.verify_webhook_signature({**payload, "amount": "1.00"}, signature)
    assert not gateway.verify_webhook_signature(payload, None)
    raw = b'{"tx_ref": "CHAPA_1_x"}'
    assert gateway.verify_webhook_signature({}, hmac_sha256_hex("chapa-test-secret", raw), raw_body=raw)


def test_telebirr_signature_lives_in_body(gateways, sign):
    gateway = gateways.get("telebirr")
    payload, header = sign("telebirr", {"out_trade_no": "TELEBIRR_1_x", "trade_status": "TRADE_SUCCESS",
                                        "total_amount": "4000.00"})
    assert header is None
    assert gateway.verify_webhook_signature(payload, None)
    assert not gateway.verify_webhook_signature({**payload, "total_amount": "1.00"}, None)
    # optional fields left empty do not take part in the signature
    assert gateway.sign({**payload, "sign_type": "SHA256", "extra": None}) == payload["sign"]


def test_ebirr_signature(gateways, sign):
    gateway = gateways.get("ebirr")
    payload, signature = sign("ebirr", {"transactionReference": "EBIRR_1_x", "paymentStatus": "COMPLETED"})
    assert gateway.verify_webhook_signature(payload, signature)
    assert not gateway.verify_webhook_signature(payload, "0" * 64)


def test_kaafi_signature(gateways, sign):
    gateway = gateways.get("kaafi")
    payload, signature = sign("kaafi", {"merchantCode": "kaafi-merchant", "transactionRef": "KAAFI_1_x",
                                        "amount": "4000.00", "timestamp": 1700000000000, "status": "PAID"})
    assert gateway.verify_webhook_signature(payload, signature)
    assert gateway.verify_webhook_signature({**payload, "signature": signature}, None)
    assert not gateway.verify_webhook_signature({**payload, "amount": "1.00"}, signature)


def test_parse_callback_normalises_fields(gateways):
    chapa = gateways.get("chapa").parse_callback(
        {"tx_ref": "CHAPA_1_x", "status": "success", "amount": "4000", "reference": "CH-9", "meta": {"booking_id": "b-1"}})
    assert (chapa.status, chapa.provider_reference, chapa.booking_id) == ("success", "CHAPA_1_x", "b-1")
    assert chapa.amount == Decimal("4000.00")
    assert chapa.transaction_id == "CH-9"

    telebirr = gateways.get("telebirr").parse_callback(
        {"out_trade_no": "TELEBIRR_1_x", "trade_status": "TRADE_CLOSED", "msg": "closed by user"})
    assert telebirr.status == "failed"
    assert telebirr.error_message == "closed by user"

    ebirr = gateways.get("ebirr").parse_callback(
        {"transactionReference": "EBIRR_1_x", "paymentStatus": "PROCESSING", "metadata": {"bookingId": "b-2"}})
    assert (ebirr.status, ebirr.booking_id) == ("pending", "b-2")

    kaafi = gateways.get("kaafi").parse_callback({"providerReference": "KAAFI_1_x", "status": "paid"})
    assert (kaafi.status, kaafi.provider_reference) == ("success", "KAAFI_1_x")


def test_registry_lookup(gateways):
    assert gateways.get(" TeleBirr ").get_provider_name() == "telebirr"
    assert sorted(gateways.providers()) == sorted(PROVIDERS)
    assert sorted(gateways.configured_providers()) == sorted(PROVIDERS)
    assert gateways.provider_for_reference("KAAFI_1700000000000_abcdefghi") == "kaafi"
    assert gateways.provider_for_reference("PAYPAL_1_x") is None
    assert gateways.provider_for_reference(None) is None

    with pytest.raises(UnsupportedProvider):
        gateways.get("paypal")
    with pytest.raises(UnsupportedProvider):
        gateways.get(None)
    with pytest.raises(UnsupportedProvider):
        gateways.get(7)
    assert gateways.provider_for_reference(12345) is None


def test_amount_parsing(gateways):
    assert to_decimal("4000.00") == Decimal("4000.00")
    assert to_decimal(4000) == Decimal("4000")
    assert to_decimal(None) is None
    assert to_decimal("") is None
    assert to_decimal("4,000.00").is_nan()
    assert to_decimal("sNaN").is_nan()
    assert to_decimal("Infinity").is_nan()
    assert to_decimal("not-a-number") != Decimal("4000.00")

    parsed = gateways.get("chapa").parse_callback({"tx_ref": "CHAPA_1_x", "status": "success", "amount": "abc"})
    assert parsed.amount.is_nan()


def test_registry_without_credentials_reports_nothing_configured(providers):
    registry = GatewayRegistry.from_config({}, transport=httpx.MockTransport(providers))
    try:
        assert registry.configured_providers() == []
        assert len(registry.providers()) == 4
    finally:
        registry.close()
