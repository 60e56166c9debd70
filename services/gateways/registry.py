import logging

from models.payment import PaymentProvider
from services.errors import UnsupportedProvider
from services.gateways.chapa import ChapaGateway
from services.gateways.ebirr import EBirrGateway
from services.gateways.kaafi import KaafiGateway
from services.gateways.telebirr import TeleBirrGateway

logger = logging.getLogger(__name__)

GATEWAY_CLASSES = {
    PaymentProvider.CHAPA: ChapaGateway,
    PaymentProvider.TELEBIRR: TeleBirrGateway,
    PaymentProvider.EBIRR: EBirrGateway,
    PaymentProvider.KAAFI: KaafiGateway,
}


class GatewayRegistry:
    """Provider name -> adapter instance, built once at startup and injected."""

    def __init__(self, gateways: dict):
        self._gateways = dict(gateways)

    @classmethod
    def from_config(cls, config, transport=None) -> "GatewayRegistry":
        timeout = config.get("PAYMENT_HTTP_TIMEOUT_SECONDS", 30)
        return cls({
            name: gateway_cls(config, timeout=timeout, transport=transport)
            for name, gateway_cls in GATEWAY_CLASSES.items()
        })

    def get(self, provider: str):
        gateway = self._gateways.get(provider.strip().lower()) if isinstance(provider, str) else None
        if gateway is None:
            raise UnsupportedProvider(f"Unsupported payment provider: {provider}")
        return gateway

    def providers(self) -> list:
        return list(self._gateways)

    def configured_providers(self) -> list:
        return [name for name, gw in self._gateways.items() if gw.is_configured()]

    def provider_for_reference(self, reference: str):
        # references look like TELEBIRR_<epoch-ms>_<random>
        if not isinstance(reference, str):
            return None
        prefix = reference.split("_", 1)[0].upper()
        for name, gw in self._gateways.items():
            if gw.reference_prefix == prefix:
                return name
        return None

    def close(self):
        for gw in self._gateways.values():
            gw.close()
