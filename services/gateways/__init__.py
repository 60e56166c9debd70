from .base import PaymentGateway, InitiationResult, VerificationResult, CallbackData
from .chapa import ChapaGateway
from .telebirr import TeleBirrGateway
from .ebirr import EBirrGateway
from .kaafi import KaafiGateway
from .registry import GatewayRegistry
