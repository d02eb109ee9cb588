"""
Integrations package initialization.
Exports the payment gateway client.
"""
from .gateway import GatewayClient, GatewayStatus, CheckoutSession, MidtransGateway

__all__ = [
    "GatewayClient",
    "GatewayStatus",
    "CheckoutSession",
    "MidtransGateway",
]
