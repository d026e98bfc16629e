from django.conf import settings

from .base import BasePaymentGateway
from .local import LocalGateway
from .stripe import StripeGateway


def get_payment_gateway(gateway_name: str = None, **kwargs) -> BasePaymentGateway:
    """
    Factory function to get payment gateway instances.

    Args:
        gateway_name: Name of the gateway, defaults to settings.PAYMENT_GATEWAY
        **kwargs: Additional configuration

    Returns:
        BasePaymentGateway: Payment gateway instance
    """
    gateways = {
        'local': LocalGateway,
        'stripe': StripeGateway,
    }

    gateway_name = gateway_name or settings.PAYMENT_GATEWAY
    if gateway_name not in gateways:
        raise ValueError(f"Unknown payment gateway: {gateway_name}")

    return gateways[gateway_name](**kwargs)
