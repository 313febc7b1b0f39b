"""Payment gateway adapter for Paystack"""
from typing import Optional

from errors import ConfigError, GatewayError
from .paystack import (
    PaystackClient,
    GatewayConnectionError,
    to_minor_units,
    from_minor_units,
    parse_metadata,
    DEFAULT_BASE_URL
)
from .signature import compute_signature, verify_signature

def client_from_settings(settings: Optional[dict] = None) -> PaystackClient:
    """Build a client from settings.

    Raises:
        ConfigError: If no secret key is configured
    """
    if settings is None:
        from config import settings_conf as settings

    secret = settings.get('paystack_secret_key')
    if not secret:
        raise ConfigError("Paystack secret key is not configured")

    return PaystackClient(
        secret,
        base_url=settings.get('paystack_base_url') or DEFAULT_BASE_URL,
        timeout=settings.get('gateway_timeout', 30)
    )

__all__ = [
    'PaystackClient',
    'GatewayError',
    'GatewayConnectionError',
    'client_from_settings',
    'compute_signature',
    'verify_signature',
    'to_minor_units',
    'from_minor_units',
    'parse_metadata'
]
