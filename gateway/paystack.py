"""Paystack REST client.

Only the two calls the checkout flow needs are wrapped: transaction
initialization and transaction verification. Amounts cross this boundary in
major units (e.g. KES) and are converted to the provider's minor units here.
"""
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from errors import GatewayError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://api.paystack.co'

class GatewayConnectionError(GatewayError):
    """Raised when the provider cannot be reached or answers with garbage"""
    pass

def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to integer minor units (x100, half-up)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

def from_minor_units(amount: int) -> Decimal:
    """Convert integer minor units back to a two-place major-unit amount."""
    return (Decimal(int(amount)) / 100).quantize(Decimal('0.01'))

def parse_metadata(metadata: Any) -> Dict[str, Any]:
    """Normalize provider metadata to a dict.

    Metadata sent as a JSON string is echoed back as one; anything that is not
    an object becomes an empty dict.
    """
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            return {}
    return metadata if isinstance(metadata, dict) else {}

class PaystackClient:
    """Paystack API client"""

    def __init__(
        self,
        secret_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 30,
        session: Optional[requests.Session] = None
    ):
        """Initialize client.

        Args:
            secret_key: Paystack secret key (sk_...)
            base_url: API root, overridable for tests
            timeout: Request timeout in seconds
            session: Optional pre-built session
        """
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers['Authorization'] = f'Bearer {secret_key}'
        self.session.headers['Content-Type'] = 'application/json'

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Make a call to the Paystack API.

        Args:
            method: HTTP method
            path: Path below the API root
            payload: JSON body

        Returns:
            The ``data`` object of the provider response

        Raises:
            GatewayConnectionError: Transport failure or unparseable response
            GatewayError: Provider reported ``status: false``
        """
        url = f"{self.base_url}{path}"

        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)

            # Paystack puts a useful message in error bodies, read it first
            result = response.json()
            if not isinstance(result, dict):
                raise ValueError("response is not a JSON object")

            if not result.get('status'):
                message = result.get('message') or f"HTTP {response.status_code}"
                logger.warning(f"Paystack {method} {path} rejected: {message}")
                raise GatewayError(message)

            response.raise_for_status()
            return result.get('data') or {}

        except requests.exceptions.Timeout as e:
            raise GatewayConnectionError(
                f"Payment provider timed out after {self.timeout} seconds"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise GatewayConnectionError(
                f"Failed to connect to payment provider at {self.base_url}"
            ) from e
        except requests.exceptions.HTTPError as e:
            raise GatewayConnectionError(f"HTTP error occurred: {str(e)}") from e
        except requests.exceptions.RequestException as e:
            raise GatewayConnectionError(f"Request failed: {str(e)}") from e
        except (KeyError, ValueError) as e:
            raise GatewayConnectionError(f"Invalid response format: {str(e)}") from e

    def initialize(
        self,
        email: str,
        amount: Decimal,
        reference: str,
        callback_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        currency: str = 'KES'
    ) -> Dict[str, Any]:
        """Create a hosted payment session.

        Args:
            email: Payer email
            amount: Amount in major units
            reference: Our unique payment reference
            callback_url: Where the provider redirects after payment
            metadata: Echoed back on verify and in webhooks
            currency: ISO currency code

        Returns:
            Dict with authorization_url, access_code and reference

        Raises:
            GatewayError: If the provider refuses or no redirect URL comes back
        """
        payload = {
            'email': email,
            'amount': to_minor_units(amount),
            'reference': reference,
            'currency': currency,
            'metadata': metadata or {}
        }
        if callback_url:
            payload['callback_url'] = callback_url

        data = self._request('POST', '/transaction/initialize', payload)
        if not data.get('authorization_url'):
            raise GatewayError("Payment provider did not return an authorization URL")

        logger.info(f"Initialized payment {reference} for {amount} {currency}")
        return {
            'authorization_url': data['authorization_url'],
            'access_code': data.get('access_code'),
            'reference': data.get('reference', reference)
        }

    def verify(self, reference: str) -> Dict[str, Any]:
        """Look up the outcome of a payment.

        Args:
            reference: Payment reference

        Returns:
            Dict containing:
                - paid: True only for a successful charge
                - status: provider status string
                - amount: amount paid in major units
                - currency, reference, channel, paid_at, metadata
        """
        data = self._request('GET', f'/transaction/verify/{quote(reference, safe="")}')

        metadata = parse_metadata(data.get('metadata'))

        return {
            'paid': data.get('status') == 'success',
            'status': data.get('status'),
            'amount': from_minor_units(data.get('amount') or 0),
            'currency': data.get('currency'),
            'reference': data.get('reference', reference),
            'channel': data.get('channel'),
            'paid_at': data.get('paid_at') or data.get('paidAt'),
            'metadata': metadata,
            'customer': data.get('customer') or {}
        }
