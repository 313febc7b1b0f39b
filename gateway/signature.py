"""Webhook signature checks (hex HMAC-SHA512 of the raw request body)."""
import hashlib
import hmac
from typing import Optional, Union

def compute_signature(secret: str, raw_body: Union[bytes, str]) -> str:
    """Compute the signature Paystack sends in ``x-paystack-signature``."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha512).hexdigest()

def verify_signature(secret: str, raw_body: Union[bytes, str], signature: Optional[str]) -> bool:
    """Constant-time check of a webhook signature.

    Returns False for a missing secret or signature.
    """
    if not secret or not signature:
        return False
    expected = compute_signature(secret, raw_body)
    return hmac.compare_digest(expected, signature.strip().lower())
