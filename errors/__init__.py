"""Marketplace error hierarchy.

Every domain failure carries a stable machine-readable ``code`` and the HTTP
status the API should answer with. Handlers never inspect messages.
"""
from typing import Optional

class MarketplaceError(Exception):
    """Base exception for marketplace errors."""
    code = 'INTERNAL_ERROR'
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code

    def to_dict(self):
        return {'success': False, 'error': self.message, 'code': self.code}

class ConfigError(MarketplaceError):
    """Raised when a required setting such as the gateway secret is missing."""
    code = 'CONFIG_ERROR'
    status_code = 500

class ValidationError(MarketplaceError):
    """Raised when request input is missing or malformed."""
    code = 'VALIDATION_ERROR'
    status_code = 400

class NotFoundError(MarketplaceError):
    """Raised when a referenced record does not exist."""
    code = 'NOT_FOUND'
    status_code = 404

class InvalidStatusError(MarketplaceError):
    """Raised when a record is not in a state that allows the operation."""
    code = 'INVALID_STATUS'
    status_code = 400

class GatewayError(MarketplaceError):
    """Raised when the payment provider rejects a call or is unreachable."""
    code = 'PAYSTACK_ERROR'
    status_code = 400

class VerifyFailedError(MarketplaceError):
    """Raised when the provider reports a payment as not successful."""
    code = 'VERIFY_FAILED'
    status_code = 400

class AmountMismatchError(MarketplaceError):
    """Raised when the paid amount is less than the amount due."""
    code = 'AMOUNT_MISMATCH'
    status_code = 400

class DuplicateError(MarketplaceError):
    """Raised when a reference has already been processed."""
    code = 'DUPLICATE'
    status_code = 400

class UserMismatchError(MarketplaceError):
    """Raised when a payment belongs to a different user."""
    code = 'USER_MISMATCH'
    status_code = 400

class InsufficientFundsError(MarketplaceError):
    """Raised when a wallet bucket cannot cover a debit."""
    code = 'INSUFFICIENT_FUNDS'
    status_code = 400

class AuthError(MarketplaceError):
    """Raised when the caller is not authenticated."""
    code = 'AUTH_ERROR'
    status_code = 401

class InvalidSignatureError(MarketplaceError):
    """Raised when a webhook signature does not match."""
    code = 'INVALID_SIGNATURE'
    status_code = 401

class ForbiddenError(MarketplaceError):
    """Raised when the caller may not act on a resource."""
    code = 'FORBIDDEN'
    status_code = 403

class DisputeExistsError(MarketplaceError):
    """Raised when a transaction already has a dispute."""
    code = 'DISPUTE_EXISTS'
    status_code = 409

__all__ = [
    'MarketplaceError',
    'ConfigError',
    'ValidationError',
    'NotFoundError',
    'InvalidStatusError',
    'GatewayError',
    'VerifyFailedError',
    'AmountMismatchError',
    'DuplicateError',
    'UserMismatchError',
    'InsufficientFundsError',
    'AuthError',
    'InvalidSignatureError',
    'ForbiddenError',
    'DisputeExistsError'
]
