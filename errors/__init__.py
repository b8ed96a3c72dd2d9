"""Marketplace error taxonomy.

Every business-rule violation raised by the managers derives from
MarketplaceError and carries a stable machine code plus optional details
(for example the minimum acceptable bid). The API layer maps the error class
to an HTTP status and serializes ``to_dict()`` as the response detail.
"""
from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base class for marketplace errors."""

    status_code = 500
    default_code = 'Error'

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for an HTTP error body."""
        body = {'error': self.code, 'message': self.message}
        body.update({key: str(value) if value is not None else None for key, value in self.details.items()})
        return body


class ValidationError(MarketplaceError):
    """Raised when request input is malformed or out of range."""
    status_code = 400
    default_code = 'ValidationError'


class NotFoundError(MarketplaceError):
    """Raised when a referenced entity does not exist."""
    status_code = 404
    default_code = 'NotFound'


class ForbiddenError(MarketplaceError):
    """Raised when the requester may not act on the entity."""
    status_code = 403
    default_code = 'Forbidden'


class ConflictError(MarketplaceError):
    """Raised when the entity's current state does not allow the operation."""
    status_code = 409
    default_code = 'Conflict'


class RateLimitedError(ConflictError):
    """Raised when a caller exceeds its request window."""
    status_code = 429
    default_code = 'RateLimited'

    def __init__(self, message: str, reset_time=None):
        super().__init__(message, details={'reset_time': reset_time} if reset_time else None)
        self.reset_time = reset_time


class InsufficientBalanceError(ConflictError):
    """Raised when a debit exceeds the user's ledger balance."""
    default_code = 'InsufficientBalance'

    def __init__(self, required_amount, available_balance):
        self.required_amount = required_amount
        self.available_balance = available_balance
        super().__init__(
            f"Insufficient balance: required {required_amount}, available {available_balance}",
            details={
                'required_amount': required_amount,
                'available_balance': available_balance
            }
        )


class InternalError(MarketplaceError):
    """Raised when the store fails underneath an operation."""
    status_code = 500
    default_code = 'InternalError'


__all__ = [
    'MarketplaceError',
    'ValidationError',
    'NotFoundError',
    'ForbiddenError',
    'ConflictError',
    'RateLimitedError',
    'InsufficientBalanceError',
    'InternalError'
]
