"""Errors raised by the drop gateway.

Every ``DropError`` maps to one HTTP status and a machine-readable code;
``utils.response_wrapper`` turns them into JSON responses.
"""
from typing import Optional


class DropError(Exception):
    status_code = 500
    code = 'INTERNAL_ERROR'
    message = 'Internal error'

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    @property
    def headers(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        return {'error': self.code, 'message': self.message}


class InvalidRequestError(DropError):
    status_code = 400
    code = 'INVALID_REQUEST'

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code


class PayloadTooLargeError(DropError):
    status_code = 413
    code = 'PAYLOAD_TOO_LARGE'


class RateLimitedError(DropError):
    status_code = 429
    code = 'RATE_LIMITED'
    message = 'Too many requests'

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after

    @property
    def headers(self) -> dict:
        return {'Retry-After': str(self.retry_after)}

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['retryAfter'] = self.retry_after
        return data


class BlobNotFoundError(DropError):
    status_code = 404
    code = 'NOT_FOUND'
    message = 'Blob not found or expired'


class BlobExpiredError(DropError):
    status_code = 410
    code = 'EXPIRED'
    message = 'Blob has expired'


class PaymentRequiredError(DropError):
    status_code = 402
    code = 'PAYMENT_REQUIRED'
    message = 'This blob requires payment'

    def __init__(self, price: Optional[float], currency: str = 'USD', methods: Optional[list] = None,
                 message: Optional[str] = None):
        super().__init__(message)
        self.price = price
        self.currency = currency
        self.methods = list(methods or [])

    @property
    def headers(self) -> dict:
        return {
            'X-Payment-Price': str(self.price),
            'X-Payment-Currency': self.currency,
            'X-Payment-Methods': ','.join(self.methods),
        }

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['payment'] = {'price': self.price, 'currency': self.currency, 'methods': self.methods}
        return data


class StorageError(DropError):
    status_code = 500
    code = 'STORAGE_ERROR'
    message = 'Storage backend failure'


class IdCollisionError(StorageError):
    code = 'ID_COLLISION'
    message = 'Failed to generate unique ID, please retry'


class InvalidSecretError(ValueError):
    """A share-link secret could not be decoded into a 32-byte key and 16-byte IV."""
