import json

from apps.drops.exceptions import BlobExpiredError, PaymentRequiredError, RateLimitedError, StorageError
from utils.response_wrapper import error_response


def _body(resp):
    return json.loads(resp.body)


def test_plain_error_has_code_and_message_only():
    resp = error_response(BlobExpiredError())
    assert resp.status_code == 410
    assert _body(resp) == {'error': 'EXPIRED', 'message': BlobExpiredError.message}


def test_rate_limited_body_and_header():
    resp = error_response(RateLimitedError(60))
    assert resp.status_code == 429
    assert resp.headers['retry-after'] == '60'
    assert _body(resp) == {'error': 'RATE_LIMITED', 'message': 'Too many requests', 'retryAfter': 60}


def test_payment_required_body_and_headers():
    resp = error_response(PaymentRequiredError(1.5, 'USD', ['lightning']))
    assert resp.status_code == 402
    assert resp.headers['x-payment-price'] == '1.5'
    assert _body(resp)['payment'] == {'price': 1.5, 'currency': 'USD', 'methods': ['lightning']}


def test_storage_error_is_500():
    resp = error_response(StorageError('Failed to store blob'))
    assert resp.status_code == 500
    assert _body(resp) == {'error': 'STORAGE_ERROR', 'message': 'Failed to store blob'}
