import asyncio

import httpx
import pytest

from apps.drops import cipher
from apps.drops.client import DropClient
from apps.drops.exceptions import BlobExpiredError, BlobNotFoundError, PaymentRequiredError, RateLimitedError
from apps.drops.secret_codec import COMPACT_LENGTH, encode_legacy

HOST = 'https://drop.example'
EXPIRES = '2030-01-01T00:00:00.000Z'


class FakeGateway:
    """Just enough of /api/drop and /api/blob/{id} to drive DropClient."""

    def __init__(self):
        self.blobs = {}
        self.prices = {}
        self.expired = set()
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == 'POST' and path == '/api/drop':
            blob_id = f'AbCdEfGhIj{len(self.blobs):02d}'
            self.blobs[blob_id] = request.content
            price = request.url.params.get('price')
            if price:
                self.prices[blob_id] = float(price)
            return httpx.Response(201, json={'id': blob_id, 'expires': EXPIRES})
        if request.method == 'GET' and path.startswith('/api/blob/'):
            blob_id = path.rsplit('/', 1)[1]
            if blob_id in self.expired:
                return httpx.Response(410, json={'error': 'EXPIRED', 'message': 'Blob has expired'})
            if blob_id not in self.blobs:
                return httpx.Response(404, json={'error': 'NOT_FOUND', 'message': 'Blob not found'})
            if blob_id in self.prices and not request.url.params.get('paymentProof'):
                payment = {'price': self.prices[blob_id], 'currency': 'USD', 'methods': ['lightning', 'stripe']}
                return httpx.Response(402, json={'error': 'PAYMENT_REQUIRED', 'message': 'Payment required',
                                                 'payment': payment})
            return httpx.Response(200, content=self.blobs[blob_id])
        return httpx.Response(404, json={'error': 'NOT_FOUND', 'message': 'Not found'})


@pytest.fixture
def gateway():
    return FakeGateway()


def run(gateway, scenario):
    async def _main():
        async with httpx.AsyncClient(transport=httpx.MockTransport(gateway)) as http:
            return await scenario(DropClient(HOST, http=http))

    return asyncio.run(_main())


def test_share_then_read(gateway):
    async def scenario(client):
        shared = await client.share('meet at noon', ttl=2)
        return shared, await client.read(shared.url)

    shared, plaintext = run(gateway, scenario)

    assert plaintext == b'meet at noon'
    assert shared.url.startswith(f'{HOST}/v/{shared.id}#')
    assert len(shared.url.split('#', 1)[1]) == COMPACT_LENGTH
    assert shared.expires == EXPIRES

    upload = gateway.requests[0]
    assert upload.url.params['ttl'] == '2'
    assert upload.headers['content-type'] == 'application/octet-stream'
    # the server only ever sees ciphertext
    assert b'meet at noon' not in gateway.blobs[shared.id]
    assert len(gateway.blobs[shared.id]) % 16 == 0


def test_read_legacy_link(gateway):
    key, iv = cipher.generate_key(), cipher.generate_iv()
    gateway.blobs['LegacyBlob01'] = cipher.encrypt(b'old link', key, iv)
    url = f'{HOST}/v/LegacyBlob01#{encode_legacy(key, iv)}'

    assert run(gateway, lambda client: client.read(url)) == b'old link'


def test_paid_blob_needs_proof(gateway):
    async def scenario(client):
        shared = await client.share(b'\x01\x02', price=0.05)
        with pytest.raises(PaymentRequiredError) as exc:
            await client.read(shared.url)
        assert exc.value.price == 0.05
        assert exc.value.currency == 'USD'
        return await client.read(shared.url, payment_proof='tok_123')

    assert run(gateway, scenario) == b'\x01\x02'
    assert gateway.requests[-1].url.params['paymentProof'] == 'tok_123'


def test_expired_and_missing(gateway):
    async def scenario(client):
        shared = await client.share(b'gone soon')
        gateway.expired.add(shared.id)
        with pytest.raises(BlobExpiredError):
            await client.read(shared.url)

        missing = shared.url.replace(shared.id, 'ZZZZZZZZZZZZ')
        with pytest.raises(BlobNotFoundError):
            await client.read(missing)

    run(gateway, scenario)


def test_rate_limited_upload():
    def handler(request):
        return httpx.Response(429, headers={'Retry-After': '3600'},
                              json={'error': 'RATE_LIMITED', 'message': 'Too many requests', 'retryAfter': 3600})

    async def scenario(client):
        with pytest.raises(RateLimitedError) as exc:
            await client.share(b'x')
        return exc.value.retry_after

    assert run(handler, scenario) == 3600
