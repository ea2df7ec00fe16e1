"""Async client: encrypt locally, upload ciphertext, hand out a share link.

The decryption secret only ever lives in the link fragment; the gateway sees
ciphertext and the blob id.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

import httpx

from apps.drops import cipher
from apps.drops.exceptions import (
    BlobExpiredError,
    BlobNotFoundError,
    DropError,
    PaymentRequiredError,
    RateLimitedError,
)
from apps.drops.secret_codec import build_share_url, parse_share_url
from config.settings import PUBLIC_HOST

logger = logging.getLogger(__name__)


@dataclass
class ShareResult:
    url: str
    id: str
    expires: str


class DropClient:

    def __init__(self, host: str = PUBLIC_HOST, http: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.host = host.rstrip('/')
        self._http = http
        self.timeout = timeout

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._http is not None:
            return await self._http.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    @staticmethod
    def _raise_for_error(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {}
        message = body.get('message') if isinstance(body, dict) else None
        if resp.status_code == 402:
            payment = body.get('payment') or {}
            raise PaymentRequiredError(payment.get('price'), payment.get('currency', 'USD'),
                                       payment.get('methods'), message)
        if resp.status_code == 404:
            raise BlobNotFoundError(message)
        if resp.status_code == 410:
            raise BlobExpiredError(message)
        if resp.status_code == 429:
            raise RateLimitedError(int(resp.headers.get('Retry-After', '0') or 0), message)
        err = DropError(message or f'HTTP {resp.status_code}')
        err.status_code = resp.status_code
        err.code = body.get('error', err.code) if isinstance(body, dict) else err.code
        raise err

    async def share(self, content: Union[bytes, str], ttl: Optional[int] = None,
                    price: Optional[float] = None) -> ShareResult:
        key, iv = cipher.generate_key(), cipher.generate_iv()
        ciphertext = cipher.encrypt(content, key, iv)

        params = {}
        if ttl is not None:
            params['ttl'] = str(ttl)
        if price is not None:
            params['price'] = str(price)
        resp = await self._send(
            'POST', f'{self.host}/api/drop', content=ciphertext, params=params,
            headers={'Content-Type': 'application/octet-stream'},
        )
        self._raise_for_error(resp)
        data = resp.json()
        logger.debug("shared %d bytes as %s", len(ciphertext), data['id'])
        return ShareResult(url=build_share_url(self.host, data['id'], key, iv), id=data['id'], expires=data['expires'])

    async def read(self, url: str, payment_proof: Optional[str] = None) -> bytes:
        """Download and decrypt the blob behind a share link (either link format)."""
        link = parse_share_url(url)
        params = {'paymentProof': payment_proof} if payment_proof else {}
        resp = await self._send('GET', f'{link.host}/api/blob/{link.id}', params=params)
        self._raise_for_error(resp)
        return cipher.decrypt(resp.content, link.key, link.iv)
