"""Blob lifecycle: the dual-store BlobStore and the gateway operations on top of it.

The metadata store is authoritative for existence and expiry; the body store
is authoritative for content. They are written with two sequential calls, not
a transaction. A body whose metadata write failed is an orphan that the
reconciler removes once its side-carried expiry passes. Inconsistencies seen
on read (metadata without a body) are repaired by dropping the metadata.
"""
import logging
import math
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Tuple

from apps.drops.exceptions import (
    BlobExpiredError,
    BlobNotFoundError,
    DropError,
    InvalidRequestError,
    PayloadTooLargeError,
    PaymentRequiredError,
    RateLimitedError,
    StorageError,
)
from apps.drops.identifiers import IdentifierIssuer, validate_id
from apps.drops.metadata import MetadataStore
from apps.drops.ratelimit import Denied, RateLimiter, pick_counter_store
from apps.drops.schema import BlobMetadata
from apps.drops.storage import StorageInterface, pick_storage
from config.settings import DEFAULT_TTL_HOURS, ID_MAX_ATTEMPTS, MAX_BLOB_SIZE, MAX_TTL_HOURS, PAYMENT_CURRENCY, \
    PAYMENT_METHODS
from utils.timeutil import now_ms

logger = logging.getLogger(__name__)

MIN_TTL_HOURS = 1
HOUR_MS = 3600 * 1000
_TTL_RE = re.compile(r"\s*([+-]?[0-9]+)")


@asynccontextmanager
async def _backend(op: str, blob_id: str):
    try:
        yield
    except DropError:
        raise
    except Exception as e:
        logger.exception("%s failed for blob %s", op, blob_id)
        raise StorageError(f'Failed to {op} blob') from e


class BlobStore:

    def __init__(self, storage: StorageInterface, metadata: MetadataStore):
        self.storage = storage
        self.metadata = metadata

    async def exists(self, blob_id: str) -> bool:
        async with _backend('check', blob_id):
            return await self.storage.exists(blob_id)

    async def put(self, blob_id: str, data: bytes, meta: BlobMetadata) -> None:
        async with _backend('store', blob_id):
            await self.storage.put(blob_id, data, meta.created_at, meta.expires_at)
        try:
            await self.metadata.put(blob_id, meta, ttl_ms=max(meta.expires_at - now_ms(), 0))
        except Exception as e:
            logger.exception("metadata write failed for %s; body left as orphan for the reconciler", blob_id)
            raise StorageError('Failed to store blob') from e

    async def lookup(self, blob_id: str) -> BlobMetadata:
        """Existence and expiry from metadata alone; an expired blob is deleted here."""
        async with _backend('read', blob_id):
            meta = await self.metadata.get(blob_id)
        if meta is None:
            raise BlobNotFoundError()
        if now_ms() > meta.expires_at:
            try:
                await self.delete(blob_id)
            except StorageError:
                logger.warning("could not delete expired blob %s; leaving it to the reconciler", blob_id)
            raise BlobExpiredError()
        return meta

    async def read_body(self, blob_id: str) -> bytes:
        async with _backend('read', blob_id):
            data = await self.storage.get(blob_id)
            if data is None:
                logger.warning("metadata for %s has no body; dropping metadata", blob_id)
                await self.metadata.delete(blob_id)
        if data is None:
            raise BlobNotFoundError('Blob not found')
        return data

    async def get(self, blob_id: str) -> Tuple[bytes, BlobMetadata]:
        meta = await self.lookup(blob_id)
        return await self.read_body(blob_id), meta

    async def delete(self, blob_id: str) -> None:
        async with _backend('delete', blob_id):
            await self.metadata.delete(blob_id)
            await self.storage.delete(blob_id)


@dataclass
class DropReceipt:
    id: str
    expires_at: int


def parse_ttl(value: Optional[str]) -> int:
    """TTL in hours from the leading integer of ``value`` ("12h" is 12, "1.5" is 1).

    No leading integer, or one outside [1, MAX_TTL_HOURS], gives the default.
    """
    m = _TTL_RE.match(value or '')
    if m is None:
        return DEFAULT_TTL_HOURS
    hours = int(m.group(1))
    if hours < MIN_TTL_HOURS or hours > MAX_TTL_HOURS:
        return DEFAULT_TTL_HOURS
    return hours


def parse_price(value: Optional[str]) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


class DropService:
    """Upload and download flows of the gateway."""

    def __init__(self, blobs: BlobStore, limiter: RateLimiter, issuer: IdentifierIssuer):
        self.blobs = blobs
        self.limiter = limiter
        self.issuer = issuer

    async def admit(self, action: str, client_key: str) -> int:
        """Count the request against ``action``; returns the remaining budget."""
        try:
            decision = await self.limiter.check(action, client_key)
        except Exception as e:
            logger.exception("rate limiter failed for %s", action)
            raise StorageError('Rate limiter unavailable') from e
        if isinstance(decision, Denied):
            raise RateLimitedError(decision.retry_after)
        return decision.remaining

    @staticmethod
    def check_declared_size(content_length: Optional[str]) -> None:
        if content_length is None:
            return
        try:
            declared = int(content_length)
        except ValueError:
            return
        if declared == 0:
            raise InvalidRequestError('Request body is required', code='EMPTY_BODY')
        if declared > MAX_BLOB_SIZE:
            raise PayloadTooLargeError(f'Maximum blob size is {MAX_BLOB_SIZE // (1024 * 1024)}MB')

    @staticmethod
    async def receive_body(chunks: AsyncIterator[bytes]) -> bytes:
        """Collect a streamed request body, giving up as soon as it exceeds MAX_BLOB_SIZE."""
        parts, size = [], 0
        async for chunk in chunks:
            size += len(chunk)
            if size > MAX_BLOB_SIZE:
                raise PayloadTooLargeError(f'Maximum blob size is {MAX_BLOB_SIZE // (1024 * 1024)}MB')
            parts.append(chunk)
        return b''.join(parts)

    async def create_drop(self, body: bytes, ttl: Optional[str] = None, price: Optional[str] = None) -> DropReceipt:
        if not body:
            raise InvalidRequestError('Request body is required', code='EMPTY_BODY')
        if len(body) > MAX_BLOB_SIZE:
            raise PayloadTooLargeError(f'Maximum blob size is {MAX_BLOB_SIZE // (1024 * 1024)}MB')

        ttl_hours = parse_ttl(ttl)
        price_usd = parse_price(price)
        blob_id = await self.issuer.issue_unique(self.blobs.exists)

        created = now_ms()
        meta = BlobMetadata(
            created_at=created,
            expires_at=created + ttl_hours * HOUR_MS,
            has_payment=price_usd is not None,
            price_usd=price_usd,
        )
        await self.blobs.put(blob_id, body, meta)
        logger.info("stored blob %s (%d bytes, ttl=%dh, paid=%s)", blob_id, len(body), ttl_hours, meta.has_payment)
        return DropReceipt(id=blob_id, expires_at=meta.expires_at)

    async def fetch_drop(self, blob_id: str, payment_proof: Optional[str] = None) -> Tuple[bytes, BlobMetadata]:
        if not validate_id(blob_id):
            raise InvalidRequestError('Invalid blob id', code='INVALID_ID')
        meta = await self.blobs.lookup(blob_id)
        # TODO: verify signed, single-use, time-bounded payment proofs; any non-empty token passes today
        if meta.has_payment and not payment_proof:
            raise PaymentRequiredError(meta.price_usd, PAYMENT_CURRENCY, PAYMENT_METHODS)
        data = await self.blobs.read_body(blob_id)
        return data, meta


def build_blob_store() -> BlobStore:
    return BlobStore(pick_storage(), MetadataStore())


def build_service() -> DropService:
    return DropService(
        blobs=build_blob_store(),
        limiter=RateLimiter(pick_counter_store()),
        issuer=IdentifierIssuer(max_attempts=ID_MAX_ATTEMPTS),
    )
