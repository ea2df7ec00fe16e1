"""Metadata store: the authoritative source for blob existence and expiry.

Records carry a store-level TTL that never outlives the blob itself. Eviction
is passive: a record stays readable until ``evict_expired`` purges it, so
readers still check ``expires_at`` themselves.
"""
import logging
from typing import Optional

from apps.drops.models import BlobMeta
from apps.drops.schema import BlobMetadata
from utils.timeutil import now_ms

logger = logging.getLogger(__name__)


class MetadataStore:

    async def put(self, blob_id: str, meta: BlobMetadata, ttl_ms: int) -> None:
        ttl_expires_at = min(now_ms() + ttl_ms, meta.expires_at)
        await BlobMeta.create(
            id=blob_id,
            created_at=meta.created_at,
            expires_at=meta.expires_at,
            has_payment=meta.has_payment,
            price_usd=meta.price_usd,
            ttl_expires_at=ttl_expires_at,
        )

    async def get(self, blob_id: str) -> Optional[BlobMetadata]:
        row = await BlobMeta.filter(id=blob_id).first()
        if not row:
            return None
        return BlobMetadata(
            created_at=row.created_at,
            expires_at=row.expires_at,
            has_payment=row.has_payment,
            price_usd=row.price_usd,
        )

    async def delete(self, blob_id: str) -> None:
        await BlobMeta.filter(id=blob_id).delete()

    async def evict_expired(self, now: Optional[int] = None) -> int:
        now = now_ms() if now is None else now
        evicted = await BlobMeta.filter(ttl_expires_at__lte=now).delete()
        if evicted:
            logger.info("evicted %d expired metadata records", evicted)
        return evicted
