"""Sweep of the object body store.

Removes bodies whose side-carried expiry has passed, and bodies without one
(written before expiry tagging) once they are older than the longest TTL plus
a margin. Metadata-store TTL alone cannot guarantee this: a failed metadata
write leaves an orphan body behind.

Each page's deletions are independent and idempotent, so a sweep can stop at
any point and resume from the cursor it reported.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from apps.drops.services import BlobStore
from apps.drops.storage import ObjectInfo
from config.settings import LEGACY_MAX_AGE_SECS, RECONCILE_PAGE_SIZE
from utils.timeutil import now_ms

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    scanned: int = 0
    expired: int = 0
    legacy: int = 0
    failed: int = 0
    pages: int = 0
    # resume point when the sweep stopped early; None when the store was exhausted
    cursor: Optional[str] = None

    @property
    def deleted(self) -> int:
        return self.expired + self.legacy


class Reconciler:

    def __init__(self, blobs: BlobStore, page_size: int = RECONCILE_PAGE_SIZE,
                 legacy_max_age_secs: int = LEGACY_MAX_AGE_SECS):
        self.blobs = blobs
        self.page_size = page_size
        self.legacy_max_age_ms = legacy_max_age_secs * 1000

    def _verdict(self, info: ObjectInfo, now: int) -> Optional[str]:
        if info.expires_at is not None:
            return 'expired' if now > info.expires_at else None
        return 'legacy' if now - info.created_at > self.legacy_max_age_ms else None

    async def sweep(self, cursor: Optional[str] = None, max_pages: Optional[int] = None) -> SweepReport:
        report = SweepReport()
        while True:
            page = await self.blobs.storage.list_page(cursor=cursor, limit=self.page_size)
            report.pages += 1
            now = now_ms()
            for info in page.items:
                report.scanned += 1
                verdict = self._verdict(info, now)
                if verdict is None:
                    continue
                try:
                    await self.blobs.delete(info.id)
                except Exception:
                    report.failed += 1
                    logger.exception("reconciler could not delete %s", info.id)
                    continue
                if verdict == 'expired':
                    report.expired += 1
                else:
                    report.legacy += 1
            cursor = page.cursor
            logger.debug("reconciler page %d done, cursor=%s", report.pages, cursor)
            if cursor is None:
                break
            if max_pages is not None and report.pages >= max_pages:
                break
        report.cursor = cursor
        logger.info(
            "reconciler sweep: scanned=%d expired=%d legacy=%d failed=%d cursor=%s",
            report.scanned, report.expired, report.legacy, report.failed, report.cursor,
        )
        return report
