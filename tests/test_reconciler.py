import asyncio
import os
import time

from apps.drops.metadata import MetadataStore
from apps.drops.models import BlobMeta
from apps.drops.reconciler import Reconciler
from apps.drops.schema import BlobMetadata
from apps.drops.services import BlobStore
from apps.drops.storage import LocalStorage
from utils.timeutil import now_ms

HOUR_MS = 3_600_000
DAY_SECS = 24 * 3600


def _age_file(path, days):
    past = time.time() - days * DAY_SECS
    os.utime(path, (past, past))


def test_sweep_deletes_expired_and_old_legacy(run_db, tmp_path):
    blobs = BlobStore(LocalStorage(str(tmp_path)), MetadataStore())
    now = now_ms()

    async def scenario():
        await blobs.put('expired00001', b'x', BlobMetadata(created_at=now - 2 * HOUR_MS, expires_at=now - HOUR_MS))
        await blobs.put('fresh0000001', b'x', BlobMetadata(created_at=now, expires_at=now + HOUR_MS))
        # orphan: body written, metadata never landed; still within its expiry
        await blobs.storage.put('orphan000001', b'x', now, now + HOUR_MS)
        (tmp_path / 'legacyold001').write_bytes(b'x')
        _age_file(tmp_path / 'legacyold001', 9)
        (tmp_path / 'legacynew001').write_bytes(b'x')
        _age_file(tmp_path / 'legacynew001', 3)

        report = await Reconciler(blobs, page_size=2).sweep()
        remaining = sorted(i.id for i in (await blobs.storage.list_page(limit=100)).items)
        meta_left = sorted(await BlobMeta.all().values_list('id', flat=True))
        return report, remaining, meta_left

    report, remaining, meta_left = run_db(scenario)
    assert report.scanned == 5
    assert report.expired == 1
    assert report.legacy == 1
    assert report.deleted == 2
    assert report.pages == 3
    assert report.cursor is None
    assert remaining == ['fresh0000001', 'legacynew001', 'orphan000001']
    assert meta_left == ['fresh0000001']


def test_sweep_is_resumable(run_db, tmp_path):
    blobs = BlobStore(LocalStorage(str(tmp_path)), MetadataStore())
    now = now_ms()

    async def scenario():
        for i in range(5):
            await blobs.storage.put(f'gone{i:08d}', b'x', now - 2 * HOUR_MS, now - HOUR_MS)
        reconciler = Reconciler(blobs, page_size=2)
        first = await reconciler.sweep(max_pages=1)
        second = await reconciler.sweep(cursor=first.cursor)
        left = (await blobs.storage.list_page()).items
        return first, second, left

    first, second, left = run_db(scenario)
    assert first.pages == 1
    assert first.expired == 2
    assert first.cursor is not None
    assert second.expired == 3
    assert second.cursor is None
    assert left == []


def test_failed_delete_is_counted_and_sweep_continues(tmp_path):
    class FlakyStore(BlobStore):
        async def delete(self, blob_id):
            if blob_id == 'bad000000001':
                raise RuntimeError('boom')
            await self.storage.delete(blob_id)

    blobs = FlakyStore(LocalStorage(str(tmp_path)), MetadataStore())
    now = now_ms()

    async def scenario():
        await blobs.storage.put('bad000000001', b'x', now - 2 * HOUR_MS, now - HOUR_MS)
        await blobs.storage.put('good00000001', b'x', now - 2 * HOUR_MS, now - HOUR_MS)
        return await Reconciler(blobs).sweep()

    report = asyncio.run(scenario())
    assert report.failed == 1
    assert report.expired == 1
