"""Object body stores.

Bodies are opaque ciphertext. Each object also side-carries its own
created/expires timestamps so the reconciler can sweep the store without
consulting the metadata store.
"""
import hashlib
import heapq
import hmac
import json
import logging
import os
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional, Protocol
from urllib.parse import quote, urlparse

import httpx
from tortoise.transactions import in_transaction

from apps.drops.exceptions import StorageError
from apps.drops.models import BlobData
from config.settings import STORAGE_BACKEND, LOCAL_STORAGE_PATH, S3_BUCKET, S3_ENDPOINT, S3_ACCESS_KEY, S3_SECRET_KEY, \
    S3_REGION
from utils.timeutil import iso_to_ms, ms_to_iso

logger = logging.getLogger(__name__)


@dataclass
class ObjectInfo:
    id: str
    created_at: int
    # None for objects stored before expiry tagging
    expires_at: Optional[int] = None


@dataclass
class ListPage:
    items: List[ObjectInfo] = field(default_factory=list)
    # continuation cursor; None once the listing is exhausted
    cursor: Optional[str] = None


class StorageInterface(Protocol):
    async def put(self, blob_id: str, data: bytes, created_at: int, expires_at: int) -> None:
        ...

    async def get(self, blob_id: str) -> Optional[bytes]:
        ...

    async def exists(self, blob_id: str) -> bool:
        ...

    async def delete(self, blob_id: str) -> None:
        ...

    async def list_page(self, cursor: Optional[str] = None, limit: int = 500) -> ListPage:
        ...


class LocalStorage:
    """Bodies as files under ``base_path``, side metadata in ``<id>.meta.json``."""

    META_SUFFIX = '.meta.json'

    def __init__(self, base_path: str):
        self.base_path = base_path
        os.makedirs(self.base_path, exist_ok=True)

    def _path(self, blob_id: str) -> str:
        return os.path.join(self.base_path, blob_id)

    async def put(self, blob_id: str, data: bytes, created_at: int, expires_at: int) -> None:
        path = self._path(blob_id)
        with open(path, 'wb') as f:
            f.write(data)
        with open(path + self.META_SUFFIX, 'w') as f:
            json.dump({'createdAt': ms_to_iso(created_at), 'expiresAt': ms_to_iso(expires_at)}, f)

    async def get(self, blob_id: str) -> Optional[bytes]:
        path = self._path(blob_id)
        if not os.path.exists(path):
            return None
        with open(path, 'rb') as f:
            return f.read()

    async def exists(self, blob_id: str) -> bool:
        return os.path.exists(self._path(blob_id))

    async def delete(self, blob_id: str) -> None:
        path = self._path(blob_id)
        for p in (path, path + self.META_SUFFIX):
            try:
                os.remove(p)
            except FileNotFoundError:
                pass

    def _info(self, blob_id: str) -> Optional[ObjectInfo]:
        path = self._path(blob_id)
        try:
            with open(path + self.META_SUFFIX) as f:
                meta = json.load(f)
            return ObjectInfo(id=blob_id, created_at=iso_to_ms(meta['createdAt']),
                              expires_at=iso_to_ms(meta['expiresAt']))
        except FileNotFoundError:
            pass
        except (ValueError, KeyError):
            logger.warning("unreadable side metadata for %s, treating as legacy", blob_id)
        try:
            return ObjectInfo(id=blob_id, created_at=int(os.stat(path).st_mtime * 1000))
        except FileNotFoundError:
            return None

    async def list_page(self, cursor: Optional[str] = None, limit: int = 500) -> ListPage:
        # ids never contain '.', which keeps sidecars and temp files out of the listing
        with os.scandir(self.base_path) as entries:
            names = (e.name for e in entries if e.is_file() and '.' not in e.name)
            ids = heapq.nsmallest(limit + 1, (n for n in names if cursor is None or n > cursor))
        more = len(ids) > limit
        ids = ids[:limit]
        items = [info for info in (self._info(i) for i in ids) if info is not None]
        return ListPage(items=items, cursor=ids[-1] if more and ids else None)


class DBStorage:
    """Store binary data in a separate DB table (BlobData)."""

    async def put(self, blob_id: str, data: bytes, created_at: int, expires_at: int) -> None:
        async with in_transaction():
            existing = await BlobData.filter(id=blob_id).first()
            if existing:
                existing.data = data
                existing.created_at = created_at
                existing.expires_at = expires_at
                await existing.save()
            else:
                await BlobData.create(id=blob_id, data=data, created_at=created_at, expires_at=expires_at)

    async def get(self, blob_id: str) -> Optional[bytes]:
        row = await BlobData.filter(id=blob_id).first()
        if not row:
            return None
        return row.data

    async def exists(self, blob_id: str) -> bool:
        return await BlobData.filter(id=blob_id).exists()

    async def delete(self, blob_id: str) -> None:
        await BlobData.filter(id=blob_id).delete()

    async def list_page(self, cursor: Optional[str] = None, limit: int = 500) -> ListPage:
        qs = BlobData.all()
        if cursor is not None:
            qs = qs.filter(id__gt=cursor)
        rows = await qs.order_by('id').limit(limit + 1).values('id', 'created_at', 'expires_at')
        more = len(rows) > limit
        rows = rows[:limit]
        items = [ObjectInfo(id=r['id'], created_at=r['created_at'], expires_at=r['expires_at']) for r in rows]
        return ListPage(items=items, cursor=items[-1].id if more and items else None)


class S3HTTPStorage:
    META_CREATED = 'x-amz-meta-created-at'
    META_EXPIRES = 'x-amz-meta-expires-at'

    def __init__(
        self,
        endpoint: str,
        bucket: str,
        access_key: str,
        secret_key: str,
        region: str | None = None,
        virtual_host: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint.rstrip('/')
        self.bucket = bucket
        self.access_key = access_key
        self.secret_key = secret_key
        self.service = "s3"
        self.virtual_host = virtual_host
        self.transport = transport

        parsed = urlparse(self.endpoint)
        self.host = parsed.netloc
        if virtual_host:
            self.host = f'{bucket}.{self.host}'
        self.region = region or self._extract_region(self.endpoint)

    def _extract_region(self, endpoint: str) -> str:
        """Auto-detect region from endpoint URL"""
        patterns = [
            r's3[.-]([a-z0-9-]+)\.amazonaws\.com',
            r'([a-z0-9-]+)\.digitaloceanspaces\.com',
            r'([a-z0-9-]+)\.linodeobjects\.com',
            r's3\.([a-z0-9-]+)\.backblazeb2\.com',
            r's3\.([a-z0-9-]+)\.wasabisys\.com',
        ]
        for p in patterns:
            match = re.search(p, endpoint)
            if match:
                return match.group(1)

        # MinIO, R2 and generic S3 services accept "us-east-1"/"auto"
        return "us-east-1"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def _sign(self, key: bytes, msg: str) -> bytes:
        return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).digest()

    def _get_signature_key(self, date_stamp: str) -> bytes:
        k_date = self._sign(f"AWS4{self.secret_key}".encode('utf-8'), date_stamp)
        k_region = self._sign(k_date, self.region)
        k_service = self._sign(k_region, self.service)
        return self._sign(k_service, 'aws4_request')

    def _make_url_and_path(self, blob_id: str = ''):
        """
        Supports both:
            - path-style:       https://endpoint/bucket/blob
            - virtual-host:     https://bucket.endpoint/blob
        """
        if self.virtual_host:
            url = f"{self.endpoint.replace('//', f'//{self.bucket}.')}/{blob_id}"
            path = f"/{blob_id}"
        else:
            url = f"{self.endpoint}/{self.bucket}/{blob_id}" if blob_id else f"{self.endpoint}/{self.bucket}"
            path = f"/{self.bucket}/{blob_id}" if blob_id else f"/{self.bucket}"

        return url, path

    @staticmethod
    def _canonical_query(params: dict | None) -> str:
        if not params:
            return ''
        return '&'.join(
            f"{quote(str(k), safe='-_.~')}={quote(str(v), safe='-_.~')}" for k, v in sorted(params.items())
        )

    def _auth_headers(self, method: str, path: str, payload: bytes = b'', query: dict | None = None,
                      extra: dict | None = None) -> dict:
        headers = dict(extra or {})
        if not self.access_key or not self.secret_key:
            return headers

        now = datetime.now(timezone.utc)
        amz_date = now.strftime('%Y%m%dT%H%M%SZ')
        date_stamp = now.strftime('%Y%m%d')

        payload_hash = hashlib.sha256(payload).hexdigest()

        signed = {k.lower(): str(v).strip() for k, v in headers.items() if k.lower().startswith('x-amz-')}
        signed.update({
            'host': self.host,
            'x-amz-content-sha256': payload_hash,
            'x-amz-date': amz_date,
        })
        names = sorted(signed)
        canonical_headers = ''.join(f'{name}:{signed[name]}\n' for name in names)
        signed_headers = ';'.join(names)

        canonical_request = (
            f"{method}\n"
            f"{quote(path, safe='/-_.~')}\n"
            f"{self._canonical_query(query)}\n"
            f"{canonical_headers}\n"
            f"{signed_headers}\n"
            f"{payload_hash}"
        )

        string_to_sign = (
            f"AWS4-HMAC-SHA256\n"
            f"{amz_date}\n"
            f"{date_stamp}/{self.region}/s3/aws4_request\n"
            f"{hashlib.sha256(canonical_request.encode()).hexdigest()}"
        )

        signature = hmac.new(
            self._get_signature_key(date_stamp),
            string_to_sign.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        auth = (
            f"AWS4-HMAC-SHA256 "
            f"Credential={self.access_key}/{date_stamp}/{self.region}/s3/aws4_request, "
            f"SignedHeaders={signed_headers}, "
            f"Signature={signature}"
        )

        headers.update({
            "Authorization": auth,
            "x-amz-date": amz_date,
            "x-amz-content-sha256": payload_hash,
        })
        return headers

    async def put(self, blob_id: str, data: bytes, created_at: int, expires_at: int) -> None:
        url, path = self._make_url_and_path(blob_id)
        meta = {self.META_CREATED: ms_to_iso(created_at), self.META_EXPIRES: ms_to_iso(expires_at)}
        headers = self._auth_headers("PUT", path, data, extra=meta)
        headers["Content-Type"] = "application/octet-stream"

        async with self._client() as client:
            resp = await client.put(url, content=data, headers=headers)
            if resp.status_code not in (200, 201):
                raise StorageError(f"S3 PUT failed: {resp.status_code} {resp.text}")

    async def get(self, blob_id: str) -> Optional[bytes]:
        url, path = self._make_url_and_path(blob_id)
        headers = self._auth_headers("GET", path, b"")

        async with self._client() as client:
            resp = await client.get(url, headers=headers)
            if resp.status_code == 200:
                return resp.content
            if resp.status_code == 404:
                return None
            raise StorageError(f"S3 GET failed: {resp.status_code} {resp.text}")

    async def head(self, blob_id: str) -> Optional[ObjectInfo]:
        url, path = self._make_url_and_path(blob_id)
        headers = self._auth_headers("HEAD", path, b"")

        async with self._client() as client:
            resp = await client.head(url, headers=headers)
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise StorageError(f"S3 HEAD failed: {resp.status_code}")

        created = resp.headers.get(self.META_CREATED)
        expires = resp.headers.get(self.META_EXPIRES)
        if created:
            created_at = iso_to_ms(created)
        elif resp.headers.get('last-modified'):
            created_at = int(parsedate_to_datetime(resp.headers['last-modified']).timestamp() * 1000)
        else:
            created_at = 0
        return ObjectInfo(id=blob_id, created_at=created_at, expires_at=iso_to_ms(expires) if expires else None)

    async def exists(self, blob_id: str) -> bool:
        return await self.head(blob_id) is not None

    async def delete(self, blob_id: str) -> None:
        url, path = self._make_url_and_path(blob_id)
        headers = self._auth_headers("DELETE", path, b"")

        async with self._client() as client:
            resp = await client.delete(url, headers=headers)
            if resp.status_code not in (200, 204, 404):
                raise StorageError(f"S3 DELETE failed: {resp.status_code} {resp.text}")

    async def list_page(self, cursor: Optional[str] = None, limit: int = 500) -> ListPage:
        """One ListObjectsV2 page; side metadata is fetched with a HEAD per key."""
        url, path = self._make_url_and_path()
        if self.virtual_host:
            path = '/'
        query = {'list-type': '2', 'max-keys': str(limit)}
        if cursor:
            query['continuation-token'] = cursor
        headers = self._auth_headers("GET", path, b"", query=query)

        async with self._client() as client:
            resp = await client.get(f"{url}?{self._canonical_query(query)}", headers=headers)
        if resp.status_code != 200:
            raise StorageError(f"S3 LIST failed: {resp.status_code} {resp.text}")

        keys, next_cursor = self._parse_listing(resp.content)
        items = []
        for key in keys:
            info = await self.head(key)
            if info is not None:
                items.append(info)
        return ListPage(items=items, cursor=next_cursor)

    @staticmethod
    def _parse_listing(body: bytes):
        root = ET.fromstring(body)
        keys, truncated, token = [], False, None
        for el in root.iter():
            tag = el.tag.rsplit('}', 1)[-1]
            if tag == 'Key':
                keys.append(el.text or '')
            elif tag == 'IsTruncated':
                truncated = (el.text or '').strip().lower() == 'true'
            elif tag == 'NextContinuationToken':
                token = el.text
        return keys, token if truncated else None


def pick_storage() -> StorageInterface:
    """Pick storage implementation based on environment variables."""
    storage_type = STORAGE_BACKEND.lower()
    if storage_type == 'db':
        return DBStorage()
    if storage_type == 's3':
        return S3HTTPStorage(endpoint=S3_ENDPOINT, bucket=S3_BUCKET, region=S3_REGION,
                             access_key=S3_ACCESS_KEY, secret_key=S3_SECRET_KEY, virtual_host=False)
    return LocalStorage(LOCAL_STORAGE_PATH)
