"""Encoding of the client-held secret (32-byte key + 16-byte IV) in a URL fragment.

Two fragment formats exist:

* compact: ``base64url(key + iv)`` without padding, exactly 64 characters
* legacy:  ``k=<64 hex>&iv=<32 hex>`` (older links may prefix ``v/<id>&``)

Encoding always emits the compact format. The fragment never reaches the
server; these helpers exist for clients and for link validation.
"""
import base64
import binascii
import enum
import re
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from apps.drops.exceptions import InvalidSecretError
from apps.drops.identifiers import validate_id

KEY_SIZE = 32
IV_SIZE = 16
SECRET_SIZE = KEY_SIZE + IV_SIZE
COMPACT_LENGTH = 64
LEGACY_MARKER = 'k='

_COMPACT_RE = re.compile(r'[A-Za-z0-9_-]{64}')
_SHARE_PATH_RE = re.compile(r'/v/([A-Za-z0-9-]+)')


class SecretFormat(enum.Enum):
    COMPACT = 'compact'
    LEGACY = 'legacy'
    INVALID = 'invalid'


@dataclass(frozen=True)
class ShareLink:
    host: str
    id: str
    key: bytes
    iv: bytes


def _check_lengths(key: bytes, iv: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise InvalidSecretError(f'key must be {KEY_SIZE} bytes (got {len(key)})')
    if len(iv) != IV_SIZE:
        raise InvalidSecretError(f'IV must be {IV_SIZE} bytes (got {len(iv)})')


def encode(key: bytes, iv: bytes) -> str:
    _check_lengths(key, iv)
    return base64.urlsafe_b64encode(key + iv).decode('ascii').rstrip('=')


def encode_legacy(key: bytes, iv: bytes) -> str:
    """Old ``k=..&iv=..`` form; kept for building fixtures of pre-compact links."""
    _check_lengths(key, iv)
    return f'k={key.hex()}&iv={iv.hex()}'


def _looks_compact(fragment: str) -> bool:
    return len(fragment) == COMPACT_LENGTH and '=' not in fragment and LEGACY_MARKER not in fragment


def _decode_compact(fragment: str) -> Optional[Tuple[bytes, bytes]]:
    if not _COMPACT_RE.fullmatch(fragment):
        return None
    try:
        raw = base64.urlsafe_b64decode(fragment + '=' * (-len(fragment) % 4))
    except (binascii.Error, ValueError):
        return None
    if len(raw) != SECRET_SIZE:
        return None
    return raw[:KEY_SIZE], raw[KEY_SIZE:]


def _decode_legacy(fragment: str) -> Tuple[bytes, bytes]:
    params = dict(parse_qsl(fragment, keep_blank_values=True))
    key_hex = params.get('k') or ''
    iv_hex = params.get('iv') or ''
    if len(key_hex) != KEY_SIZE * 2:
        raise InvalidSecretError(f'key must be {KEY_SIZE * 2} hex chars (got {len(key_hex)})')
    if len(iv_hex) != IV_SIZE * 2:
        raise InvalidSecretError(f'IV must be {IV_SIZE * 2} hex chars (got {len(iv_hex)})')
    try:
        key, iv = bytes.fromhex(key_hex), bytes.fromhex(iv_hex)
    except ValueError as e:
        raise InvalidSecretError('key and IV must be hex encoded') from e
    _check_lengths(key, iv)
    return key, iv


def decode(fragment: str) -> Tuple[bytes, bytes]:
    """Return ``(key, iv)`` from either fragment format.

    A 64-character fragment without ``=`` and without the legacy marker is
    tried as compact first; any failure there falls back to legacy parsing.
    """
    fragment = fragment[1:] if fragment.startswith('#') else fragment
    if _looks_compact(fragment):
        decoded = _decode_compact(fragment)
        if decoded is not None:
            return decoded
    return _decode_legacy(fragment)


def classify(fragment: str) -> SecretFormat:
    fragment = fragment[1:] if fragment.startswith('#') else fragment
    if _looks_compact(fragment) and _decode_compact(fragment) is not None:
        return SecretFormat.COMPACT
    try:
        _decode_legacy(fragment)
    except InvalidSecretError:
        return SecretFormat.INVALID
    return SecretFormat.LEGACY


def build_share_url(host: str, blob_id: str, key: bytes, iv: bytes) -> str:
    return f'{host.rstrip("/")}/v/{blob_id}#{encode(key, iv)}'


def parse_share_url(url: str) -> ShareLink:
    if '#' not in url:
        raise InvalidSecretError('share URL is missing its fragment')
    url_part, fragment = url.split('#', 1)
    parts = urlsplit(url_part)
    m = _SHARE_PATH_RE.fullmatch(parts.path)
    if not parts.scheme or not parts.netloc or not m or not validate_id(m.group(1)):
        raise InvalidSecretError('cannot extract blob id from share URL')
    key, iv = decode(fragment)
    return ShareLink(host=f'{parts.scheme}://{parts.netloc}', id=m.group(1), key=key, iv=iv)
