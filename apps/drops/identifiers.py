"""Blob identifier issuance and classification.

New ids are 12 characters from a 62-symbol alphabet (~71 bits of entropy).
Links issued before that carry a 36-character hyphenated hex UUID, which is
still accepted everywhere an id is read.
"""
import enum
import logging
import re
import secrets
import string
from typing import Awaitable, Callable

from apps.drops.exceptions import IdCollisionError

logger = logging.getLogger(__name__)

ID_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
ID_LENGTH = 12

_COMPACT_RE = re.compile(r'[A-Za-z0-9]{12}')
_LEGACY_RE = re.compile(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}')


class IdKind(enum.Enum):
    COMPACT = 'compact'
    LEGACY = 'legacy'
    INVALID = 'invalid'


def classify_id(blob_id: str) -> IdKind:
    if not isinstance(blob_id, str):
        return IdKind.INVALID
    if _COMPACT_RE.fullmatch(blob_id):
        return IdKind.COMPACT
    if _LEGACY_RE.fullmatch(blob_id):
        return IdKind.LEGACY
    return IdKind.INVALID


def validate_id(blob_id: str) -> bool:
    return classify_id(blob_id) is not IdKind.INVALID


class IdentifierIssuer:
    """Issues ids and checks them against the object store before use.

    The existence check and the later write are not atomic; the store has no
    uniqueness constraint spanning both sub-stores, so this is the only guard.
    """

    def __init__(self, max_attempts: int = 3, length: int = ID_LENGTH):
        self.max_attempts = max_attempts
        self.length = length

    def issue(self) -> str:
        return ''.join(secrets.choice(ID_ALPHABET) for _ in range(self.length))

    async def issue_unique(self, exists: Callable[[str], Awaitable[bool]]) -> str:
        for attempt in range(1, self.max_attempts + 1):
            blob_id = self.issue()
            if not await exists(blob_id):
                return blob_id
            logger.warning("id collision on attempt %d/%d", attempt, self.max_attempts)
        raise IdCollisionError()
