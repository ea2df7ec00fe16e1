import asyncio
import uuid

import pytest

from apps.drops.exceptions import IdCollisionError
from apps.drops.identifiers import ID_ALPHABET, IdentifierIssuer, IdKind, classify_id, validate_id


def test_issue_shape():
    issuer = IdentifierIssuer()
    for _ in range(50):
        blob_id = issuer.issue()
        assert len(blob_id) == 12
        assert set(blob_id) <= set(ID_ALPHABET)
        assert classify_id(blob_id) is IdKind.COMPACT


def test_alphabet_has_62_symbols():
    assert len(set(ID_ALPHABET)) == 62


def test_issued_ids_do_not_repeat():
    issuer = IdentifierIssuer()
    assert len({issuer.issue() for _ in range(1000)}) == 1000


def test_legacy_uuid_is_accepted():
    legacy = str(uuid.uuid4())
    assert classify_id(legacy) is IdKind.LEGACY
    assert validate_id(legacy)


@pytest.mark.parametrize('value', [
    '',
    'abc',
    'abcdefghijk',          # 11
    'abcdefghijklm',        # 13
    'abcdefghij-_',
    'abcdefghijk\n',
    '../etc/passwd',
    'ABCDEF12-3456-7890-ABCD-EF1234567890',  # legacy ids are lowercase hex
    'zzzzzzzz-zzzz-zzzz-zzzz-zzzzzzzzzzzz',
])
def test_invalid_ids(value):
    assert classify_id(value) is IdKind.INVALID
    assert not validate_id(value)


def test_issue_unique_retries_until_free():
    issuer = IdentifierIssuer(max_attempts=3)
    seen = []

    async def exists(blob_id):
        seen.append(blob_id)
        return len(seen) < 3

    blob_id = asyncio.run(issuer.issue_unique(exists))
    assert blob_id == seen[-1]
    assert len(seen) == 3


def test_issue_unique_gives_up_after_max_attempts():
    issuer = IdentifierIssuer(max_attempts=3)
    calls = []

    async def exists(blob_id):
        calls.append(blob_id)
        return True

    with pytest.raises(IdCollisionError):
        asyncio.run(issuer.issue_unique(exists))
    assert len(calls) == 3
