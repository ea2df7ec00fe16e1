import asyncio
import os
import tempfile
import warnings

# Environment defaults must be in place before config.settings is imported.
os.environ.setdefault('DATABASE_URL', 'sqlite://:memory:')
os.environ.setdefault('STORAGE_BACKEND', 'local')
os.environ.setdefault('LOCAL_STORAGE_PATH', tempfile.mkdtemp(prefix='drops-storage-'))
os.environ.setdefault('RATE_LIMIT_BACKEND', 'db')
os.environ.setdefault('SCHEDULER_ENABLED', 'false')
os.environ.setdefault('S3_ENDPOINT', '')
os.environ.setdefault('S3_BUCKET', '')
os.environ.setdefault('S3_ACCESS_KEY', '')
os.environ.setdefault('S3_SECRET_KEY', '')

import pytest

from config.db import close_db, init_db

warnings.filterwarnings("ignore", category=DeprecationWarning, module=r"tortoise\..*")


@pytest.fixture
def run_db():
    """Run an async scenario against a fresh in-memory Tortoise database.

    Usage: ``run_db(scenario)`` where ``scenario`` is an async function taking no arguments.
    """

    def runner(scenario):
        async def _main():
            await init_db('sqlite://:memory:')
            try:
                return await scenario()
            finally:
                await close_db()

        return asyncio.run(_main())

    return runner


@pytest.fixture
def local_storage_path(tmp_path, monkeypatch):
    """Point the local storage backend picked at startup to a per-test directory."""
    import apps.drops.storage as storage

    path = tmp_path / 'objects'
    monkeypatch.setattr(storage, 'STORAGE_BACKEND', 'local')
    monkeypatch.setattr(storage, 'LOCAL_STORAGE_PATH', str(path))
    return path
