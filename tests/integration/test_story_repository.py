# tests/integration/test_story_repository.py
# Integration tests for the SQLite-backed story repository.
# Each test runs against a fresh database file created under tmp_path.

import asyncio
import sqlite3
import time

import pytest

from geostory.middleware.error_handler import DuplicateStoryIdError, StorageBusyError
from geostory.models.stories_table import StoryRecord
from geostory.utils import codec


def _record(story_id="abc1234", created_at=1_700_000_000, expires_at=None, state=None, tag=codec.PLAIN):
    encoded = codec.encode(state or {"layers": [{"type": "point"}]}, tag)
    return StoryRecord(
        id=story_id,
        created_at=created_at,
        expires_at=expires_at,
        title="T",
        state_json=encoded.data,
        encoding=encoded.tag,
    )


@pytest.mark.asyncio
async def test_insert_then_select(repository):
    record = _record(expires_at=1_700_086_400, tag=codec.BROTLI_BASE64)
    await repository.insert(record)

    loaded = await repository.select_by_id(record.id)

    assert loaded == record
    assert codec.decode(loaded.state_json, loaded.encoding) == {"layers": [{"type": "point"}]}


@pytest.mark.asyncio
async def test_select_missing_returns_none(repository):
    assert await repository.select_by_id("zzzzz") is None


@pytest.mark.asyncio
async def test_duplicate_id_is_not_overwritten(repository):
    first = _record(state={"layers": ["first"]})
    await repository.insert(first)

    with pytest.raises(DuplicateStoryIdError) as exc_info:
        await repository.insert(_record(state={"layers": ["second"]}))

    assert exc_info.value.story_id == first.id
    loaded = await repository.select_by_id(first.id)
    assert codec.decode(loaded.state_json, loaded.encoding) == {"layers": ["first"]}


@pytest.mark.asyncio
async def test_delete_expired_only_removes_past_rows(repository):
    now = 2_000_000_000
    await repository.insert(_record("past01", expires_at=now - 1))
    await repository.insert(_record("edge01", expires_at=now))  # not yet: predicate is strict <
    await repository.insert(_record("future", expires_at=now + 3600))
    await repository.insert(_record("forever", expires_at=None))

    removed = await repository.delete_expired(now)

    assert removed == 1
    assert await repository.select_by_id("past01") is None
    for story_id in ("edge01", "future", "forever"):
        assert await repository.select_by_id(story_id) is not None


@pytest.mark.asyncio
async def test_delete_expired_is_idempotent(repository):
    now = 2_000_000_000
    for i in range(3):
        await repository.insert(_record(f"old{i:03d}", expires_at=now - 10))

    assert await repository.delete_expired(now) == 3
    assert await repository.delete_expired(now) == 0


@pytest.mark.asyncio
async def test_sqlite_pragmas_applied(database, settings):
    await database.init()

    async with database.connect() as conn:
        journal = (await conn.exec_driver_sql("PRAGMA journal_mode")).scalar()
        busy = (await conn.exec_driver_sql("PRAGMA busy_timeout")).scalar()
        fks = (await conn.exec_driver_sql("PRAGMA foreign_keys")).scalar()
        sync = (await conn.exec_driver_sql("PRAGMA synchronous")).scalar()

    assert journal.lower() == "wal"
    assert busy == settings.DB_BUSY_TIMEOUT_MS
    assert fks == 1
    assert sync == 1  # NORMAL


@pytest.mark.asyncio
async def test_schema_has_secondary_indices(database, settings):
    await database.init()

    with sqlite3.connect(settings.DB_PATH) as conn:
        names = {row[1] for row in conn.execute("PRAGMA index_list('stories')")}

    assert {"ix_stories_expires_at", "ix_stories_created_at"} <= names


@pytest.mark.asyncio
async def test_lazy_init_runs_once_under_concurrency(database, monkeypatch):
    created = 0
    original = database._create_engine

    def counting_create():
        nonlocal created
        created += 1
        return original()

    monkeypatch.setattr(database, "_create_engine", counting_create)

    engines = await asyncio.gather(*[database.get_engine() for _ in range(10)])

    assert created == 1
    assert all(e is engines[0] for e in engines)


@pytest.mark.asyncio
async def test_failed_init_is_not_cached(database, monkeypatch):
    calls = 0
    original = database._bootstrap

    async def flaky_bootstrap(engine):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("disk not ready")
        await original(engine)

    monkeypatch.setattr(database, "_bootstrap", flaky_bootstrap)

    with pytest.raises(RuntimeError):
        await database.init()
    assert not database.is_initialized

    await database.init()
    assert database.is_initialized


@pytest.mark.asyncio
async def test_legacy_table_without_encoding_column(settings):
    """A database created before the encoding column existed is migrated and still readable."""
    from geostory.db.base import Database
    from geostory.repositories.story_repository import StoryRepository

    with sqlite3.connect(settings.DB_PATH) as conn:
        conn.execute(
            "CREATE TABLE stories (id TEXT PRIMARY KEY, created_at INTEGER NOT NULL, "
            "expires_at INTEGER, title TEXT, state_json TEXT NOT NULL)"
        )
        conn.execute(
            "INSERT INTO stories (id, created_at, expires_at, title, state_json) VALUES (?, ?, ?, ?, ?)",
            ("legacy1", 1_700_000_000, None, "Old", '{"layers":[{"type":"point"}]}'),
        )

    database = Database(settings)
    try:
        repo = StoryRepository(database, settings)
        loaded = await repo.select_by_id("legacy1")

        assert loaded.encoding == codec.PLAIN
        assert codec.decode(loaded.state_json, loaded.encoding) == {"layers": [{"type": "point"}]}

        # new rows land next to the old one with their tag
        await repo.insert(_record("newrow1", tag=codec.BROTLI_BASE64))
        assert (await repo.select_by_id("newrow1")).encoding == codec.BROTLI_BASE64
    finally:
        await database.dispose()


@pytest.mark.asyncio
async def test_insert_gives_up_with_busy_when_writer_holds_lock(repository, database, settings):
    await database.init()

    blocker = sqlite3.connect(settings.DB_PATH, timeout=0, isolation_level=None)
    try:
        blocker.execute("BEGIN IMMEDIATE")
        started = time.monotonic()
        with pytest.raises(StorageBusyError):
            await repository.insert(_record("blocked"))
        # every attempt waited at least the engine busy timeout
        assert time.monotonic() - started >= settings.DB_WRITE_ATTEMPTS * settings.DB_BUSY_TIMEOUT_MS / 1000 * 0.8
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()

    # lock released: the same write now succeeds
    await repository.insert(_record("blocked"))
    assert await repository.select_by_id("blocked") is not None


@pytest.mark.asyncio
async def test_reads_are_not_blocked_by_a_writer(repository, database, settings):
    await repository.insert(_record("readme1"))

    blocker = sqlite3.connect(settings.DB_PATH, timeout=0, isolation_level=None)
    try:
        blocker.execute("BEGIN IMMEDIATE")
        blocker.execute("DELETE FROM stories WHERE id = 'readme1'")
        # WAL: the uncommitted delete is invisible and does not block the reader
        assert await repository.select_by_id("readme1") is not None
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()


@pytest.mark.asyncio
async def test_pool_exhaustion_surfaces_as_busy(settings):
    from geostory.db.base import Database
    from geostory.repositories.story_repository import StoryRepository

    cfg = settings.model_copy(update={"DB_POOL_TIMEOUT_SECONDS": 0.2})
    database = Database(cfg)
    repo = StoryRepository(database, cfg)
    try:
        await repo.insert(_record("pooled1"))

        # the only pooled connection is checked out for the whole block
        async with database.connect():
            with pytest.raises(StorageBusyError) as write_exc:
                await repo.insert(_record("pooled2"))
            with pytest.raises(StorageBusyError):
                await repo.select_by_id("pooled1")

        assert write_exc.value.status_code == 503
        assert write_exc.value.headers["Retry-After"] == "1"

        # connection returned: both paths work again
        await repo.insert(_record("pooled2"))
        assert await repo.select_by_id("pooled2") is not None
    finally:
        await database.dispose()
