"""Tests for the sync job state machine and background queue."""

from datetime import datetime, timedelta

import pytest

from catalog_engine.db.models import EntityType, SyncStatus
from catalog_engine.services.tokens import TokenService
from catalog_engine.sync.engine import InvalidJobTransition, SyncJobEngine, SyncJobNotFound
from catalog_engine.sync.entity_store import count_entities, get_synced_entities, upsert_entities
from catalog_engine.sync.medusa_client import PlatformConfigError, PlatformRequestError
from catalog_engine.worker.job_watchdog import sync_watchdog_check
from catalog_engine.worker.tasks import SyncJobQueue
from conftest import FakePlatform, platform_factory_for

PRODUCTS = [
    {"id": "prod_01", "title": "Desk lamp"},
    {"id": "prod_02", "title": "Floor lamp"},
]


def make_engine(session_factory, platform, token_id=None, **kwargs) -> SyncJobEngine:
    return SyncJobEngine(session_factory, platform_factory_for(platform, token_id), **kwargs)


class HeldLock:
    """Lock manager whose lock is always taken by someone else."""

    def __init__(self):
        self.released = []

    async def acquire(self, entity_type, job_id, ttl_seconds=None):
        return None

    async def release(self, entity_type, token):
        self.released.append(token)
        return True


class FreeLock(HeldLock):
    async def acquire(self, entity_type, job_id, ttl_seconds=None):
        return f"token-{job_id}"


async def test_create_job_is_queued(session_factory):
    engine = make_engine(session_factory, FakePlatform())

    job = await engine.create("product", "fetch")

    assert job.id is not None
    assert job.status == SyncStatus.QUEUED.value
    assert job.started_at is None
    assert job.completed_at is None
    assert (await engine.get_status(job.id)).status == "queued"


async def test_create_rejects_unknown_values(session_factory):
    engine = make_engine(session_factory, FakePlatform())

    with pytest.raises(ValueError):
        await engine.create("order", "fetch")
    with pytest.raises(ValueError):
        await engine.create("product", "merge")


async def test_fetch_job_completes(session_factory):
    platform = FakePlatform(PRODUCTS)
    engine = make_engine(session_factory, platform)
    job = await engine.create("product", "fetch")

    finished = await engine.run(job.id, limit=50, offset=10)

    assert finished.status == SyncStatus.DONE.value
    assert finished.record_count == 2
    assert finished.log_text == "Successfully fetched 2 product(s) from Medusa"
    assert finished.started_at is not None
    assert finished.completed_at >= finished.started_at
    assert platform.calls == [("product", 50, 10)]
    assert platform.closed is True
    assert await get_synced_entities(session_factory, "product") == PRODUCTS


async def test_replaying_same_page_is_idempotent(session_factory):
    engine = make_engine(session_factory, FakePlatform(PRODUCTS))

    first = await engine.create("product", "fetch")
    await engine.run(first.id)
    second = await engine.create("product", "fetch")
    finished = await engine.run(second.id)

    assert finished.record_count == 2
    assert await count_entities(session_factory, "product") == 2


async def test_upsert_overwrites_existing_snapshot(session_factory):
    async with session_factory() as db:
        assert await upsert_entities(db, EntityType.PRODUCT, PRODUCTS) == 2
        await db.commit()

    changed = [{"id": "prod_02", "title": "Floor lamp XL"}, {"id": "prod_03", "title": "Wall lamp"}]
    async with session_factory() as db:
        # Duplicate ids within one page collapse to the last payload
        assert await upsert_entities(db, EntityType.PRODUCT, changed + [changed[1]]) == 2
        await db.commit()

    assert await get_synced_entities(session_factory, EntityType.PRODUCT) == [
        {"id": "prod_01", "title": "Desk lamp"},
        {"id": "prod_02", "title": "Floor lamp XL"},
        {"id": "prod_03", "title": "Wall lamp"},
    ]
    with pytest.raises(ValueError):
        async with session_factory() as db:
            await upsert_entities(db, EntityType.PRODUCT, [{"title": "No id"}])


async def test_platform_error_is_recorded_on_job(session_factory):
    platform = FakePlatform(error=PlatformRequestError("Failed to fetch product: HTTP 401 Unauthorized"))
    engine = make_engine(session_factory, platform)
    job = await engine.create("product", "fetch")

    finished = await engine.run(job.id)

    assert finished.status == SyncStatus.ERROR.value
    assert finished.log_text == "Failed to fetch product: HTTP 401 Unauthorized"
    assert finished.completed_at is not None
    assert platform.closed is True


async def test_missing_credentials_fail_the_job(session_factory):
    async def unconfigured():
        raise PlatformConfigError("MEDUSA_ADMIN_URL not configured")

    engine = SyncJobEngine(session_factory, unconfigured)
    job = await engine.create("category", "fetch")

    finished = await engine.run(job.id)

    assert finished.status == "error"
    assert finished.log_text == "MEDUSA_ADMIN_URL not configured"


@pytest.mark.parametrize(
    "operation,message",
    [
        ("create", "Create operation requires payload"),
        ("update", "Update operation requires entity ID and payload"),
        ("delete", "Delete operation requires entity ID"),
    ],
)
async def test_write_operations_are_rejected(session_factory, operation, message):
    platform = FakePlatform(PRODUCTS)
    engine = make_engine(session_factory, platform)
    job = await engine.create("product", operation)

    finished = await engine.run(job.id)

    assert finished.status == "error"
    assert finished.log_text == message
    assert platform.calls == []


async def test_run_unknown_job(session_factory):
    engine = make_engine(session_factory, FakePlatform())

    with pytest.raises(SyncJobNotFound):
        await engine.run(404)
    assert await engine.get_status(404) is None


async def test_job_runs_only_once(session_factory):
    engine = make_engine(session_factory, FakePlatform(PRODUCTS))
    job = await engine.create("product", "fetch")
    await engine.run(job.id)

    with pytest.raises(InvalidJobTransition):
        await engine.run(job.id)
    assert (await engine.get_status(job.id)).status == "done"


async def test_token_usage_logged_after_success(session_factory):
    tokens = TokenService(session_factory)
    token = await tokens.create_token("medusa", "medusa-admin-token")
    engine = make_engine(session_factory, FakePlatform(PRODUCTS), token_id=token.id, tokens=tokens)
    job = await engine.create("product", "fetch")

    await engine.run(job.id)

    stats = await tokens.usage_stats(token_id=token.id)
    assert stats == {"total_calls": 1, "total_records": 2, "by_provider": {"medusa": 1}}


async def test_held_lock_fails_job(session_factory):
    platform = FakePlatform(PRODUCTS)
    lock = HeldLock()
    engine = make_engine(session_factory, platform, lock_manager=lock)
    job = await engine.create("product", "fetch")

    finished = await engine.run(job.id)

    assert finished.status == "error"
    assert "already running" in finished.log_text
    assert platform.calls == []
    assert lock.released == []


async def test_lock_released_after_run(session_factory):
    lock = FreeLock()
    engine = make_engine(session_factory, FakePlatform(error=PlatformRequestError("boom")), lock_manager=lock)
    job = await engine.create("tag", "fetch")

    await engine.run(job.id)

    assert lock.released == [f"token-{job.id}"]


async def test_list_jobs_filters(session_factory):
    engine = make_engine(session_factory, FakePlatform(PRODUCTS))
    done = await engine.create("product", "fetch")
    await engine.run(done.id)
    await engine.create("collection", "fetch")

    assert [j.entity_type for j in await engine.list_jobs()] == ["collection", "product"]
    assert [j.id for j in await engine.list_jobs(status="done")] == [done.id]
    assert [j.entity_type for j in await engine.list_jobs(entity_type="collection")] == ["collection"]


async def test_stale_running_jobs_are_reported(session_factory):
    clock = {"now": datetime(2026, 1, 1, 9, 0, 0)}
    engine = make_engine(session_factory, FakePlatform(), now=lambda: clock["now"])
    job = await engine.create("product", "fetch")
    await engine.claim(job.id)

    clock["now"] += timedelta(minutes=30)
    assert await sync_watchdog_check(engine, stale_minutes=60) == 0

    clock["now"] += timedelta(minutes=31)
    stale = await engine.find_stale_jobs(timedelta(minutes=60))
    assert [j.id for j in stale] == [job.id]
    assert await sync_watchdog_check(engine, stale_minutes=60) == 1
    # Reported only; the job is not moved
    assert (await engine.get_status(job.id)).status == "running"


async def test_queue_runs_submitted_jobs(session_factory):
    engine = make_engine(session_factory, FakePlatform(PRODUCTS))
    queue = SyncJobQueue(engine, maxsize=10)
    job = await engine.create("product", "fetch")

    assert queue.submit(job.id) is True
    assert queue.pending == 1
    # Still queued until the worker picks it up
    assert (await engine.get_status(job.id)).status == "queued"

    assert await queue.run_pending() == 1
    assert (await engine.get_status(job.id)).status == "done"


async def test_queue_survives_bad_requests(session_factory):
    engine = make_engine(session_factory, FakePlatform(PRODUCTS))
    queue = SyncJobQueue(engine, maxsize=10)
    job = await engine.create("product", "fetch")

    queue.submit(9999)
    queue.submit(job.id)
    queue.submit(job.id)

    assert await queue.run_pending() == 3
    assert (await engine.get_status(job.id)).status == "done"


async def test_queue_full(session_factory):
    queue = SyncJobQueue(make_engine(session_factory, FakePlatform()), maxsize=1)

    assert queue.submit(1) is True
    assert queue.submit(2) is False


async def test_background_worker(session_factory):
    engine = make_engine(session_factory, FakePlatform(PRODUCTS))
    queue = SyncJobQueue(engine, maxsize=10)
    job = await engine.create("product", "fetch")

    queue.start()
    queue.submit(job.id)
    await queue.join()
    await queue.stop()

    assert (await engine.get_status(job.id)).status == "done"
