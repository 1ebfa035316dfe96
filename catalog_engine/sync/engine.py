"""Sync job state machine: queued -> running -> done | error."""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_engine import metrics
from catalog_engine.config import settings
from catalog_engine.db.models import EntityType, SyncJob, SyncOperation, SyncStatus, TokenProvider
from catalog_engine.logging_config import get_logger
from catalog_engine.services.tokens import TokenService
from catalog_engine.sync.entity_store import upsert_entities
from catalog_engine.sync.medusa_client import PlatformClient
from catalog_engine.worker.sync_lock import SyncLockManager

logger = logging.getLogger(__name__)

# Returns a connected platform client and the id of the stored token it
# authenticates with (None when the credential came from settings/env).
PlatformFactory = Callable[[], Awaitable[tuple[PlatformClient, Optional[int]]]]

OPERATION_PAYLOAD_MESSAGES = {
    SyncOperation.CREATE: "Create operation requires payload",
    SyncOperation.UPDATE: "Update operation requires entity ID and payload",
    SyncOperation.DELETE: "Delete operation requires entity ID",
}


class SyncJobNotFound(LookupError):
    """No sync job with the requested id."""


class InvalidJobTransition(RuntimeError):
    """The job is not in the state the requested transition starts from."""


class UnsupportedSyncOperation(RuntimeError):
    """create/update/delete need a payload this engine does not carry."""


class SyncLockHeld(RuntimeError):
    """Another fetch for the same entity type holds the lock."""


class SyncJobEngine:
    """
    Creates sync jobs and runs them against the external platform.

    The worker that wins `claim` (an atomic queued -> running update) is the
    only writer of the job's status and timestamps until it finishes. There
    is no lease or heartbeat: a job left in `running` by a crashed worker
    stays there and is only reported by `find_stale_jobs`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        platform_factory: PlatformFactory,
        tokens: Optional[TokenService] = None,
        lock_manager: Optional[SyncLockManager] = None,
        now: Callable[[], datetime] = datetime.utcnow,
        default_limit: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.platform_factory = platform_factory
        self.tokens = tokens
        self.lock_manager = lock_manager
        self.now = now
        self.default_limit = default_limit or settings.sync_default_limit

    async def create(self, entity_type: str, operation: str) -> SyncJob:
        """
        Insert a new job in `queued`.

        Raises:
            ValueError: Unknown entity type or operation
        """
        job = SyncJob(
            entity_type=EntityType(entity_type).value,
            operation=SyncOperation(operation).value,
            status=SyncStatus.QUEUED.value,
            created_at=self.now(),
        )
        async with self.session_factory() as db:
            db.add(job)
            await db.commit()
            await db.refresh(job)

        logger.info(f"Created sync job {job.id} ({job.operation} {job.entity_type})")
        return job

    async def get_status(self, job_id: int) -> Optional[SyncJob]:
        """Pure read of a job."""
        async with self.session_factory() as db:
            return await db.get(SyncJob, job_id)

    async def list_jobs(
        self,
        entity_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> list[SyncJob]:
        """Jobs newest first, optionally filtered by entity type and status."""
        query = select(SyncJob).order_by(SyncJob.created_at.desc(), SyncJob.id.desc()).limit(limit)
        if entity_type:
            query = query.where(SyncJob.entity_type == EntityType(entity_type).value)
        if status:
            query = query.where(SyncJob.status == SyncStatus(status).value)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def find_stale_jobs(self, older_than: Optional[timedelta] = None) -> list[SyncJob]:
        """Jobs still `running` that started before now - older_than."""
        older_than = older_than or timedelta(minutes=settings.sync_job_stale_minutes)
        cutoff = self.now() - older_than
        async with self.session_factory() as db:
            result = await db.execute(
                select(SyncJob)
                .where(SyncJob.status == SyncStatus.RUNNING.value, SyncJob.started_at < cutoff)
                .order_by(SyncJob.started_at)
            )
            return list(result.scalars().all())

    async def claim(self, job_id: int) -> SyncJob:
        """
        Atomically move a job from queued to running and stamp started_at.

        Raises:
            SyncJobNotFound: No such job
            InvalidJobTransition: The job is not queued (already claimed or finished)
        """
        async with self.session_factory() as db:
            result = await db.execute(
                update(SyncJob)
                .where(SyncJob.id == job_id, SyncJob.status == SyncStatus.QUEUED.value)
                .values(status=SyncStatus.RUNNING.value, started_at=self.now())
                .execution_options(synchronize_session=False)
            )
            await db.commit()

            job = await db.get(SyncJob, job_id, populate_existing=True)
            if job is None:
                raise SyncJobNotFound(f"Sync job {job_id} not found")
            if result.rowcount != 1:
                raise InvalidJobTransition(
                    f"Sync job {job_id} is {job.status}, only queued jobs can be started"
                )
            return job

    async def _finish(
        self,
        job_id: int,
        status: SyncStatus,
        record_count: Optional[int] = None,
        log_text: Optional[str] = None,
    ) -> SyncJob:
        """Move a running job to a terminal state and stamp completed_at."""
        values: dict[str, Any] = {"status": status.value, "completed_at": self.now()}
        if record_count is not None:
            values["record_count"] = record_count
        if log_text is not None:
            values["log_text"] = log_text

        async with self.session_factory() as db:
            result = await db.execute(
                update(SyncJob)
                .where(SyncJob.id == job_id, SyncJob.status == SyncStatus.RUNNING.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

            job = await db.get(SyncJob, job_id, populate_existing=True)
            if job is None:
                raise SyncJobNotFound(f"Sync job {job_id} not found")
            if result.rowcount != 1:
                raise InvalidJobTransition(
                    f"Sync job {job_id} is {job.status}, only running jobs can finish"
                )
            return job

    async def run(
        self,
        job_id: int,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> SyncJob:
        """
        Claim a queued job and execute it.

        Fetch errors are recorded on the job (status `error`, message in
        log_text) and the finished job is returned; they are not raised.

        Raises:
            SyncJobNotFound: No such job
            InvalidJobTransition: The job was not queued
        """
        job = await self.claim(job_id)
        entity_type = EntityType(job.entity_type)
        log = get_logger(__name__, job_id=job_id, entity_type=entity_type.value)
        started = time.monotonic()
        limit = limit or self.default_limit
        lock_token: Optional[str] = None
        token_id: Optional[int] = None

        try:
            operation = SyncOperation(job.operation)
            if operation in OPERATION_PAYLOAD_MESSAGES:
                raise UnsupportedSyncOperation(OPERATION_PAYLOAD_MESSAGES[operation])

            if self.lock_manager is not None:
                lock_token = await self.lock_manager.acquire(entity_type.value, job_id)
                if lock_token is None:
                    metrics.record_sync_lock_skipped(entity_type.value)
                    raise SyncLockHeld(f"Another {entity_type.value} fetch is already running")

            client, token_id = await self.platform_factory()
            try:
                entities = await client.fetch_entities(entity_type, limit, offset)
            finally:
                await client.close()

            async with self.session_factory() as db:
                record_count = await upsert_entities(db, entity_type, entities, sync_job_id=job_id)
                await db.commit()
        except Exception as e:
            message = str(e) or type(e).__name__
            log.error(f"Sync job {job_id} failed: {message}")
            job = await self._finish(job_id, SyncStatus.ERROR, log_text=message)
            metrics.record_sync_job(entity_type.value, SyncStatus.ERROR.value, time.monotonic() - started)
            return job
        finally:
            if lock_token is not None:
                await self.lock_manager.release(entity_type.value, lock_token)

        job = await self._finish(
            job_id,
            SyncStatus.DONE,
            record_count=record_count,
            log_text=f"Successfully fetched {record_count} {entity_type.value}(s) from Medusa",
        )
        metrics.record_sync_job(entity_type.value, SyncStatus.DONE.value, time.monotonic() - started)
        metrics.record_entities_upserted(entity_type.value, record_count)
        log.info(f"Sync job {job_id} done: {record_count} {entity_type.value}(s)")

        if token_id is not None and self.tokens is not None:
            await self.tokens.log_usage(
                token_id=token_id,
                provider=TokenProvider.MEDUSA.value,
                process_name="medusa_sync",
                record_count=record_count,
                details={"job_id": job_id, "entity_type": entity_type.value, "offset": offset, "limit": limit},
            )
        return job
