"""Background execution of sync jobs.

`submit` only enqueues and returns; a worker task drains the queue and
writes results back through the job table that status polls read.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from catalog_engine.config import settings
from catalog_engine.sync.engine import InvalidJobTransition, SyncJobEngine, SyncJobNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncRequest:
    job_id: int
    limit: Optional[int] = None
    offset: int = 0


class SyncJobQueue:
    """In-process queue of sync job runs with a single worker loop."""

    def __init__(self, engine: SyncJobEngine, maxsize: Optional[int] = None):
        self.engine = engine
        self._queue: "asyncio.Queue[SyncRequest]" = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else settings.sync_worker_queue_size
        )
        self._stop_event = asyncio.Event()
        self._worker: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, job_id: int, limit: Optional[int] = None, offset: int = 0) -> bool:
        """
        Enqueue a job run without waiting for it.

        Returns:
            False when the queue is full (the job stays queued and can be resubmitted)
        """
        try:
            self._queue.put_nowait(SyncRequest(job_id=job_id, limit=limit, offset=offset))
        except asyncio.QueueFull:
            logger.error(f"[WORKER] Sync queue full; job {job_id} left queued")
            return False
        logger.info(f"[WORKER] Submitted sync job {job_id}")
        return True

    async def _process(self, request: SyncRequest) -> None:
        try:
            job = await self.engine.run(request.job_id, limit=request.limit, offset=request.offset)
            logger.info(f"[WORKER] Sync job {job.id} finished with status={job.status}")
        except (SyncJobNotFound, InvalidJobTransition) as e:
            logger.warning(f"[WORKER] Skipping sync job {request.job_id}: {e}")
        except Exception:
            logger.exception(f"[WORKER] Failed sync job {request.job_id}")

    async def run_pending(self) -> int:
        """Process everything currently queued. Returns the number of runs."""
        processed = 0
        while True:
            try:
                request = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return processed
            try:
                await self._process(request)
                processed += 1
            finally:
                self._queue.task_done()

    async def worker_loop(self) -> None:
        logger.info("[WORKER] started")
        while not self._stop_event.is_set():
            try:
                request = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                await self._process(request)
            finally:
                self._queue.task_done()
        logger.info("[WORKER] stopped")

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._stop_event.clear()
            self._worker = asyncio.create_task(self.worker_loop())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._worker is not None:
            await self._worker
            self._worker = None

    async def join(self) -> None:
        """Wait until every submitted run has finished."""
        await self._queue.join()
