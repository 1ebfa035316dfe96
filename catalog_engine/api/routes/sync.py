"""Sync job routes."""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from catalog_engine.api.deps import get_context, require_admin_api_key
from catalog_engine.context import EngineContext
from catalog_engine.db.models import EntityType, SyncOperation, SyncStatus
from catalog_engine.sync.entity_store import get_synced_entities

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncJobCreate(BaseModel):
    entity_type: EntityType
    operation: SyncOperation = SyncOperation.FETCH
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class SyncJobResponse(BaseModel):
    id: int
    entity_type: str
    operation: str
    status: str
    record_count: Optional[int]
    log_text: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    duration_seconds: Optional[float] = None

    class Config:
        from_attributes = True


@router.post("", response_model=SyncJobResponse, status_code=202)
async def create_sync_job(
    job_data: SyncJobCreate,
    context: EngineContext = Depends(get_context),
):
    """Create a sync job and start it in the background. Poll GET /{job_id} for the result."""
    job = await context.sync_engine.create(job_data.entity_type.value, job_data.operation.value)
    if not context.sync_queue.submit(job.id, limit=job_data.limit, offset=job_data.offset):
        raise HTTPException(status_code=503, detail=f"Sync queue full, job {job.id} left queued")
    return job


@router.get("", response_model=List[SyncJobResponse])
async def list_sync_jobs(
    entity_type: Optional[EntityType] = None,
    status: Optional[SyncStatus] = None,
    limit: int = Query(default=50, ge=1, le=500),
    context: EngineContext = Depends(get_context),
):
    """List sync jobs, newest first."""
    return await context.sync_engine.list_jobs(
        entity_type=entity_type.value if entity_type else None,
        status=status.value if status else None,
        limit=limit,
    )


@router.get("/entities/{entity_type}")
async def list_synced_entities(
    entity_type: EntityType,
    context: EngineContext = Depends(get_context),
) -> List[Any]:
    """Locally stored snapshots for an entity type."""
    return await get_synced_entities(context.session_factory, entity_type)


@router.get("/locks/{entity_type}")
async def get_sync_lock(
    entity_type: EntityType,
    context: EngineContext = Depends(get_context),
):
    """Current holder of the fetch lock for an entity type."""
    if context.lock_manager is None:
        return {"enabled": False, "lock": None}
    return {"enabled": True, "lock": await context.lock_manager.get_lock_info(entity_type.value)}


@router.post("/locks/{entity_type}/force-unlock", dependencies=[Depends(require_admin_api_key)])
async def force_unlock_sync(
    entity_type: EntityType,
    context: EngineContext = Depends(get_context),
):
    """Drop a fetch lock left behind by a dead worker."""
    if context.lock_manager is None:
        raise HTTPException(status_code=404, detail="Sync locking is disabled")
    await context.lock_manager.force_unlock(entity_type.value)
    return {"success": True, "entity_type": entity_type.value}


@router.get("/{job_id}", response_model=SyncJobResponse)
async def get_sync_job(job_id: int, context: EngineContext = Depends(get_context)):
    """Get a sync job by ID."""
    job = await context.sync_engine.get_status(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Sync job not found")
    return job


@router.post("/{job_id}/run", response_model=SyncJobResponse)
async def run_sync_job(
    job_id: int,
    wait: bool = False,
    context: EngineContext = Depends(get_context),
):
    """
    Start a job that is still queued.

    With wait=true the job runs inside the request and the finished job is
    returned; otherwise it is handed to the background worker.
    """
    if wait:
        return await context.sync_engine.run(job_id)

    job = await context.sync_engine.get_status(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Sync job not found")
    if job.status != SyncStatus.QUEUED.value:
        raise HTTPException(status_code=409, detail=f"Sync job {job_id} is {job.status}")
    if not context.sync_queue.submit(job_id):
        raise HTTPException(status_code=503, detail="Sync queue full")
    return job
