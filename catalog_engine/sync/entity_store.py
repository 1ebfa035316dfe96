"""Local snapshots of synchronized Medusa entities."""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_engine.db.models import EntityType, SyncedEntity

logger = logging.getLogger(__name__)


def external_id_of(entity: Any) -> str:
    """Medusa id of a raw entity. Raises ValueError when there is none."""
    if isinstance(entity, dict):
        entity_id = entity.get("id")
        if entity_id not in (None, ""):
            return str(entity_id)
    raise ValueError(f"Entity without an id: {str(entity)[:200]}")


async def upsert_entities(
    db: AsyncSession,
    entity_type: EntityType,
    entities: Iterable[dict[str, Any]],
    sync_job_id: Optional[int] = None,
) -> int:
    """
    Create-or-replace snapshots keyed by (entity_type, external id).

    Replaying the same page leaves the row count unchanged. The caller commits.

    Returns:
        Number of distinct entities written
    """
    by_id: dict[str, dict[str, Any]] = {}
    for entity in entities:
        by_id[external_id_of(entity)] = entity

    if not by_id:
        return 0

    now = datetime.utcnow()
    rows = [
        {
            "entity_type": entity_type.value,
            "external_id": external_id,
            "payload": payload,
            "synced_at": now,
            "sync_job_id": sync_job_id,
        }
        for external_id, payload in by_id.items()
    ]

    # Last write wins per (entity_type, external_id), also across
    # overlapping runs of one entity type.
    insert = sqlite_insert if db.get_bind().dialect.name == "sqlite" else pg_insert
    stmt = insert(SyncedEntity).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["entity_type", "external_id"],
        set_={
            "payload": stmt.excluded.payload,
            "synced_at": stmt.excluded.synced_at,
            "sync_job_id": stmt.excluded.sync_job_id,
        },
    )
    await db.execute(stmt)

    logger.debug(f"Upserted {len(by_id)} {entity_type.value} entities")
    return len(by_id)


async def get_synced_entities(
    session_factory: async_sessionmaker, entity_type: EntityType
) -> list[dict[str, Any]]:
    """Stored payloads for an entity type, ordered by external id."""
    async with session_factory() as db:
        result = await db.execute(
            select(SyncedEntity.payload)
            .where(SyncedEntity.entity_type == EntityType(entity_type).value)
            .order_by(SyncedEntity.external_id)
        )
        return list(result.scalars().all())


async def count_entities(session_factory: async_sessionmaker, entity_type: EntityType) -> int:
    async with session_factory() as db:
        result = await db.execute(
            select(func.count(SyncedEntity.id)).where(
                SyncedEntity.entity_type == EntityType(entity_type).value
            )
        )
        return int(result.scalar_one())
