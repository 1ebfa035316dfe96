"""Application settings routes."""

from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from catalog_engine.api.deps import get_context, require_admin_api_key
from catalog_engine.context import EngineContext
from catalog_engine.services.settings_cache import ENCRYPTED_KEYS, update_settings

router = APIRouter(prefix="/api/settings", tags=["settings"])

MASKED_VALUE = "********"


class SettingResponse(BaseModel):
    key: str
    value: Any
    updated_at: datetime | None = None


class SettingsUpdate(BaseModel):
    values: Dict[str, Any]


def _display_value(key: str, value: Any) -> Any:
    if key in ENCRYPTED_KEYS and value:
        return MASKED_VALUE
    return value


@router.get("", response_model=List[SettingResponse])
async def list_settings(context: EngineContext = Depends(get_context)):
    """All settings; encrypted values are masked."""
    rows = await context.settings_cache.get_all()
    return [
        SettingResponse(key=row.key, value=_display_value(row.key, row.value_jsonb), updated_at=row.updated_at)
        for row in rows
    ]


@router.get("/{key}", response_model=SettingResponse)
async def get_setting(key: str, context: EngineContext = Depends(get_context)):
    """Get one setting through the cache."""
    value = await context.settings_cache.get(key)
    if value is None:
        raise HTTPException(status_code=404, detail="Setting not found")
    return SettingResponse(key=key, value=_display_value(key, value))


@router.put("", dependencies=[Depends(require_admin_api_key)])
async def put_settings(
    update: SettingsUpdate,
    context: EngineContext = Depends(get_context),
):
    """Write settings (owner only). Cached entries for the written keys are dropped."""
    written = await update_settings(context.session_factory, context.settings_cache, update.values)
    return {"success": True, "updated": written}
