"""API token management routes."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from catalog_engine.api.deps import get_context, require_admin_api_key
from catalog_engine.context import EngineContext
from catalog_engine.db.encryption import mask_token
from catalog_engine.db.models import TokenProvider

router = APIRouter(
    prefix="/api/tokens",
    tags=["tokens"],
    dependencies=[Depends(require_admin_api_key)],
)


class TokenCreate(BaseModel):
    provider: TokenProvider
    token_value: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    id: int
    provider: str
    token_value: str
    active: bool
    expires_at: Optional[datetime]
    created_at: datetime


class UsageStatsResponse(BaseModel):
    total_calls: int
    total_records: int
    by_provider: dict[str, int]


@router.get("", response_model=List[TokenResponse])
async def list_tokens(context: EngineContext = Depends(get_context)):
    """List tokens with masked values."""
    return await context.tokens.list_tokens()


@router.post("", response_model=TokenResponse, status_code=201)
async def create_token(
    token_data: TokenCreate,
    context: EngineContext = Depends(get_context),
):
    """Store a token encrypted. The response only shows the masked value."""
    token = await context.tokens.create_token(
        token_data.provider.value, token_data.token_value, token_data.expires_at
    )
    return TokenResponse(
        id=token.id,
        provider=token.provider,
        token_value=mask_token(token_data.token_value),
        active=token.active,
        expires_at=token.expires_at,
        created_at=token.created_at,
    )


@router.delete("/{token_id}", status_code=204)
async def deactivate_token(token_id: int, context: EngineContext = Depends(get_context)):
    """Deactivate a token. Usage history is kept."""
    if not await context.tokens.deactivate_token(token_id):
        raise HTTPException(status_code=404, detail="Token not found")
    return None


@router.get("/usage", response_model=UsageStatsResponse)
async def get_usage(
    token_id: Optional[int] = None,
    provider: Optional[TokenProvider] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    context: EngineContext = Depends(get_context),
):
    """Aggregated token usage."""
    return await context.tokens.usage_stats(
        token_id=token_id,
        provider=provider.value if provider else None,
        start=start,
        end=end,
    )
