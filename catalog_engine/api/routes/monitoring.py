"""Price monitoring routes."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_engine.api.deps import get_context, get_database
from catalog_engine.context import EngineContext
from catalog_engine.monitor.repository import list_price_checks

router = APIRouter(prefix="/api/monitoring", tags=["monitoring"])


class MonitoringResult(BaseModel):
    checked: int
    alerts: int
    errors: List[str]


class PriceCheckResponse(BaseModel):
    id: int
    product_draft_id: int
    supplier_price_amount: Decimal
    supplier_price_currency: str
    selling_price_amount: Decimal
    selling_price_currency: str
    margin_pct: Decimal
    delta_pct: Optional[Decimal]
    observed_at: datetime

    class Config:
        from_attributes = True


@router.post("/check-prices", response_model=MonitoringResult)
async def check_prices(context: EngineContext = Depends(get_context)):
    """Run a monitoring pass now and return its summary."""
    summary = await context.monitor.run_monitoring()
    return summary.to_dict()


@router.get("/price-checks", response_model=List[PriceCheckResponse])
async def get_price_checks(
    product_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_database),
):
    """Price check history, newest first."""
    return await list_price_checks(db, product_id, date_from, date_to, limit)
