"""Price rule management routes."""

from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_engine.api.deps import get_database
from catalog_engine.db.models import CurrencyPreference, PriceRule, RoundingRule
from catalog_engine.monitor import repository

router = APIRouter(prefix="/api/price-rules", tags=["price-rules"])


class PriceRuleCreate(BaseModel):
    rule_name: str = Field(min_length=1)
    target_margin_pct: Decimal = Field(ge=0, le=1000)
    min_margin_pct: Decimal | None = Field(default=None, ge=0, le=1000)
    rounding_rule: RoundingRule = RoundingRule.NONE
    currency_preference: CurrencyPreference = CurrencyPreference.CAD
    active: bool = True


class PriceRuleResponse(BaseModel):
    id: int
    rule_name: str
    target_margin_pct: Decimal
    min_margin_pct: Decimal | None
    rounding_rule: str
    currency_preference: str
    active: bool

    class Config:
        from_attributes = True


class PriceRuleUpdate(BaseModel):
    rule_name: str | None = Field(default=None, min_length=1)
    target_margin_pct: Decimal | None = Field(default=None, ge=0, le=1000)
    min_margin_pct: Decimal | None = Field(default=None, ge=0, le=1000)
    rounding_rule: RoundingRule | None = None
    currency_preference: CurrencyPreference | None = None
    active: bool | None = None


@router.get("", response_model=List[PriceRuleResponse])
async def list_price_rules(db: AsyncSession = Depends(get_database)):
    """List all price rules by name."""
    return await repository.list_rules(db)


@router.post("", response_model=PriceRuleResponse, status_code=201)
async def create_price_rule(
    rule_data: PriceRuleCreate, db: AsyncSession = Depends(get_database)
):
    """Create a new price rule."""
    return await repository.create_rule(
        db,
        rule_name=rule_data.rule_name,
        target_margin_pct=rule_data.target_margin_pct,
        min_margin_pct=rule_data.min_margin_pct,
        rounding_rule=rule_data.rounding_rule.value,
        currency_preference=rule_data.currency_preference.value,
        active=rule_data.active,
    )


@router.get("/{rule_id}", response_model=PriceRuleResponse)
async def get_price_rule(rule_id: int, db: AsyncSession = Depends(get_database)):
    """Get a price rule by ID."""
    rule = await db.get(PriceRule, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Price rule not found")
    return rule


@router.patch("/{rule_id}", response_model=PriceRuleResponse)
async def update_price_rule(
    rule_id: int,
    rule_data: PriceRuleUpdate,
    db: AsyncSession = Depends(get_database),
):
    """Update a price rule. Omitted fields are left unchanged."""
    changes = rule_data.model_dump(exclude_unset=True)
    for key in ("rounding_rule", "currency_preference"):
        if changes.get(key) is not None:
            changes[key] = changes[key].value

    rule = await repository.update_rule(db, rule_id, changes)
    if not rule:
        raise HTTPException(status_code=404, detail="Price rule not found")
    return rule


@router.delete("/{rule_id}", status_code=204)
async def delete_price_rule(rule_id: int, db: AsyncSession = Depends(get_database)):
    """Delete a price rule. Past price checks are kept."""
    if not await repository.delete_rule(db, rule_id):
        raise HTTPException(status_code=404, detail="Price rule not found")

    return None
