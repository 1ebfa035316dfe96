"""Queries for price rules and price checks."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_engine.db.models import (
    CurrencyPreference,
    PriceCheck,
    PriceRule,
    ProductDraft,
    ProductStatus,
    RoundingRule,
)


async def get_published_products(db: AsyncSession) -> list[ProductDraft]:
    result = await db.execute(
        select(ProductDraft)
        .where(ProductDraft.status == ProductStatus.PUBLISHED.value)
        .order_by(ProductDraft.id)
    )
    return list(result.scalars().all())


async def list_rules(db: AsyncSession) -> list[PriceRule]:
    result = await db.execute(select(PriceRule).order_by(PriceRule.rule_name, PriceRule.id))
    return list(result.scalars().all())


async def get_active_rules(db: AsyncSession) -> list[PriceRule]:
    """Active rules by name; the monitor evaluates against the first one."""
    result = await db.execute(
        select(PriceRule)
        .where(PriceRule.active.is_(True))
        .order_by(PriceRule.rule_name, PriceRule.id)
    )
    return list(result.scalars().all())


async def create_rule(
    db: AsyncSession,
    rule_name: str,
    target_margin_pct: Decimal,
    min_margin_pct: Optional[Decimal] = None,
    rounding_rule: str = RoundingRule.NONE.value,
    currency_preference: str = CurrencyPreference.CAD.value,
    active: bool = True,
) -> PriceRule:
    rule = PriceRule(
        rule_name=rule_name,
        target_margin_pct=target_margin_pct,
        min_margin_pct=min_margin_pct,
        rounding_rule=RoundingRule(rounding_rule).value,
        currency_preference=CurrencyPreference(currency_preference).value,
        active=active,
    )
    db.add(rule)
    await db.commit()
    await db.refresh(rule)
    return rule


async def update_rule(db: AsyncSession, rule_id: int, changes: dict[str, Any]) -> Optional[PriceRule]:
    """Apply non-None changes to a rule. Returns None when the rule does not exist."""
    rule = await db.get(PriceRule, rule_id)
    if rule is None:
        return None

    for field, value in changes.items():
        if value is None:
            continue
        if field == "rounding_rule":
            value = RoundingRule(value).value
        elif field == "currency_preference":
            value = CurrencyPreference(value).value
        setattr(rule, field, value)

    await db.commit()
    await db.refresh(rule)
    return rule


async def delete_rule(db: AsyncSession, rule_id: int) -> bool:
    """Returns False when the rule does not exist."""
    rule = await db.get(PriceRule, rule_id)
    if rule is None:
        return False

    await db.execute(delete(PriceRule).where(PriceRule.id == rule_id))
    await db.commit()
    return True


async def list_price_checks(
    db: AsyncSession,
    product_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = 100,
) -> list[PriceCheck]:
    """Price check history, newest first."""
    query = select(PriceCheck).order_by(PriceCheck.observed_at.desc(), PriceCheck.id.desc()).limit(limit)
    if product_id is not None:
        query = query.where(PriceCheck.product_draft_id == product_id)
    if date_from is not None:
        query = query.where(PriceCheck.observed_at >= date_from)
    if date_to is not None:
        query = query.where(PriceCheck.observed_at <= date_to)

    result = await db.execute(query)
    return list(result.scalars().all())
