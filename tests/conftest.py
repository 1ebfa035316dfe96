"""Shared fixtures: in-memory database, fake clock, fake collaborators."""

from decimal import Decimal
from typing import Any, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from catalog_engine.config import settings
from catalog_engine.db.models import Base, PriceRule, ProductDraft, ProductStatus

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FakeClock:
    """Manually advanced wall clock in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePlatform:
    """Platform client returning a fixed page or raising."""

    def __init__(self, entities: Optional[list[dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.entities = entities or []
        self.error = error
        self.calls: list[tuple[str, int, int]] = []
        self.closed = False

    async def fetch_entities(self, entity_type, limit, offset):
        self.calls.append((entity_type.value, limit, offset))
        if self.error is not None:
            raise self.error
        return self.entities

    async def close(self):
        self.closed = True


def platform_factory_for(platform: FakePlatform, token_id: Optional[int] = None):
    async def factory():
        return platform, token_id

    return factory


class FakeRateProvider:
    """Rate provider with fixed rates; unknown pairs or `fail=True` raise."""

    def __init__(self, rates: Optional[dict[tuple[str, str], float]] = None):
        self.rates = rates or {}
        self.fail = False
        self.calls: list[tuple[str, str]] = []

    async def convert(self, from_currency: str, to_currency: str) -> float:
        self.calls.append((from_currency, to_currency))
        if self.fail or (from_currency, to_currency) not in self.rates:
            raise RuntimeError("provider down")
        return self.rates[(from_currency, to_currency)]


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic encryption key and no Redis lock for every test."""
    monkeypatch.setattr(settings, "encryption_key", "test-encryption-passphrase")
    monkeypatch.setattr(settings, "sync_lock_enabled", False)
    return settings


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock()


async def add_product(
    session_factory,
    cost: str,
    selling_price: Optional[str],
    status: str = ProductStatus.PUBLISHED.value,
    currency: Optional[str] = None,
) -> int:
    async with session_factory() as db:
        product = ProductDraft(
            title="Test product",
            cost=Decimal(cost),
            selling_price=Decimal(selling_price) if selling_price is not None else None,
            currency=currency,
            status=status,
        )
        db.add(product)
        await db.commit()
        return product.id


async def add_rule(
    session_factory,
    rule_name: str,
    target: str,
    min_margin: Optional[str] = None,
    active: bool = True,
) -> int:
    async with session_factory() as db:
        rule = PriceRule(
            rule_name=rule_name,
            target_margin_pct=Decimal(target),
            min_margin_pct=Decimal(min_margin) if min_margin is not None else None,
            active=active,
        )
        db.add(rule)
        await db.commit()
        return rule.id
