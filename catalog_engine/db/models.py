"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class EntityType(str, Enum):
    """External platform entities that can be synchronized locally."""

    PRODUCT = "product"
    CATEGORY = "category"
    COLLECTION = "collection"
    TYPE = "type"
    TAG = "tag"
    SALES_CHANNEL = "sales_channel"


class SyncOperation(str, Enum):
    FETCH = "fetch"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncStatus(str, Enum):
    """Sync job lifecycle: queued -> running -> done | error."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class TokenProvider(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    MEDUSA = "medusa"


class RoundingRule(str, Enum):
    NINETY_NINE = ".99"
    NINETY_FIVE = ".95"
    NONE = "none"


class CurrencyPreference(str, Enum):
    CAD = "CAD"
    USD = "USD"
    AUTO = "AUTO"


class ProductStatus(str, Enum):
    DRAFT = "draft"
    ENRICHED = "enriched"
    READY = "ready"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ProductDraft(Base):
    """Catalog product. Only the pricing fields the monitor reads are modelled."""

    __tablename__ = "products_draft"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    selling_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), default=ProductStatus.DRAFT.value, nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    price_checks: Mapped[list["PriceCheck"]] = relationship(
        "PriceCheck", back_populates="product", cascade="all, delete-orphan"
    )


class PriceRule(Base):
    """Margin rule used by the price monitor."""

    __tablename__ = "price_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rule_name: Mapped[str] = mapped_column(String(128), nullable=False)
    target_margin_pct: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False)
    min_margin_pct: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 2), nullable=True)
    rounding_rule: Mapped[str] = mapped_column(
        String(8), default=RoundingRule.NONE.value, nullable=False
    )
    currency_preference: Mapped[str] = mapped_column(
        String(8), default=CurrencyPreference.CAD.value, nullable=False
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class PriceCheck(Base):
    """Append-only margin observation written once per product per monitoring pass."""

    __tablename__ = "price_checks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_draft_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products_draft.id", ondelete="CASCADE"), nullable=False
    )
    supplier_price_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    supplier_price_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    selling_price_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    selling_price_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    margin_pct: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    delta_pct: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    observed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )

    product: Mapped["ProductDraft"] = relationship("ProductDraft", back_populates="price_checks")


class Setting(Base):
    """Key/value application setting with a JSON value."""

    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    value_jsonb: Mapped[Any] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class ApiToken(Base):
    """Encrypted provider credential. `active=False` is a soft delete."""

    __tablename__ = "api_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    token_value_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    usage_logs: Mapped[list["TokenUsageLog"]] = relationship(
        "TokenUsageLog", back_populates="token", cascade="all, delete-orphan"
    )


class TokenUsageLog(Base):
    """Audit row for every use of a stored credential."""

    __tablename__ = "token_usage_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    token_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("api_tokens.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    process_name: Mapped[str] = mapped_column(String(64), nullable=False)
    record_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    used_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    token: Mapped["ApiToken"] = relationship("ApiToken", back_populates="usage_logs")

    __table_args__ = (
        Index("ix_token_usage_logs_token_id_used_at", "token_id", "used_at"),
    )


class SyncJob(Base):
    """One asynchronous unit of work against the external commerce platform."""

    __tablename__ = "sync_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    operation: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), default=SyncStatus.QUEUED.value, nullable=False
    )
    record_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    log_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_sync_jobs_entity_type_status", "entity_type", "status"),
    )

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class SyncedEntity(Base):
    """Local snapshot of an external platform entity, keyed by its external id."""

    __tablename__ = "synced_entities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[Any] = mapped_column(JSONType, nullable=False)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    sync_job_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("sync_jobs.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("entity_type", "external_id", name="uq_synced_entity_type_external_id"),
    )
