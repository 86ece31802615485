from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

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
    TypeDecorator,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeEngine

from shopincome.core.money import raw_decimal

SINGLETON_ID = "singleton"


def utcnow() -> datetime:
    return datetime.now(UTC)


class MoneyAmount(TypeDecorator[Decimal]):
    """NUMERIC(20, 6) on real databases; exact 6-place text on SQLite.

    SQLite has no fixed-point type and would round-trip through float, so the
    amount is stored as its canonical raw string there instead.
    """

    impl = Numeric(20, 6)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(32))
        return dialect.type_descriptor(Numeric(20, 6, asdecimal=True))

    def process_bind_param(self, value: Decimal | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        if dialect.name == "sqlite":
            return raw_decimal(value)
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return None
        return Decimal(str(value))


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware timestamp that always binds and loads as UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime is not allowed: {value!r}")
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


Payload = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class ShopConfig(Base):
    """Single store configuration written by bootstrap."""

    __tablename__ = "shop_config"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=SINGLETON_ID)
    shop_domain: Mapped[str] = mapped_column(String, nullable=False)
    timezone: Mapped[str] = mapped_column(String, nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )


class SyncState(Base):
    """Watermark and last-run status, mutated only by the sync processor."""

    __tablename__ = "sync_state"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=SINGLETON_ID)
    watermark_processed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    last_sync_started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    last_sync_finished_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    last_sync_status: Mapped[str | None] = mapped_column(String, nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )


class ShopifyOrderRaw(Base):
    """Verbatim order payload kept for audit and reprocessing."""

    __tablename__ = "shopify_order_raw"

    shopify_order_id: Mapped[str] = mapped_column(String, primary_key=True)
    processed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(Payload, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (Index("idx_shopify_order_raw_processed", "processed_at"),)


class OrderIncome(Base):
    """Derived income components for one order, overwritten on every sync."""

    __tablename__ = "order_income"

    shopify_order_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("shopify_order_raw.shopify_order_id", ondelete="CASCADE"),
        primary_key=True,
    )
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(MoneyAmount, nullable=False)
    shipping: Mapped[Decimal] = mapped_column(MoneyAmount, nullable=False)
    tax: Mapped[Decimal] = mapped_column(MoneyAmount, nullable=False)
    discounts: Mapped[Decimal] = mapped_column(MoneyAmount, nullable=False)
    gross: Mapped[Decimal] = mapped_column(MoneyAmount, nullable=False)
    refunds: Mapped[Decimal] = mapped_column(MoneyAmount, nullable=False)
    net: Mapped[Decimal] = mapped_column(MoneyAmount, nullable=False)
    excluded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    excluded_reason: Mapped[str] = mapped_column(
        String, nullable=False, default="none"
    )
    computed_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_order_income_processed", "processed_at"),
        Index("idx_order_income_excluded_processed", "excluded", "processed_at"),
    )


class SyncRunLog(Base):
    """Append-only record of one sync invocation."""

    __tablename__ = "sync_run_log"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    orders_fetched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    orders_upserted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    orders_excluded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_sync_run_log_started", "started_at"),)


@dataclass
class RunProgress:
    """Counters accumulated by a sync run and flushed to its log row."""

    orders_fetched: int = 0
    orders_upserted: int = 0
    orders_excluded: int = 0
    last_cursor: str | None = None


@dataclass
class RefundSource:
    """Stored payload of an order whose refunds may fall in a query range."""

    shopify_order_id: str
    excluded: bool
    payload: dict[str, Any]
