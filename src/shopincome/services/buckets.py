"""Time bucketing for income series.

Bucket keys are merchant-local and carry no offset: hourly keys look like
``2026-02-25T13:00:00`` and daily keys like ``2026-02-25``. Every unit of the
requested range gets a bucket, zero-filled when no data falls into it.

Order rows land in the bucket of their ``processed_at``. Refunds land in the
bucket of the refund's own ``created_at``, so per-bucket net is not gross
minus refunds unless summed over the whole range.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from shopincome.adapters.shopify.refunds import RefundEvent
from shopincome.core.errors import CurrencyMismatchError, InvalidQueryError
from shopincome.core.money import Money
from shopincome.services.date_range import LocalRange

HOURLY_MAX_DAYS = 2


class Granularity(str, Enum):
    HOUR = "hour"
    DAY = "day"


class IncomeRowLike(Protocol):
    shopify_order_id: str
    currency_code: str
    processed_at: datetime
    gross: Decimal
    net: Decimal
    shipping: Decimal
    tax: Decimal
    discounts: Decimal
    refunds: Decimal


def choose_granularity(
    local_range: LocalRange, override: Granularity | str | None = None
) -> Granularity:
    """Hourly for spans of at most two local days, daily otherwise."""
    if override is not None:
        try:
            return Granularity(override)
        except ValueError as e:
            raise InvalidQueryError("granularity must be one of: hour, day") from e
    if local_range.day_count <= HOURLY_MAX_DAYS:
        return Granularity.HOUR
    return Granularity.DAY


def bucket_key(instant: datetime, zone: ZoneInfo, granularity: Granularity) -> str:
    local = instant.astimezone(zone)
    if granularity is Granularity.HOUR:
        return local.strftime("%Y-%m-%dT%H:00:00")
    return local.date().isoformat()


def enumerate_bucket_keys(
    local_range: LocalRange, granularity: Granularity
) -> list[str]:
    """All keys covering ``local_range`` in ascending order.

    Hours are walked on the naive local clock, so a full local day always
    yields 24 keys. A relative window stops at the hour containing its end.
    """
    if granularity is Granularity.DAY:
        return [
            (local_range.from_date + timedelta(days=offset)).isoformat()
            for offset in range(local_range.day_count)
        ]

    cursor = datetime.combine(local_range.from_date, time.min)
    last = local_range.end.astimezone(local_range.zone).replace(
        tzinfo=None, minute=0, second=0, microsecond=0
    )
    last_of_range = datetime.combine(local_range.to_date, time(23))
    last = min(last, last_of_range)
    keys: list[str] = []
    while cursor <= last:
        keys.append(cursor.strftime("%Y-%m-%dT%H:00:00"))
        cursor += timedelta(hours=1)
    return keys


@dataclass
class IncomeTotals:
    """Running sums for one bucket or for a whole range."""

    currency: str
    orders_count: int = 0
    gross: Money = field(init=False)
    net: Money = field(init=False)
    shipping: Money = field(init=False)
    tax: Money = field(init=False)
    discounts: Money = field(init=False)
    refunds: Money = field(init=False)

    def __post_init__(self) -> None:
        zero = Money.zero(self.currency)
        self.gross = zero
        self.net = zero
        self.shipping = zero
        self.tax = zero
        self.discounts = zero
        self.refunds = zero

    @property
    def order_revenue(self) -> Money:
        return self.net

    def _money(self, amount: Decimal, currency: str, label: str) -> Money:
        if currency != self.currency:
            raise CurrencyMismatchError(self.currency, currency, label)
        return Money.of(amount, currency)

    def add_order(self, row: IncomeRowLike) -> None:
        label = f"order {row.shopify_order_id}"
        self.orders_count += 1
        self.gross = self.gross.add(self._money(row.gross, row.currency_code, label))
        self.net = self.net.add(self._money(row.net, row.currency_code, label))
        self.shipping = self.shipping.add(
            self._money(row.shipping, row.currency_code, label)
        )
        self.tax = self.tax.add(self._money(row.tax, row.currency_code, label))
        self.discounts = self.discounts.add(
            self._money(row.discounts, row.currency_code, label)
        )

    def add_refund(self, amount: Money) -> None:
        self.refunds = self.refunds.add(amount)

    def money_dict(self) -> dict[str, dict[str, str]]:
        return {
            "order_revenue": self.order_revenue.to_value().to_dict(),
            "gross": self.gross.to_value().to_dict(),
            "refunds": self.refunds.to_value().to_dict(),
            "net": self.net.to_value().to_dict(),
            "shipping": self.shipping.to_value().to_dict(),
            "tax": self.tax.to_value().to_dict(),
            "discounts": self.discounts.to_value().to_dict(),
        }


@dataclass
class Bucket:
    key: str
    totals: IncomeTotals

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.key,
            "orders_count": self.totals.orders_count,
            **self.totals.money_dict(),
        }


def _in_range(instant: datetime, local_range: LocalRange) -> bool:
    return local_range.start <= instant <= local_range.end


def build_buckets(
    rows: Iterable[IncomeRowLike],
    refund_events: Iterable[RefundEvent],
    local_range: LocalRange,
    granularity: Granularity,
    currency: str,
) -> list[Bucket]:
    """Aggregate rows and refund events into a contiguous, zero-filled series.

    ``rows`` should already be filtered for exclusion; anything outside the
    range's UTC bounds is ignored.
    """
    zone = local_range.zone
    buckets = {
        key: Bucket(key=key, totals=IncomeTotals(currency=currency))
        for key in enumerate_bucket_keys(local_range, granularity)
    }

    for row in rows:
        if not _in_range(row.processed_at, local_range):
            continue
        bucket = buckets.get(bucket_key(row.processed_at, zone, granularity))
        if bucket is not None:
            bucket.totals.add_order(row)

    for event in refund_events:
        if not _in_range(event.created_at, local_range):
            continue
        bucket = buckets.get(bucket_key(event.created_at, zone, granularity))
        if bucket is not None:
            bucket.totals.add_refund(event.amount)

    return list(buckets.values())
