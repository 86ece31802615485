"""Normalized order and refund entities used by income computation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from shopincome.core.money import Money


@dataclass(frozen=True)
class NormalizedOrder:
    """Order in shop currency; ``subtotal`` is already net of discounts."""

    order_id: str
    processed_at: datetime
    currency: str
    subtotal: Money
    shipping: Money
    tax: Money
    discounts: Money
    is_test: bool = False
    cancelled_at: datetime | None = None


@dataclass(frozen=True)
class NormalizedRefund:
    """One refund event with its attributed amount."""

    refund_id: str
    created_at: datetime
    amount: Money


@dataclass(frozen=True)
class NormalizedPayload:
    """Normalizer output: the order plus its refunds in payload order."""

    order: NormalizedOrder
    refunds: list[NormalizedRefund] = field(default_factory=list)
