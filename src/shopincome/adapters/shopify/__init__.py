"""Shopify Admin GraphQL payload adapters."""

from __future__ import annotations

from shopincome.adapters.shopify.normalizer import normalize_order
from shopincome.adapters.shopify.refunds import (
    RefundEvent,
    attribute_refund,
    extract_refund_events,
)

__all__ = [
    "RefundEvent",
    "attribute_refund",
    "extract_refund_events",
    "normalize_order",
]
