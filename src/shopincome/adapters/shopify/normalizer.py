"""Map an Admin GraphQL order node to normalized order and refunds.

``currentSubtotalPriceSet`` is already net of discounts; the discount total is
carried for breakdowns only and must never be subtracted again.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC
from typing import Any

from pydantic import ValidationError

from shopincome.adapters.shopify.refunds import attribute_refund, money_from_bag
from shopincome.adapters.shopify.schemas import OrderNode
from shopincome.core.entities import NormalizedOrder, NormalizedPayload, NormalizedRefund
from shopincome.core.errors import InvalidPayloadError, MissingRequiredFieldError


def parse_order_node(node: Mapping[str, Any]) -> OrderNode:
    try:
        return OrderNode.parse(node)
    except ValidationError as e:
        order_id = node.get("id") if isinstance(node, Mapping) else None
        raise InvalidPayloadError(f"Invalid order node {order_id}: {e}") from e


def normalize_order(node: Mapping[str, Any]) -> NormalizedPayload:
    """Validate ``node`` and convert every amount to shop-currency Money.

    Raises:
        InvalidPayloadError: The node does not match the expected shape.
        MissingRequiredFieldError: ``processedAt`` or the subtotal is absent.
        CurrencyMismatchError: Any amount differs from the subtotal currency.
        InvalidDecimalError: An amount is not a plain decimal string.
    """
    order = parse_order_node(node)

    if order.processed_at is None:
        raise MissingRequiredFieldError("processedAt", order.id)
    if order.current_subtotal_price_set is None:
        raise MissingRequiredFieldError("currentSubtotalPriceSet.shopMoney", order.id)

    currency = order.current_subtotal_price_set.shop_money.currency_code
    subtotal = money_from_bag(order.current_subtotal_price_set, currency, "subtotal")
    shipping = money_from_bag(order.current_shipping_price_set, currency, "shipping")
    tax = money_from_bag(order.current_total_tax_set, currency, "tax")
    discounts = money_from_bag(
        order.current_total_discounts_set, currency, "discounts"
    )

    refunds = [
        NormalizedRefund(
            refund_id=refund.id,
            created_at=refund.created_at.astimezone(UTC),
            amount=attribute_refund(refund, currency),
        )
        for refund in order.refunds
    ]

    normalized = NormalizedOrder(
        order_id=order.id,
        processed_at=order.processed_at.astimezone(UTC),
        currency=currency,
        subtotal=subtotal,
        shipping=shipping,
        tax=tax,
        discounts=discounts,
        is_test=bool(order.test),
        cancelled_at=(
            order.cancelled_at.astimezone(UTC) if order.cancelled_at else None
        ),
    )
    return NormalizedPayload(order=normalized, refunds=refunds)
