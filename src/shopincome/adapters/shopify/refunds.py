"""Refund amount attribution.

Shopify sometimes reports ``totalRefundedSet`` as zero for refunds that did
return line items (restock-only flows, some POS refunds). In that case the sum
of the refund line-item subtotals is the effective refunded amount. The rule
applies to each refund on its own, never to the order as a whole.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from shopincome.adapters.shopify.schemas import MoneyBag, RefundNode
from shopincome.core.errors import CurrencyMismatchError, InvalidPayloadError
from shopincome.core.money import Money, sum_money


@dataclass(frozen=True)
class RefundEvent:
    """A refund placed at its own creation time, for event-time aggregation."""

    refund_id: str
    created_at: datetime
    amount: Money


def money_from_bag(bag: MoneyBag | None, currency: str, label: str = "amount") -> Money:
    """Convert an optional shop-money set; absent sets are zero in ``currency``."""
    if bag is None:
        return Money.zero(currency)
    shop_money = bag.shop_money
    if shop_money.currency_code != currency:
        raise CurrencyMismatchError(currency, shop_money.currency_code, label)
    return Money.of(shop_money.amount, currency)


def attribute_refund(refund: RefundNode, currency: str) -> Money:
    """Effective refunded amount for one refund node."""
    total = money_from_bag(
        refund.total_refunded_set, currency, f"refund {refund.id} total"
    )
    line_items = sum_money(
        (
            money_from_bag(bag, currency, f"refund {refund.id} line item")
            for bag in refund.line_item_subtotals()
        ),
        currency,
    )
    if total.is_zero() and line_items.compare(Money.zero(currency)) > 0:
        return line_items
    return total


def extract_refund_events(payload: Mapping[str, Any]) -> Iterator[RefundEvent]:
    """Yield attributed refunds from a stored raw order payload.

    The order currency is taken from the payload's subtotal, mirroring the
    normalizer, so refunds recorded in another currency still raise.
    """
    subtotal = payload.get("currentSubtotalPriceSet") or {}
    currency = (subtotal.get("shopMoney") or {}).get("currencyCode")
    refunds = payload.get("refunds") or []
    if not refunds:
        return
    if not currency:
        raise InvalidPayloadError(
            f"Stored order {payload.get('id')} has refunds but no subtotal currency"
        )
    for raw_refund in refunds:
        try:
            node = RefundNode.parse(raw_refund)
        except ValidationError as e:
            raise InvalidPayloadError(
                f"Invalid refund on stored order {payload.get('id')}: {e}"
            ) from e
        yield RefundEvent(
            refund_id=node.id,
            created_at=node.created_at,
            amount=attribute_refund(node, currency),
        )
