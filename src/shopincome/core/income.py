"""Income components and inclusion policy for a single order.

Gross income is subtotal (after discounts) plus shipping; tax is reported but
never part of income. Net income is gross minus the sum of refunds. Discounts
are informational only since the subtotal already reflects them.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from shopincome.core.entities import NormalizedOrder, NormalizedRefund
from shopincome.core.errors import CurrencyMismatchError
from shopincome.core.money import Money, sum_money


class ExclusionReason(str, Enum):
    """Why an order is left out of aggregates."""

    NONE = "none"
    CANCELLED = "cancelled"
    TEST = "test"
    FULLY_REFUNDED = "fully-refunded"


@dataclass(frozen=True)
class IncomeComponents:
    currency: str
    subtotal: Money
    shipping: Money
    tax: Money
    discounts: Money
    gross: Money
    refunds: Money
    net: Money

    @property
    def order_revenue(self) -> Money:
        """Host-comparable order revenue; defined as net income."""
        return self.net


@dataclass(frozen=True)
class ExclusionDecision:
    exclude: bool
    reason: ExclusionReason = ExclusionReason.NONE


def _assert_order_currency(order: NormalizedOrder, refunds: Sequence[NormalizedRefund]) -> None:
    for label, money in (
        ("subtotal", order.subtotal),
        ("shipping", order.shipping),
        ("tax", order.tax),
        ("discounts", order.discounts),
    ):
        if money.currency != order.currency:
            raise CurrencyMismatchError(
                order.currency, money.currency, f"{label} of order {order.order_id}"
            )
    for refund in refunds:
        if refund.amount.currency != order.currency:
            raise CurrencyMismatchError(
                order.currency,
                refund.amount.currency,
                f"refund {refund.refund_id} of order {order.order_id}",
            )


def compute_income(
    order: NormalizedOrder, refunds: Sequence[NormalizedRefund]
) -> IncomeComponents:
    """Derive gross, refunds and net for an order. Pure and deterministic."""
    _assert_order_currency(order, refunds)
    refunds_total = sum_money((refund.amount for refund in refunds), order.currency)
    gross = order.subtotal.add(order.shipping)
    net = gross.subtract(refunds_total)
    return IncomeComponents(
        currency=order.currency,
        subtotal=order.subtotal,
        shipping=order.shipping,
        tax=order.tax,
        discounts=order.discounts,
        gross=gross,
        refunds=refunds_total,
        net=net,
    )


def should_exclude(
    order: NormalizedOrder, refunds: Sequence[NormalizedRefund]
) -> ExclusionDecision:
    """Decide inclusion; the first matching rule determines the reason.

    Order of checks: cancelled, test, fully refunded (refunds >= gross).
    """
    if order.cancelled_at is not None:
        return ExclusionDecision(exclude=True, reason=ExclusionReason.CANCELLED)
    if order.is_test:
        return ExclusionDecision(exclude=True, reason=ExclusionReason.TEST)
    components = compute_income(order, refunds)
    if components.refunds.compare(components.gross) >= 0:
        return ExclusionDecision(exclude=True, reason=ExclusionReason.FULLY_REFUNDED)
    return ExclusionDecision(exclude=False)
