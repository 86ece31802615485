from __future__ import annotations

from datetime import UTC, datetime

import pytest

from shopincome.core.entities import NormalizedOrder, NormalizedRefund
from shopincome.core.errors import CurrencyMismatchError
from shopincome.core.income import ExclusionReason, compute_income, should_exclude
from shopincome.core.money import Money

PROCESSED_AT = datetime(2026, 2, 25, 16, 30, tzinfo=UTC)


def create_order(
    *,
    subtotal: str = "1000",
    shipping: str = "100",
    tax: str = "160",
    discounts: str = "0",
    currency: str = "MXN",
    is_test: bool = False,
    cancelled_at: datetime | None = None,
) -> NormalizedOrder:
    return NormalizedOrder(
        order_id="gid://shopify/Order/1",
        processed_at=PROCESSED_AT,
        currency=currency,
        subtotal=Money.of(subtotal, currency),
        shipping=Money.of(shipping, currency),
        tax=Money.of(tax, currency),
        discounts=Money.of(discounts, currency),
        is_test=is_test,
        cancelled_at=cancelled_at,
    )


def create_refund(amount: str, currency: str = "MXN", refund_id: str = "r1") -> NormalizedRefund:
    return NormalizedRefund(
        refund_id=refund_id,
        created_at=datetime(2026, 2, 27, 18, 0, tzinfo=UTC),
        amount=Money.of(amount, currency),
    )


class TestComputeIncome:
    def test_order_without_refunds(self) -> None:
        # Input
        order = create_order()

        # Act
        components = compute_income(order, [])
        decision = should_exclude(order, [])

        # Assert
        assert components.gross.to_canonical_string() == "1100"
        assert components.refunds.to_canonical_string() == "0"
        assert components.net.to_canonical_string() == "1100"
        assert components.tax.to_canonical_string() == "160"
        assert decision.exclude is False
        assert decision.reason is ExclusionReason.NONE

    def test_order_with_partial_refund(self) -> None:
        # Input
        order = create_order()
        refunds = [create_refund("200")]

        # Act
        components = compute_income(order, refunds)

        # Assert
        assert components.gross.to_canonical_string() == "1100"
        assert components.refunds.to_canonical_string() == "200"
        assert components.net.to_canonical_string() == "900"

    def test_discounts_are_not_subtracted_again(self) -> None:
        order = create_order(subtotal="900", discounts="100")

        components = compute_income(order, [])

        assert components.gross.to_canonical_string() == "1000"
        assert components.discounts.to_canonical_string() == "100"

    def test_order_revenue_equals_net(self) -> None:
        components = compute_income(create_order(), [create_refund("50.25")])

        assert components.order_revenue == components.net
        assert components.net.to_canonical_string() == "1049.75"

    def test_refund_in_other_currency_raises(self) -> None:
        with pytest.raises(CurrencyMismatchError):
            compute_income(create_order(), [create_refund("10", currency="USD")])

    def test_order_field_in_other_currency_raises(self) -> None:
        order = NormalizedOrder(
            order_id="gid://shopify/Order/2",
            processed_at=PROCESSED_AT,
            currency="MXN",
            subtotal=Money.of("10", "MXN"),
            shipping=Money.of("1", "USD"),
            tax=Money.zero("MXN"),
            discounts=Money.zero("MXN"),
        )

        with pytest.raises(CurrencyMismatchError):
            compute_income(order, [])


class TestShouldExclude:
    def test_cancelled_wins_over_fully_refunded(self) -> None:
        # Input
        order = create_order(cancelled_at=datetime(2026, 2, 26, tzinfo=UTC))
        refunds = [create_refund("1100")]

        # Act
        decision = should_exclude(order, refunds)

        # Assert
        assert decision.exclude is True
        assert decision.reason is ExclusionReason.CANCELLED

    def test_test_order_wins_over_fully_refunded(self) -> None:
        order = create_order(is_test=True)

        decision = should_exclude(order, [create_refund("1100")])

        assert decision.reason is ExclusionReason.TEST

    def test_cancelled_wins_over_test(self) -> None:
        order = create_order(is_test=True, cancelled_at=datetime(2026, 2, 26, tzinfo=UTC))

        assert should_exclude(order, []).reason is ExclusionReason.CANCELLED

    @pytest.mark.parametrize("refund_amount", ["1100", "1200.50"])
    def test_refunds_at_or_above_gross_exclude(self, refund_amount: str) -> None:
        decision = should_exclude(create_order(), [create_refund(refund_amount)])

        assert decision.exclude is True
        assert decision.reason is ExclusionReason.FULLY_REFUNDED
        assert decision.reason.value == "fully-refunded"

    def test_refunds_below_gross_stay_included(self) -> None:
        refunds = [create_refund("600", refund_id="r1"), create_refund("499.99", refund_id="r2")]

        decision = should_exclude(create_order(), refunds)

        assert decision.exclude is False
