from __future__ import annotations

from datetime import UTC, datetime

import pytest

from shopincome.adapters.shopify.normalizer import normalize_order
from shopincome.core.errors import (
    CurrencyMismatchError,
    InvalidDecimalError,
    InvalidPayloadError,
    MissingRequiredFieldError,
)
from tests.fixtures.shopify_orders import money_set, order_node, refund_node


class TestNormalizeOrder:
    def test_maps_amounts_and_flags(self) -> None:
        # Input
        node = order_node(subtotal="1000.00", shipping="100.00", tax="160.00")

        # Act
        payload = normalize_order(node)

        # Assert
        order = payload.order
        assert order.order_id == "gid://shopify/Order/1"
        assert order.currency == "MXN"
        assert order.subtotal.to_canonical_string() == "1000"
        assert order.shipping.to_canonical_string() == "100"
        assert order.tax.to_canonical_string() == "160"
        assert order.discounts.is_zero()
        assert order.is_test is False
        assert order.cancelled_at is None
        assert payload.refunds == []

    def test_processed_at_is_converted_to_utc(self) -> None:
        node = order_node(processed_at="2026-02-25T10:30:00-06:00")

        order = normalize_order(node).order

        assert order.processed_at == datetime(2026, 2, 25, 16, 30, tzinfo=UTC)
        assert order.processed_at.utcoffset() is not None

    def test_cancelled_and_test_flags(self) -> None:
        node = order_node(test=True, cancelled_at="2026-02-26T00:00:00Z")

        order = normalize_order(node).order

        assert order.is_test is True
        assert order.cancelled_at == datetime(2026, 2, 26, tzinfo=UTC)

    def test_absent_optional_sets_are_zero(self) -> None:
        node = order_node(shipping=None, tax=None, discounts=None)

        order = normalize_order(node).order

        assert order.shipping.is_zero()
        assert order.tax.is_zero()
        assert order.discounts.is_zero()
        assert order.shipping.currency == "MXN"

    def test_missing_processed_at_raises(self) -> None:
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            normalize_order(order_node(processed_at=None))

        assert exc_info.value.field_name == "processedAt"

    def test_missing_subtotal_raises(self) -> None:
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            normalize_order(order_node(subtotal=None))

        assert exc_info.value.field_name == "currentSubtotalPriceSet.shopMoney"

    def test_shipping_in_presentment_currency_raises(self) -> None:
        # Input
        node = order_node()
        node["currentShippingPriceSet"] = money_set("5.00", "USD")

        # Act / Assert
        with pytest.raises(CurrencyMismatchError):
            normalize_order(node)

    def test_refund_in_other_currency_raises(self) -> None:
        node = order_node(refunds=[refund_node(total="10.00", currency="USD")])

        with pytest.raises(CurrencyMismatchError):
            normalize_order(node)

    def test_scientific_notation_amount_raises(self) -> None:
        with pytest.raises(InvalidDecimalError):
            normalize_order(order_node(subtotal="1e3"))

    @pytest.mark.parametrize(
        "node",
        [
            {"processedAt": "2026-02-25T16:30:00Z"},
            {"id": "gid://shopify/Order/1", "processedAt": "not-a-date"},
            {"id": "gid://shopify/Order/1", "processedAt": "2026-02-25T16:30:00"},
            {"id": "gid://shopify/Order/1", "refunds": "nope"},
        ],
    )
    def test_malformed_nodes_raise_invalid_payload(self, node: dict[str, object]) -> None:
        with pytest.raises(InvalidPayloadError):
            normalize_order(node)

    def test_refunds_keep_payload_order(self) -> None:
        # Input
        node = order_node(
            refunds=[
                refund_node(refund_id="r1", total="200.00"),
                refund_node(
                    refund_id="r2",
                    created_at="2026-02-28T12:00:00Z",
                    total="0.00",
                    line_subtotals=["599.00"],
                ),
            ]
        )

        # Act
        refunds = normalize_order(node).refunds

        # Assert
        assert [refund.refund_id for refund in refunds] == ["r1", "r2"]
        assert refunds[0].amount.to_canonical_string() == "200"
        assert refunds[1].amount.to_canonical_string() == "599"
        assert refunds[1].created_at == datetime(2026, 2, 28, 12, tzinfo=UTC)
