"""Pydantic models for the Admin GraphQL order node used by income sync.

Structure only: amounts stay strings here and are validated as decimals by the
normalizer, which also enforces currency consistency.
"""

from __future__ import annotations

from typing import Any, Self

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field


class ShopifyBaseModel(BaseModel):
    """Shared base accepting camelCase payload keys and ignoring extras."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class MoneyV2(ShopifyBaseModel):
    amount: str
    currency_code: str = Field(alias="currencyCode", min_length=1)


class MoneyBag(ShopifyBaseModel):
    shop_money: MoneyV2 = Field(alias="shopMoney")


class RefundLineItemNode(ShopifyBaseModel):
    quantity: int | None = None
    subtotal_set: MoneyBag | None = Field(default=None, alias="subtotalSet")


class RefundLineItemEdge(ShopifyBaseModel):
    node: RefundLineItemNode


class RefundLineItemConnection(ShopifyBaseModel):
    edges: list[RefundLineItemEdge] = Field(default_factory=list)


class RefundNode(ShopifyBaseModel):
    id: str
    created_at: AwareDatetime = Field(alias="createdAt")
    total_refunded_set: MoneyBag = Field(alias="totalRefundedSet")
    refund_line_items: RefundLineItemConnection | None = Field(
        default=None, alias="refundLineItems"
    )

    def line_item_subtotals(self) -> list[MoneyBag]:
        if self.refund_line_items is None:
            return []
        return [
            edge.node.subtotal_set
            for edge in self.refund_line_items.edges
            if edge.node.subtotal_set is not None
        ]


class OrderNode(ShopifyBaseModel):
    id: str
    processed_at: AwareDatetime | None = Field(default=None, alias="processedAt")
    cancelled_at: AwareDatetime | None = Field(default=None, alias="cancelledAt")
    test: bool | None = None
    current_subtotal_price_set: MoneyBag | None = Field(
        default=None, alias="currentSubtotalPriceSet"
    )
    current_shipping_price_set: MoneyBag | None = Field(
        default=None, alias="currentShippingPriceSet"
    )
    current_total_tax_set: MoneyBag | None = Field(
        default=None, alias="currentTotalTaxSet"
    )
    current_total_discounts_set: MoneyBag | None = Field(
        default=None, alias="currentTotalDiscountsSet"
    )
    refunds: list[RefundNode] = Field(default_factory=list)


class PageInfo(ShopifyBaseModel):
    has_next_page: bool = Field(alias="hasNextPage")
    end_cursor: str | None = Field(default=None, alias="endCursor")


class OrdersConnection(ShopifyBaseModel):
    page_info: PageInfo = Field(alias="pageInfo")
    nodes: list[dict[str, Any]] = Field(default_factory=list)


class OrdersQueryData(ShopifyBaseModel):
    orders: OrdersConnection
