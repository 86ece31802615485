"""PII-free digest of a stored order payload for drill-down views.

Only identifiers, timestamps, statuses, money totals and counts are copied;
customer, address and note fields never leave the raw store.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

_TEXT_FIELDS = (
    "id",
    "name",
    "processedAt",
    "createdAt",
    "updatedAt",
    "cancelledAt",
    "displayFinancialStatus",
    "displayFulfillmentStatus",
)

_MONEY_FIELDS = {
    "currentSubtotalPriceSet": "subtotal",
    "currentShippingPriceSet": "shipping",
    "currentTotalTaxSet": "tax",
    "currentTotalDiscountsSet": "discounts",
    "totalPriceSet": "total",
}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _shop_money(value: Any) -> dict[str, str | None] | None:
    if not isinstance(value, Mapping):
        return None
    shop_money = value.get("shopMoney")
    if not isinstance(shop_money, Mapping):
        return None
    return {
        "amount": _text(shop_money.get("amount")),
        "currency_code": _text(shop_money.get("currencyCode")),
    }


def _count(value: Any) -> int:
    if isinstance(value, list):
        return len(value)
    if isinstance(value, Mapping):
        for key in ("edges", "nodes"):
            items = value.get(key)
            if isinstance(items, list):
                return len(items)
    return 0


def summarize_order_payload(payload: Any) -> dict[str, Any] | None:
    """Return a small dict describing ``payload`` or None if it is not an object."""
    if not isinstance(payload, Mapping):
        return None

    summary: dict[str, Any] = {
        field: _text(payload.get(field)) for field in _TEXT_FIELDS
    }
    summary["test"] = payload.get("test") is True
    summary["money"] = {
        label: _shop_money(payload.get(source))
        for source, label in _MONEY_FIELDS.items()
        if payload.get(source) is not None
    }
    summary["line_items_count"] = _count(payload.get("lineItems"))
    summary["refunds_count"] = _count(payload.get("refunds"))
    return summary
