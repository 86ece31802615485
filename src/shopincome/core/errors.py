"""Error taxonomy for income sync and reporting."""

from __future__ import annotations


class ShopIncomeError(Exception):
    """Base error for all shopincome failures."""


class CurrencyMismatchError(ShopIncomeError):
    """Two money operands (or an order and the shop) disagree on currency."""

    def __init__(self, expected: str, actual: str, context: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        message = f"Currency mismatch: expected {expected}, got {actual}"
        if context:
            message = f"{message} ({context})"
        super().__init__(message)


class MissingRequiredFieldError(ShopIncomeError):
    """A source payload lacks a field every downstream computation needs."""

    def __init__(self, field_name: str, order_id: str | None = None) -> None:
        self.field_name = field_name
        self.order_id = order_id
        suffix = f" on order {order_id}" if order_id else ""
        super().__init__(f"Missing required field {field_name}{suffix}")


class InvalidDecimalError(ShopIncomeError):
    """An amount string is not a plain decimal number."""


class InvalidPayloadError(ShopIncomeError):
    """A source payload does not have the expected structure."""


class InvalidRangeError(ShopIncomeError):
    """A requested date range is malformed, inverted or uses an unknown zone."""


class ConfigurationMissingError(ShopIncomeError):
    """Shop configuration has not been bootstrapped or env is incomplete."""


class InvalidQueryError(ShopIncomeError):
    """A query option (sort, page, raw mode) is not one of the accepted values."""


class OrderNotFoundError(ShopIncomeError):
    """No derived income row exists for the requested order id."""

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")
