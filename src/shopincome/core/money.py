"""Finance-safe money model.

All amounts are ``Decimal`` values tagged with a currency code. Arithmetic runs
in a dedicated high-precision context so no intermediate result is rounded;
rounding happens only when formatting for display (2 places) or for the raw
wire representation (6 places), both half-to-even.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Context, Decimal, InvalidOperation
import re
from typing import Literal

from shopincome.core.errors import CurrencyMismatchError, InvalidDecimalError

DECIMAL_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")
DISPLAY_PLACES = 2
RAW_PLACES = 6

ARITHMETIC = Context(prec=60, rounding=ROUND_HALF_EVEN)
_DISPLAY_QUANTUM = Decimal(1).scaleb(-DISPLAY_PLACES)
_RAW_QUANTUM = Decimal(1).scaleb(-RAW_PLACES)


def parse_decimal(value: str) -> Decimal:
    """Parse a plain decimal string (optional minus, digits, optional fraction).

    Raises:
        InvalidDecimalError: For scientific notation, blanks, NaN, or any
            other non-conforming input.
    """
    if not isinstance(value, str):
        raise InvalidDecimalError(f"Amount must be a string, got {type(value).__name__}")
    text = value.strip()
    if not DECIMAL_PATTERN.match(text):
        raise InvalidDecimalError(f"Invalid decimal amount: {value!r}")
    try:
        return Decimal(text)
    except InvalidOperation as e:  # pragma: no cover - regex already guards
        raise InvalidDecimalError(f"Invalid decimal amount: {value!r}") from e


def canonical_decimal(value: Decimal) -> str:
    """Plain notation with trailing fractional zeros trimmed."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text


def _fixed(value: Decimal, quantum: Decimal) -> str:
    rounded = value.quantize(quantum, rounding=ROUND_HALF_EVEN)
    if rounded.is_zero():
        rounded = abs(rounded)
    return format(rounded, "f")


def display_decimal(value: Decimal) -> str:
    return _fixed(value, _DISPLAY_QUANTUM)


def raw_decimal(value: Decimal) -> str:
    return _fixed(value, _RAW_QUANTUM)


@dataclass(frozen=True, slots=True)
class Money:
    """An exact decimal amount in a single currency."""

    amount: Decimal
    currency: str

    @classmethod
    def of(cls, amount: str | Decimal, currency: str) -> Money:
        """Build from a decimal string (validated) or an existing Decimal."""
        if isinstance(amount, Decimal):
            if not amount.is_finite():
                raise InvalidDecimalError(f"Amount must be finite: {amount}")
            return cls(amount=amount, currency=currency)
        return cls(amount=parse_decimal(amount), currency=currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(amount=Decimal(0), currency=currency)

    def _require_same_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def add(self, other: Money) -> Money:
        self._require_same_currency(other)
        return Money(ARITHMETIC.add(self.amount, other.amount), self.currency)

    def subtract(self, other: Money) -> Money:
        self._require_same_currency(other)
        return Money(ARITHMETIC.subtract(self.amount, other.amount), self.currency)

    def compare(self, other: Money) -> Literal[-1, 0, 1]:
        """Return -1, 0 or 1 as self is less than, equal to or greater than other."""
        self._require_same_currency(other)
        if self.amount < other.amount:
            return -1
        if self.amount > other.amount:
            return 1
        return 0

    def is_zero(self) -> bool:
        return self.amount.is_zero()

    def to_canonical_string(self) -> str:
        return canonical_decimal(self.amount)

    def to_display(self) -> str:
        return display_decimal(self.amount)

    def to_raw(self) -> str:
        return raw_decimal(self.amount)

    def to_value(self) -> MoneyValue:
        return MoneyValue.from_decimal(self.amount)


def sum_money(values: Iterable[Money], currency: str) -> Money:
    """Sum starting from zero in ``currency``; every value must match it."""
    total = Money.zero(currency)
    for value in values:
        total = total.add(value)
    return total


@dataclass(frozen=True, slots=True)
class MoneyValue:
    """Presentation pair: raw (6 places) and display (2 places) strings."""

    raw: str
    display: str

    @classmethod
    def from_decimal(cls, value: Decimal) -> MoneyValue:
        return cls(raw=raw_decimal(value), display=display_decimal(value))

    def to_dict(self) -> dict[str, str]:
        return {"raw": self.raw, "display": self.display}
