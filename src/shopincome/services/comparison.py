"""Period-over-period percent change."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from enum import Enum
from typing import Any

from shopincome.core.money import ARITHMETIC

_PERCENT_QUANTUM = Decimal("0.01")


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


@dataclass(frozen=True)
class Delta:
    """``percent_change`` is None when the previous value is zero and the
    current one is not; render it as a dash, never as a number."""

    percent_change: Decimal | None
    direction: Direction

    def to_dict(self) -> dict[str, Any]:
        return {
            "percent_change": (
                float(self.percent_change) if self.percent_change is not None else None
            ),
            "direction": self.direction.value,
        }


def compute_delta(current: Decimal, previous: Decimal) -> Delta:
    """Percent change rounded half-to-even to 2 places.

    The direction follows the rounded value, so a change that rounds to zero
    is flat.
    """
    if previous.is_zero():
        if current.is_zero():
            return Delta(percent_change=Decimal(0), direction=Direction.FLAT)
        direction = Direction.UP if current > 0 else Direction.DOWN
        return Delta(percent_change=None, direction=direction)

    ratio = ARITHMETIC.divide(ARITHMETIC.subtract(current, previous), previous)
    percent = ARITHMETIC.multiply(ratio, Decimal(100)).quantize(
        _PERCENT_QUANTUM, rounding=ROUND_HALF_EVEN
    )
    if percent > 0:
        direction = Direction.UP
    elif percent < 0:
        direction = Direction.DOWN
    else:
        direction = Direction.FLAT
        percent = abs(percent)
    return Delta(percent_change=percent, direction=direction)
