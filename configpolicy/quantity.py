"""Parsing and comparison of resource quantities such as ``1Gi`` or ``500m``."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import (
    MAX_EMAX,
    MIN_EMIN,
    ROUND_UP,
    Context,
    Decimal,
    DecimalException,
    Inexact,
    InvalidOperation,
    Overflow,
    Underflow,
)
from enum import Enum
from functools import total_ordering

__all__ = ["QuantityError", "QuantityFormat", "Quantity", "parse_quantity"]


class QuantityError(ValueError):
    """Raised when a string is not a valid quantity."""


class QuantityFormat(str, Enum):
    """The notation a quantity was written in."""

    DECIMAL_SI = "DecimalSI"
    BINARY_SI = "BinarySI"
    DECIMAL_EXPONENT = "DecimalExponent"


_BINARY_SUFFIXES = {"Ki": 10, "Mi": 20, "Gi": 30, "Ti": 40, "Pi": 50, "Ei": 60}
_DECIMAL_SUFFIXES = {
    "n": -9,
    "u": -6,
    "m": -3,
    "": 0,
    "k": 3,
    "M": 6,
    "G": 9,
    "T": 12,
    "P": 15,
    "E": 18,
}

_PATTERN = re.compile(
    r"([+-]?)([0-9]+(?:\.[0-9]*)?|\.[0-9]+)"
    r"([eE][+-]?[0-9]+|Ki|Mi|Gi|Ti|Pi|Ei|[numkMGTPE]?)"
)

_MAX_ALLOWED = Decimal((1 << 63) - 1)
_NANO = Decimal("1e-9")
_FORMAT_ERROR = (
    "quantities must match the regular expression "
    "'^([+-]?[0-9.]+)([eEinumkKMGTP]*[-+]?[0-9]*)$'"
)


def _exact_context(precision: int) -> Context:
    return Context(
        prec=max(precision, 1),
        Emax=MAX_EMAX,
        Emin=MIN_EMIN,
        traps=[InvalidOperation, Inexact, Overflow, Underflow],
    )


@total_ordering
@dataclass(frozen=True, eq=False)
class Quantity:
    """An exact amount together with the notation it was parsed from.

    Two quantities are equal when their amounts are equal, whatever the notation.
    """

    amount: Decimal
    format: QuantityFormat = QuantityFormat.DECIMAL_SI

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Quantity):
            return NotImplemented
        return self.amount == other.amount

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Quantity):
            return NotImplemented
        return self.amount < other.amount

    def __hash__(self) -> int:
        return hash(self.amount)


def parse_quantity(text: str) -> Quantity:
    """Parse a quantity string, raising QuantityError if it is malformed.

    Non-zero amounts finer than one nano-unit are rounded away from zero, and
    binary amounts are capped at the largest signed 64-bit integer.
    """
    if not isinstance(text, str) or not text:
        raise QuantityError(_FORMAT_ERROR)

    match = _PATTERN.fullmatch(text)
    if match is None:
        raise QuantityError(_FORMAT_ERROR)

    sign, number, suffix = match.groups()
    context = _exact_context(len(number) + 64)

    try:
        amount = Decimal(number)
        if suffix in _BINARY_SUFFIXES:
            fmt = QuantityFormat.BINARY_SI
            amount = context.multiply(amount, Decimal(1 << _BINARY_SUFFIXES[suffix]))
        elif len(suffix) > 1 and suffix[0] in "eE":
            fmt = QuantityFormat.DECIMAL_EXPONENT
            amount = amount.scaleb(int(suffix[1:]), context)
        else:
            fmt = QuantityFormat.DECIMAL_SI
            amount = amount.scaleb(_DECIMAL_SUFFIXES[suffix], context)

        if amount != 0 and amount.as_tuple().exponent < -9:
            rounding = Context(
                prec=max(amount.adjusted() + 12, 2),
                Emax=MAX_EMAX,
                Emin=MIN_EMIN,
                rounding=ROUND_UP,
            )
            amount = amount.quantize(_NANO, context=rounding)
    except (DecimalException, ValueError) as exc:
        raise QuantityError(_FORMAT_ERROR) from exc

    if fmt is QuantityFormat.BINARY_SI and amount > _MAX_ALLOWED:
        amount = _MAX_ALLOWED

    if fmt is QuantityFormat.BINARY_SI and 0 < amount < 1:
        fmt = QuantityFormat.DECIMAL_SI

    if amount == 0:
        amount = Decimal(0)
    elif sign == "-":
        amount = -amount

    return Quantity(amount, fmt)