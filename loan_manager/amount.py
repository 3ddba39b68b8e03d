"""Fixed-point amounts for every balance, loan and increment comparison.

An `Amount` is an integer count of the smallest unit at a fixed scale
(default 8 fractional digits). Comparisons and addition are exact; the
only rounding happens at parse time, in `scale_by_ratio` (half-up) and in
`truncate_to_places` (floor).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .errors import InvalidAmount, ScaleMismatch

DEFAULT_SCALE = 8

_DECIMAL_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

Numeric = Union[str, int, float, Decimal]


def _to_decimal(value: Numeric) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmount(f"Invalid decimal value: {value!r}")
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidAmount(f"Invalid decimal value: {value!r}")
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # repr() is the shortest text that round-trips, so 0.1 parses as 0.1.
        text = repr(value)
        if text in {"nan", "inf", "-inf"}:
            raise InvalidAmount(f"Invalid decimal value: {value!r}")
        return Decimal(text)
    if not isinstance(value, str):
        raise InvalidAmount(f"Invalid decimal value: {value!r}")
    text = value.strip()
    if not _DECIMAL_RE.match(text):
        raise InvalidAmount(f"Invalid decimal value: {value!r}")
    try:
        return Decimal(text)
    except InvalidOperation as e:  # pragma: no cover - regex already filters
        raise InvalidAmount(f"Invalid decimal value: {value!r}") from e


@dataclass(frozen=True)
class Amount:
    units: int
    scale: int = DEFAULT_SCALE

    def __post_init__(self) -> None:
        if self.scale < 0:
            raise ValueError(f"scale must be >= 0, got {self.scale}")

    @classmethod
    def parse(cls, value: Numeric, scale: int = DEFAULT_SCALE) -> "Amount":
        d = _to_decimal(value)
        scaled = (d * (Decimal(10) ** scale)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return cls(units=int(scaled), scale=scale)

    @classmethod
    def zero(cls, scale: int = DEFAULT_SCALE) -> "Amount":
        return cls(units=0, scale=scale)

    def _check_scale(self, other: "Amount") -> None:
        if not isinstance(other, Amount):
            raise TypeError(f"Expected Amount, got {type(other).__name__}")
        if self.scale != other.scale:
            raise ScaleMismatch(f"Cannot combine amounts with scales {self.scale} and {other.scale}")

    def add(self, other: "Amount") -> "Amount":
        self._check_scale(other)
        return Amount(units=self.units + other.units, scale=self.scale)

    def subtract(self, other: "Amount") -> "Amount":
        self._check_scale(other)
        return Amount(units=self.units - other.units, scale=self.scale)

    def compare(self, other: "Amount") -> int:
        """Return -1, 0 or 1."""
        self._check_scale(other)
        return (self.units > other.units) - (self.units < other.units)

    def scale_by_ratio(self, ratio: float) -> "Amount":
        """Multiply by a ratio in [0, 1], rounding half-up on the scaled integer."""
        r = _to_decimal(ratio)
        if r < 0 or r > 1:
            raise ValueError(f"ratio must be within [0, 1], got {ratio!r}")
        scaled = (Decimal(self.units) * r).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return Amount(units=int(scaled), scale=self.scale)

    def truncate_to_places(self, places: int) -> "Amount":
        """Floor to `places` fractional digits; never rounds up."""
        if places < 0:
            raise ValueError(f"places must be >= 0, got {places}")
        if places >= self.scale:
            return self
        step = 10 ** (self.scale - places)
        return Amount(units=(self.units // step) * step, scale=self.scale)

    def is_zero(self) -> bool:
        return self.units == 0

    def __add__(self, other: "Amount") -> "Amount":
        return self.add(other)

    def __sub__(self, other: "Amount") -> "Amount":
        return self.subtract(other)

    def __lt__(self, other: "Amount") -> bool:
        return self.compare(other) < 0

    def __le__(self, other: "Amount") -> bool:
        return self.compare(other) <= 0

    def __gt__(self, other: "Amount") -> bool:
        return self.compare(other) > 0

    def __ge__(self, other: "Amount") -> bool:
        return self.compare(other) >= 0

    def __str__(self) -> str:
        sign = "-" if self.units < 0 else ""
        whole, frac = divmod(abs(self.units), 10 ** self.scale)
        if self.scale == 0 or frac == 0:
            return f"{sign}{whole}"
        frac_text = str(frac).rjust(self.scale, "0").rstrip("0")
        return f"{sign}{whole}.{frac_text}"


def parse_amount(value: Numeric, scale: int = DEFAULT_SCALE) -> Amount:
    return Amount.parse(value, scale=scale)


def min_amount(a: Amount, b: Amount) -> Amount:
    return a if a.compare(b) <= 0 else b


def decimal_places_of(text: str) -> int:
    """Number of fractional digits written in a decimal string ("0.010" -> 3)."""
    _to_decimal(text)
    parts = text.strip().split(".")
    return len(parts[1]) if len(parts) > 1 else 0


__all__ = [
    "Amount",
    "DEFAULT_SCALE",
    "decimal_places_of",
    "min_amount",
    "parse_amount",
]
