"""Unit conversion between the canonical units an ingredient can be stocked in."""

import enum
from typing import Optional

from .errors import UnsupportedConversion


class Unit(enum.Enum):
    """Closed set of units the ledger knows how to convert."""

    MILLILITER = "ml"
    CENTILITER = "cl"
    LITER = "l"
    GRAM = "g"
    KILOGRAM = "kg"
    PIECE = "pcs"


_ALIASES: dict[str, Unit] = {
    # Volume
    "ml": Unit.MILLILITER,
    "milliliter": Unit.MILLILITER,
    "milliliters": Unit.MILLILITER,
    "millilitre": Unit.MILLILITER,
    "millilitres": Unit.MILLILITER,
    "cl": Unit.CENTILITER,
    "centiliter": Unit.CENTILITER,
    "centiliters": Unit.CENTILITER,
    "centilitre": Unit.CENTILITER,
    "centilitres": Unit.CENTILITER,
    "l": Unit.LITER,
    "liter": Unit.LITER,
    "liters": Unit.LITER,
    "litre": Unit.LITER,
    "litres": Unit.LITER,
    # Weight
    "g": Unit.GRAM,
    "gram": Unit.GRAM,
    "grams": Unit.GRAM,
    "kg": Unit.KILOGRAM,
    "kilogram": Unit.KILOGRAM,
    "kilograms": Unit.KILOGRAM,
    "kilo": Unit.KILOGRAM,
    "kilos": Unit.KILOGRAM,
    # Count
    "pcs": Unit.PIECE,
    "pc": Unit.PIECE,
    "piece": Unit.PIECE,
    "pieces": Unit.PIECE,
    "unit": Unit.PIECE,
    "units": Unit.PIECE,
    "count": Unit.PIECE,
}

# (from, to) -> multiply a value in `from` by this to get `to`.
# Only one direction is stored per pair; the other is derived as 1 / factor.
# Pairs across families are absent: there is no multi-hop path.
_FACTORS: dict[tuple[Unit, Unit], float] = {
    (Unit.LITER, Unit.MILLILITER): 1000,
    (Unit.LITER, Unit.CENTILITER): 100,
    (Unit.CENTILITER, Unit.MILLILITER): 10,
    (Unit.KILOGRAM, Unit.GRAM): 1000,
}


def normalize_unit(token: str) -> str:
    """Case-fold and trim a unit token for comparison."""
    return (token or "").strip().lower()


def parse_unit(token: str) -> Optional[Unit]:
    """Resolve a free-form unit token to a known Unit, or None."""
    return _ALIASES.get(normalize_unit(token))


def same_unit(a: str, b: str) -> bool:
    return normalize_unit(a) == normalize_unit(b)


def convert(value: float, from_unit: str, to_unit: str) -> float:
    """Convert ``value`` from ``from_unit`` into ``to_unit``.

    Identical tokens (case-insensitive) short-circuit, so units outside the
    table still "convert" to themselves. Otherwise a direct factor is tried,
    then the reverse one.

    Raises:
        UnsupportedConversion: either token is unknown, or the two units
            belong to different families.

    Examples:
        >>> convert(2, "kg", "g")
        2000
        >>> convert(250, "ML", "l")
        0.25
    """
    if same_unit(from_unit, to_unit):
        return value

    source = parse_unit(from_unit)
    target = parse_unit(to_unit)
    if source is None or target is None:
        raise UnsupportedConversion(from_unit, to_unit)
    if source is target:
        return value

    factor = _FACTORS.get((source, target))
    if factor is not None:
        return value * factor

    reverse = _FACTORS.get((target, source))
    if reverse is not None:
        return value / reverse

    raise UnsupportedConversion(from_unit, to_unit)
