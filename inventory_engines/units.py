"""
Module: inventory_engines.units
Responsibility:
    Convert quantities between units of measure of the same dimension
    (mass, volume, length, count).

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conversions never cross dimensions (kg -> L raises).
    - Decimal arithmetic only; factors are exact.

Failure modes:
    - UnitConversionError for unknown units or incompatible dimensions.
"""

from __future__ import annotations

from decimal import Decimal
from typing import NamedTuple

from inventory_kernel.exceptions import UnitConversionError


class Unit(NamedTuple):
    dimension: str
    factor: Decimal  # multiples of the dimension's base unit


# Base units: g, ml, m, pcs
UNITS: dict[str, Unit] = {
    "mg": Unit("mass", Decimal("0.001")),
    "g": Unit("mass", Decimal("1")),
    "kg": Unit("mass", Decimal("1000")),
    "t": Unit("mass", Decimal("1000000")),
    "ml": Unit("volume", Decimal("1")),
    "cl": Unit("volume", Decimal("10")),
    "l": Unit("volume", Decimal("1000")),
    "mm": Unit("length", Decimal("0.001")),
    "cm": Unit("length", Decimal("0.01")),
    "m": Unit("length", Decimal("1")),
    "km": Unit("length", Decimal("1000")),
    "pcs": Unit("count", Decimal("1")),
    "dz": Unit("count", Decimal("12")),
}

_ALIASES = {
    "ea": "pcs",
    "pc": "pcs",
    "unit": "pcs",
    "units": "pcs",
    "litre": "l",
    "liter": "l",
}


def normalize_unit(unit: str) -> str:
    key = unit.strip().lower()
    return _ALIASES.get(key, key)


def dimension_of(unit: str) -> str:
    found = UNITS.get(normalize_unit(unit))
    if found is None:
        raise UnitConversionError(unit, unit)
    return found.dimension


def are_compatible(from_unit: str, to_unit: str) -> bool:
    a = UNITS.get(normalize_unit(from_unit))
    b = UNITS.get(normalize_unit(to_unit))
    return a is not None and b is not None and a.dimension == b.dimension


def convert(quantity: Decimal, from_unit: str, to_unit: str) -> Decimal:
    """Express ``quantity`` of ``from_unit`` in ``to_unit``.

    Identical unit names convert trivially even when they are not in the
    table, so products with house units still explode.
    """
    src, dst = normalize_unit(from_unit), normalize_unit(to_unit)
    if src == dst:
        return quantity
    a, b = UNITS.get(src), UNITS.get(dst)
    if a is None or b is None or a.dimension != b.dimension:
        raise UnitConversionError(from_unit, to_unit)
    return quantity * a.factor / b.factor
