"""
Unit conversion between units of the same family.

Each family converts through a base unit: grams for weight, millilitres
for volume, millimetres for length and pieces for counts.
"""

from typing import Dict, List, Optional

UNIT_FAMILIES: Dict[str, Dict[str, float]] = {
    "weight": {
        "mg": 0.001,
        "g": 1,
        "kg": 1000,
        "lb": 453.592,
        "oz": 28.3495,
    },
    "volume": {
        "ml": 1,
        "l": 1000,
        "fl oz": 29.5735,
        "cup": 236.588,
        "pint": 473.176,
        "quart": 946.353,
        "gallon": 3785.41,
    },
    "length": {
        "mm": 1,
        "cm": 10,
        "m": 1000,
        "in": 25.4,
        "ft": 304.8,
    },
    "count": {
        "piece": 1,
        "pieces": 1,
        "unit": 1,
        "units": 1,
        "dozen": 12,
    },
}

BASE_UNITS = {
    "weight": "g",
    "volume": "ml",
    "length": "mm",
    "count": "piece",
}

_UNIT_INDEX = {
    unit: (family, factor)
    for family, units in UNIT_FAMILIES.items()
    for unit, factor in units.items()
}


def normalize_unit(unit: Optional[str]) -> str:
    return (unit or "").strip().lower()


def is_valid_unit(unit: Optional[str]) -> bool:
    return normalize_unit(unit) in _UNIT_INDEX


def get_unit_type(unit: Optional[str]) -> Optional[str]:
    entry = _UNIT_INDEX.get(normalize_unit(unit))
    return entry[0] if entry else None


def can_convert(from_unit: Optional[str], to_unit: Optional[str]) -> bool:
    from_type = get_unit_type(from_unit)
    return from_type is not None and from_type == get_unit_type(to_unit)


def convert(value: float, from_unit: str, to_unit: str) -> float:
    """
    Convert `value` from one unit to another.

    Raises:
        ValueError: unknown unit, or units of different families
    """
    source = normalize_unit(from_unit)
    target = normalize_unit(to_unit)

    if source not in _UNIT_INDEX:
        raise ValueError(f"Unknown unit: {from_unit}")
    if target not in _UNIT_INDEX:
        raise ValueError(f"Unknown unit: {to_unit}")

    source_type, source_factor = _UNIT_INDEX[source]
    target_type, target_factor = _UNIT_INDEX[target]
    if source_type != target_type:
        raise ValueError(
            f"Cannot convert from {from_unit} ({source_type}) to {to_unit} ({target_type})"
        )

    if source == target:
        return value
    return value * source_factor / target_factor


def get_compatible_units(unit: Optional[str]) -> List[str]:
    """All units of the same family, or [] for unknown units"""
    unit_type = get_unit_type(unit)
    if unit_type is None:
        return []
    return list(UNIT_FAMILIES[unit_type].keys())


def convert_or_same(value: float, from_unit: Optional[str], to_unit: Optional[str]) -> float:
    """
    Convert when both units are known and compatible, otherwise return the
    value unchanged. Used for stock deduction where products may carry
    free-text unit names.
    """
    if not from_unit or not to_unit or normalize_unit(from_unit) == normalize_unit(to_unit):
        return value
    if can_convert(from_unit, to_unit):
        return convert(value, from_unit, to_unit)
    return value
