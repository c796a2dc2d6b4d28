"""Unit conversion API"""

from typing import Any

from fastapi import APIRouter, Depends, Query

from clinicpos.core.deps import get_current_user
from clinicpos.core.errors import ValidationError
from clinicpos.models.user import User
from clinicpos.services.unit_conversion import (
    UNIT_FAMILIES, BASE_UNITS, convert, get_compatible_units, get_unit_type, normalize_unit
)

router = APIRouter()


@router.get("/")
async def list_units(*, current_user: User = Depends(get_current_user)) -> Any:
    """Unit families with their base unit and conversion factors"""
    return [
        {
            "type": family,
            "base_unit": BASE_UNITS[family],
            "units": [{"name": name, "factor": factor} for name, factor in units.items()]
        }
        for family, units in UNIT_FAMILIES.items()
    ]


@router.get("/convert")
async def convert_units(
    *,
    current_user: User = Depends(get_current_user),
    value: float = Query(...),
    from_unit: str = Query(..., min_length=1),
    to_unit: str = Query(..., min_length=1)) -> Any:
    """Convert a value between two units of the same family"""
    try:
        result = convert(value, from_unit, to_unit)
    except ValueError as e:
        raise ValidationError(str(e))
    return {
        "value": value,
        "from_unit": normalize_unit(from_unit),
        "to_unit": normalize_unit(to_unit),
        "result": result,
        "unit_type": get_unit_type(from_unit)
    }


@router.get("/{unit}/compatible")
async def compatible_units(*, current_user: User = Depends(get_current_user), unit: str) -> Any:
    """Units that `unit` can be converted to"""
    return {"unit": normalize_unit(unit), "unit_type": get_unit_type(unit), "compatible": get_compatible_units(unit)}
