"""
Scan Value Formulas
===================

Body scan value calculation: base value by body class, terraformable bonus,
first-discovery and mapping multipliers, plus the FSS/DSS estimates stored on
system aggregates.
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   scan_values.py
#
# Connected modules (direct imports):
#   normalization
# ============================================================================

import math
from dataclasses import dataclass, field
from typing import Optional, List

from .normalization import normalize_planet_class, normalize_star_type


# ============================================================================
# CONSTANTS
# ============================================================================

# Lowest FSS base values keyed by canonical star code or planet class
BASE_SCAN_VALUES = {
    # Stars
    "o": 4170,
    "b": 3012,
    "a": 2950,
    "f": 2932,
    "g": 2923,
    "k": 2911,
    "m": 2887,
    "l": 2881,
    "t": 2881,
    "y": 2881,
    "tts": 2900,
    "aebe": 2900,
    "w": 2900,
    "wn": 2900,
    "wnc": 2900,
    "wc": 2900,
    "wo": 2900,
    "cs": 2900,
    "s": 2900,
    "d": 14000,
    "n": 22000,
    "h": 22000,
    "supermassive_black_hole": 22000,
    # Terrestrial
    "earth_like_world": 270000,
    "ammonia_world": 143000,
    "water_world": 99000,
    "metal_rich_body": 31000,
    "high_metal_content_world": 14000,
    "rocky_body": 500,
    "rocky_ice_body": 500,
    "icy_body": 500,
    "rocky_ice_world": 500,
    # Gas giants
    "gas_giant_with_water_based_life": 900,
    "gas_giant_with_ammonia_based_life": 900,
    "class_i_gas_giant": 3800,
    "class_ii_gas_giant": 28000,
    "class_iii_gas_giant": 900,
    "class_iv_gas_giant": 900,
    "class_v_gas_giant": 900,
    "helium_rich_gas_giant": 900,
    "helium_gas_giant": 900,
    "water_giant": 900,
    "water_giant_with_life": 900,
}

DEFAULT_BASE_VALUE = 500

TERRAFORMABLE_BONUS = {
    "high_metal_content_world": 149000,
    "metal_rich_body": 0,
    "rocky_body": 128500,
    "water_world": 169000,
}

FIRST_DISCOVERY_MULTIPLIER = 1.5
DSS_MAPPING_MULTIPLIER = 3.33
FIRST_MAPPED_MULTIPLIER = 1.5
EFFICIENCY_BONUS_MULTIPLIER = 1.1

NO_SCAN_VALUE_BODY_TYPES = ("Belt", "Ring")

HIGH_VALUE_BODY_TYPES = ("earth_like_world", "ammonia_world", "water_world")
HIGH_VALUE_IF_TERRAFORMABLE = ("high_metal_content_world", "rocky_body", "water_world")


def _round(value: float) -> int:
    """Round half up (credits are never banker-rounded in game)"""
    return int(math.floor(value + 0.5))


# ============================================================================
# LOOKUPS
# ============================================================================

def get_base_scan_value(sub_type: Optional[str]) -> int:
    """Base FSS value for a sub-type (planet class first, then star code)"""
    if not sub_type:
        return DEFAULT_BASE_VALUE
    as_planet = normalize_planet_class(sub_type)
    if as_planet in BASE_SCAN_VALUES:
        return BASE_SCAN_VALUES[as_planet]
    as_star = normalize_star_type(sub_type)
    if as_star in BASE_SCAN_VALUES:
        return BASE_SCAN_VALUES[as_star]
    return DEFAULT_BASE_VALUE


def get_terraform_bonus(sub_type: Optional[str]) -> Optional[int]:
    if not sub_type:
        return None
    return TERRAFORMABLE_BONUS.get(normalize_planet_class(sub_type))


def _fss_subtotal(sub_type: Optional[str], terraformable: bool) -> int:
    bonus = get_terraform_bonus(sub_type)
    return get_base_scan_value(sub_type) + (bonus if terraformable and bonus is not None else 0)


# ============================================================================
# CALCULATION
# ============================================================================

@dataclass(frozen=True)
class ScanValueResult:
    """Components of a scan value calculation"""
    base_value: int
    terraform_bonus: int
    subtotal: int
    discovery_multiplier: float
    mapping_multiplier: float
    final_value: int


def calculate_scan_value(
    sub_type: Optional[str],
    terraformable: bool,
    was_discovered: bool,
    was_mapped: bool,
    is_mapped: bool,
) -> ScanValueResult:
    """
    Compute the credit value of a body scan

    Args:
        sub_type: Planet class or star type (journal or canonical)
        terraformable: Body is a terraforming candidate
        was_discovered: Someone else already discovered the body
        was_mapped: Someone else already mapped the body
        is_mapped: The body has been mapped (DSS) by us

    Returns:
        ScanValueResult with the rounded final value
    """
    base_value = get_base_scan_value(sub_type)
    bonus = get_terraform_bonus(sub_type)
    terraform_bonus = bonus if terraformable and bonus is not None else 0
    subtotal = base_value + terraform_bonus

    discovery_multiplier = 1.0 if was_discovered else FIRST_DISCOVERY_MULTIPLIER
    if is_mapped:
        mapping_multiplier = (
            DSS_MAPPING_MULTIPLIER if was_mapped
            else DSS_MAPPING_MULTIPLIER * FIRST_MAPPED_MULTIPLIER
        )
    else:
        mapping_multiplier = 1.0

    return ScanValueResult(
        base_value=base_value,
        terraform_bonus=terraform_bonus,
        subtotal=subtotal,
        discovery_multiplier=discovery_multiplier,
        mapping_multiplier=mapping_multiplier,
        final_value=_round(subtotal * discovery_multiplier * mapping_multiplier),
    )


def estimate_fss_value(sub_type: Optional[str], terraformable: bool, body_type: str) -> int:
    """Lowest FSS-only value with first discovery; 0 for belts and rings"""
    if body_type in NO_SCAN_VALUE_BODY_TYPES:
        return 0
    return _round(_fss_subtotal(sub_type, terraformable) * FIRST_DISCOVERY_MULTIPLIER)


def estimate_dss_value(sub_type: Optional[str], terraformable: bool, body_type: str) -> int:
    """Best-case FSS + DSS value with first discovery and first mapped.

    Stars cannot be mapped, so a star's estimate equals its FSS estimate.
    """
    if body_type in NO_SCAN_VALUE_BODY_TYPES:
        return 0
    subtotal = _fss_subtotal(sub_type, terraformable)
    if body_type == "Star":
        return _round(subtotal * FIRST_DISCOVERY_MULTIPLIER)
    mapping = DSS_MAPPING_MULTIPLIER * FIRST_MAPPED_MULTIPLIER
    return _round(subtotal * FIRST_DISCOVERY_MULTIPLIER * mapping)


def is_high_value(sub_type: Optional[str], terraformable: bool) -> bool:
    canonical = normalize_planet_class(sub_type)
    if canonical in HIGH_VALUE_BODY_TYPES:
        return True
    return terraformable and canonical in HIGH_VALUE_IF_TERRAFORMABLE


# ============================================================================
# BREAKDOWN
# ============================================================================

@dataclass(frozen=True)
class BreakdownLine:
    label: str
    description: str
    value: int


@dataclass
class ScanValueBreakdown:
    body_type_label: str
    formula_summary: str
    lines: List[BreakdownLine] = field(default_factory=list)
    total: int = 0


def get_scan_value_breakdown(
    sub_type: Optional[str],
    terraformable: bool,
    body_type: str,
    body_type_label: str,
) -> Optional[ScanValueBreakdown]:
    """FSS / FD / DSS / FM / efficiency line items for one body (None for belts and rings)"""
    if body_type in NO_SCAN_VALUE_BODY_TYPES:
        return None

    fss = _fss_subtotal(sub_type, terraformable)
    lines = [
        BreakdownLine("FSS", "Base scan value", fss),
        BreakdownLine("FD", "+50% FSS bonus", _round(fss * 0.5)),
    ]

    if body_type != "Star":
        dss = _round(fss * DSS_MAPPING_MULTIPLIER)
        lines.append(BreakdownLine("DSS", f"~{DSS_MAPPING_MULTIPLIER}x FSS value", dss))
        lines.append(BreakdownLine("FM", "+50% DSS bonus", _round(dss * 0.5)))
        lines.append(BreakdownLine("DSS Efficiency", "+10% DSS bonus", _round(dss * 0.1)))

    summary = f"{body_type_label} - {' + '.join(line.label for line in lines)}"
    return ScanValueBreakdown(
        body_type_label=body_type_label,
        formula_summary=summary,
        lines=lines,
        total=sum(line.value for line in lines),
    )
