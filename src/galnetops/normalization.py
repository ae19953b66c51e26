"""
Normalization
=============

Standardize journal / upstream strings to canonical keys.

Canonical keys are snake_case for planet classes and species and lowercase
spectral codes for star types. Store and compare canonical keys; convert to
display strings only at the presentation boundary.
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   normalization.py
#
# Connected modules (direct imports):
#   (none)
# ============================================================================

import re
from typing import Optional


# ============================================================================
# PLANET CLASSES
# ============================================================================

PLANET_CLASS_DISPLAY = {
    "metal_rich_body": "Metal Rich Body",
    "high_metal_content_world": "High Metal Content World",
    "rocky_body": "Rocky Body",
    "rocky_ice_body": "Rocky Ice Body",
    "icy_body": "Icy Body",
    "rocky_ice_world": "Rocky Ice World",
    "earth_like_world": "Earth-Like World",
    "ammonia_world": "Ammonia World",
    "water_world": "Water World",
    "water_giant": "Water Giant",
    "water_giant_with_life": "Water Giant with Life",
    "gas_giant_with_water_based_life": "Gas Giant with Water-Based Life",
    "gas_giant_with_ammonia_based_life": "Gas Giant with Ammonia-Based Life",
    "class_i_gas_giant": "Class I Gas Giant",
    "class_ii_gas_giant": "Class II Gas Giant",
    "class_iii_gas_giant": "Class III Gas Giant",
    "class_iv_gas_giant": "Class IV Gas Giant",
    "class_v_gas_giant": "Class V Gas Giant",
    "helium_rich_gas_giant": "Helium Rich Gas Giant",
    "helium_gas_giant": "Helium Gas Giant",
}

CANONICAL_PLANET_CLASSES = tuple(PLANET_CLASS_DISPLAY)

_PLANET_CLASS_ALTERNATES = (
    ("High Metal Content Body", "high_metal_content_world"),
    ("Earthlike body", "earth_like_world"),
    ("Earth-like world", "earth_like_world"),
    ("Rocky ice body", "rocky_ice_body"),
    ("Rocky Ice World", "rocky_ice_world"),
)


def _build_planet_class_map() -> dict:
    mapping = {display.lower(): key for key, display in PLANET_CLASS_DISPLAY.items()}
    for variant, key in _PLANET_CLASS_ALTERNATES:
        mapping.setdefault(variant.lower().strip(), key)
    for key in PLANET_CLASS_DISPLAY:
        mapping.setdefault(key, key)
    return mapping


_PLANET_CLASS_MAP = _build_planet_class_map()
_SUDARSKY_PREFIX = re.compile(r"^sudarsky[\s_]+", re.IGNORECASE)


def normalize_planet_class(value: Optional[str]) -> str:
    """
    Normalize a journal/upstream planet class to its canonical key

    "Sudarsky class IV gas giant" (upstream naming) maps to class_iv_gas_giant.
    Unknown values come back lowercased with spaces and hyphens as underscores.
    """
    if not value:
        return ""

    key = _SUDARSKY_PREFIX.sub("", value.strip()).lower()
    if key in _PLANET_CLASS_MAP:
        return _PLANET_CLASS_MAP[key]

    fuzzy = re.sub(r"\s+", "_", key).replace("-", "_")
    return _PLANET_CLASS_MAP.get(fuzzy, fuzzy or key)


def planet_class_to_display(value: Optional[str]) -> str:
    if not value:
        return ""
    canonical = normalize_planet_class(value)
    return PLANET_CLASS_DISPLAY.get(canonical, value.strip())


# ============================================================================
# STAR TYPES
# ============================================================================

STAR_TYPE_DISPLAY = {
    "o": "O-Class",
    "b": "B-Class",
    "a": "A-Class",
    "f": "F-Class",
    "g": "G-Class",
    "k": "K-Class",
    "m": "M-Class (Red dwarf)",
    "l": "L-Class (Brown dwarf)",
    "t": "T-Class (Brown dwarf)",
    "y": "Y-Class (Brown dwarf)",
    "tts": "T Tauri Star",
    "aebe": "Herbig Ae/Be",
    "w": "Wolf-Rayet",
    "wn": "Wolf-Rayet (Nitrogen)",
    "wnc": "Wolf-Rayet (Nitrogen/Carbon)",
    "wc": "Wolf-Rayet (Carbon)",
    "wo": "Wolf-Rayet (Oxygen)",
    "cs": "Carbon Star",
    "c": "Carbon Star",
    "cn": "Carbon (Nitrogen)",
    "cj": "Carbon (J-type)",
    "ch": "Carbon (Hydrogen)",
    "chd": "Carbon (Hydrogen/Dwarf)",
    "ms": "M-S Transition Star",
    "s": "S-Type Star",
    "d": "White Dwarf",
    "da": "White Dwarf (Hydrogen)",
    "dab": "White Dwarf (Hydrogen/Helium)",
    "dao": "White Dwarf (Hydrogen/Oxygen)",
    "dav": "White Dwarf (Pulsating)",
    "daz": "White Dwarf (Metal-polluted)",
    "db": "White Dwarf (Helium)",
    "dbv": "White Dwarf (Helium Variable)",
    "dbz": "White Dwarf (Helium/Metal)",
    "dc": "White Dwarf (Continuous Spectrum)",
    "dcv": "White Dwarf (Cool Variable)",
    "do": "White Dwarf (Hot Helium)",
    "dov": "White Dwarf (Hot Variable)",
    "dq": "White Dwarf (Carbon)",
    "dx": "White Dwarf (Unclassified)",
    "n": "Neutron Star",
    "h": "Black Hole",
    "supermassive_black_hole": "Supermassive Black Hole",
}

_STAR_TYPE_VARIANTS = (
    ("Star", "g"),  # generic fallback
    ("O (Blue-White) Star", "o"),
    ("B (Blue-White) Star", "b"),
    ("A (Blue-White) Star", "a"),
    ("F (White) Star", "f"),
    ("G (White-Yellow) Star", "g"),
    ("K (Yellow-Orange) Star", "k"),
    ("M (Red dwarf) Star", "m"),
    ("L (Brown dwarf) Star", "l"),
    ("T (Brown dwarf) Star", "t"),
    ("Y (Brown dwarf) Star", "y"),
    ("T Tauri Star", "tts"),
    ("Herbig Ae/Be Star", "aebe"),
    ("Wolf-Rayet Star", "w"),
    ("Wolf-Rayet WN Star", "wn"),
    ("Wolf-Rayet WNC Star", "wnc"),
    ("Wolf-Rayet WC Star", "wc"),
    ("Wolf-Rayet WO Star", "wo"),
    ("Carbon Star", "cs"),
    ("S-Type Star", "s"),
    ("White Dwarf", "d"),
    ("Neutron Star", "n"),
    ("Black Hole", "h"),
    ("Supermassive Black Hole", "supermassive_black_hole"),
)

_STAR_TYPE_MAP = {variant.lower(): code for variant, code in _STAR_TYPE_VARIANTS}
for _code in "obafgkmltynhdwsc":
    _STAR_TYPE_MAP.setdefault(_code, _code)

_SPECTRAL_LETTER = re.compile(r"\b([obafgkmltys])\b")
_DWARF_SUBTYPE = re.compile(r"\bd([a-z]*)")


def normalize_star_type(value: Optional[str]) -> str:
    """
    Normalize a journal/upstream star type to its canonical code

    Extracts the spectral letter from strings like "K (Yellow-Orange) Star";
    journal codes such as "DA" or "TTS" map to lowercase codes.
    """
    if not value:
        return ""

    key = value.strip().lower()
    if key in _STAR_TYPE_MAP:
        return _STAR_TYPE_MAP[key]
    if key in STAR_TYPE_DISPLAY:
        return key

    letter = _SPECTRAL_LETTER.search(key)
    if letter:
        return letter.group(1)

    if re.search(r"neutron|n\s*class", key):
        return "n"

    if re.search(r"wolf-?rayet|w\s*class", key):
        if "wnc" in key:
            return "wnc"
        if re.search(r"wn\b", key):
            return "wn"
        if "wc" in key:
            return "wc"
        if "wo" in key:
            return "wo"
        return "w"

    if re.search(r"white\s*dwarf|d\s*class", key):
        dwarf = _DWARF_SUBTYPE.search(key)
        if dwarf and ("d" + dwarf.group(1)) in STAR_TYPE_DISPLAY:
            return "d" + dwarf.group(1)
        return "d"

    if re.search(r"t\s*tauri|tts", key):
        return "tts"
    if re.search(r"herbig|ae/be", key):
        return "aebe"
    if re.search(r"carbon\s*star|cs", key):
        return "cs"
    if re.search(r"s-?type", key):
        return "s"
    if re.search(r"black\s*hole|supermassive", key):
        return "supermassive_black_hole" if "supermassive" in key else "h"

    return re.sub(r"\s+", "_", key)


def star_type_to_display(value: Optional[str]) -> str:
    if not value:
        return ""
    return STAR_TYPE_DISPLAY.get(normalize_star_type(value), value.strip())


# ============================================================================
# BODY TYPE / SPECIES
# ============================================================================

BODY_TYPES = ("Star", "Planet", "Moon", "Belt", "Ring")


def normalize_body_type(value: Optional[str]) -> str:
    """Normalize casing of a body type; empty input means Planet"""
    if not value:
        return "Planet"
    stripped = value.strip()
    for body_type in BODY_TYPES:
        if stripped.lower() == body_type.lower():
            return body_type
    return stripped


def normalize_sub_type(body_type: str, value: Optional[str]) -> str:
    """Canonical sub-type for a body: star code for stars, planet class otherwise"""
    if body_type == "Star":
        return normalize_star_type(value)
    return normalize_planet_class(value)


def normalize_species_name(value: Optional[str]) -> str:
    """"Aleoida Arcus" -> "aleoida_arcus" """
    if not value:
        return ""
    key = re.sub(r"\s+", "_", value.strip().lower())
    return re.sub(r"[^a-z0-9_]", "", key)


def species_to_display(value: Optional[str]) -> str:
    if not value:
        return ""
    stripped = value.strip()
    if " " in stripped:
        return stripped
    return " ".join(word.capitalize() for word in stripped.split("_"))
