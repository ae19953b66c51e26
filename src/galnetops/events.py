"""
Journal Event Model
===================

Typed representations of the journal event vocabulary and pure
parsing/classification helpers.

Benefits:
- One frozen dataclass per event kind (closed set, exhaustive dispatch)
- Unknown kinds fall into UnknownEvent instead of being force-cast
- Body-type inference and parent extraction with no I/O
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   events.py
#
# Connected modules (direct imports):
#   errors
#
# Notes:
#   - `raw` on every event is the decoded journal object. It is kept for
#     the opaque body snapshot and is never authoritative.
#   - Field names are snake_case; journal keys are PascalCase.
# ============================================================================

# ============================================================================
# IMPORTS
# ============================================================================

import json
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Tuple, ClassVar

from .errors import EventParseError


# ============================================================================
# FIELD HELPERS
# ============================================================================

_MISSING = object()


def _required(raw: Dict[str, Any], key: str, kind: type = object):
    value = raw.get(key, _MISSING)
    if value is _MISSING or value is None:
        raise EventParseError(
            f"{raw.get('event')}: missing field {key}",
            context={"event": raw.get("event"), "field": key}
        )
    if kind is int and isinstance(value, bool):
        raise EventParseError(
            f"{raw.get('event')}: field {key} is not an integer",
            context={"event": raw.get("event"), "field": key}
        )
    if kind is int and isinstance(value, float) and value.is_integer():
        value = int(value)
    if kind is float and isinstance(value, int) and not isinstance(value, bool):
        value = float(value)
    if kind is not object and not isinstance(value, kind):
        raise EventParseError(
            f"{raw.get('event')}: field {key} has type {type(value).__name__}",
            context={"event": raw.get("event"), "field": key}
        )
    return value


def _optional(raw: Dict[str, Any], key: str, default=None):
    value = raw.get(key)
    return default if value is None else value


def _localised(raw: Dict[str, Any], key: str) -> Optional[str]:
    """Prefer `<key>_Localised`, fall back to `<key>` (empty strings count as missing)"""
    return raw.get(f"{key}_Localised") or raw.get(key) or None


def _star_pos(raw: Dict[str, Any]) -> Tuple[float, float, float]:
    pos = raw.get("StarPos")
    if not isinstance(pos, (list, tuple)) or len(pos) != 3:
        return (0.0, 0.0, 0.0)
    return (float(pos[0]), float(pos[1]), float(pos[2]))


# ============================================================================
# BASE EVENT
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class JournalEvent:
    """Common header for every journal event"""
    name: ClassVar[str] = ""

    timestamp: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "JournalEvent":
        return cls(timestamp=str(raw.get("timestamp") or ""), raw=raw, **cls._parse_fields(raw))

    @classmethod
    def _parse_fields(cls, raw: Dict[str, Any]) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True, kw_only=True)
class UnknownEvent(JournalEvent):
    """Any event kind outside the known vocabulary (ignored by handlers)"""
    event: str


# ============================================================================
# SESSION EVENTS
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class Fileheader(JournalEvent):
    name: ClassVar[str] = "Fileheader"

    part: int = 1
    game_version: Optional[str] = None
    odyssey: bool = False
    language: Optional[str] = None

    @classmethod
    def _parse_fields(cls, raw):
        return {
            "part": int(_optional(raw, "part", 1)),
            "game_version": raw.get("gameversion"),
            "odyssey": bool(raw.get("Odyssey", False)),
            "language": raw.get("language"),
        }


@dataclass(frozen=True, kw_only=True)
class LoadGame(JournalEvent):
    name: ClassVar[str] = "LoadGame"

    commander: str
    game_mode: Optional[str] = None
    ship: Optional[str] = None
    ship_name: Optional[str] = None
    ship_ident: Optional[str] = None
    credits: int = 0
    loan: int = 0
    odyssey: bool = False
    horizons: bool = False

    @classmethod
    def _parse_fields(cls, raw):
        return {
            "commander": _required(raw, "Commander", str),
            "game_mode": raw.get("GameMode"),
            "ship": _localised(raw, "Ship"),
            "ship_name": raw.get("ShipName") or None,
            "ship_ident": raw.get("ShipIdent") or None,
            "credits": int(_optional(raw, "Credits", 0)),
            "loan": int(_optional(raw, "Loan", 0)),
            "odyssey": bool(raw.get("Odyssey", False)),
            "horizons": bool(raw.get("Horizons", False)),
        }


@dataclass(frozen=True, kw_only=True)
class Continued(JournalEvent):
    name: ClassVar[str] = "Continued"

    part: int

    @classmethod
    def _parse_fields(cls, raw):
        return {"part": _required(raw, "Part", int)}


@dataclass(frozen=True, kw_only=True)
class Shutdown(JournalEvent):
    name: ClassVar[str] = "Shutdown"


_RANK_KEYS = (
    ("combat", "Combat"),
    ("trade", "Trade"),
    ("explore", "Explore"),
    ("soldier", "Soldier"),
    ("exobiologist", "Exobiologist"),
    ("empire", "Empire"),
    ("federation", "Federation"),
    ("cqc", "CQC"),
)


def _rank_fields(raw) -> Dict[str, Optional[int]]:
    return {attr: raw.get(key) for attr, key in _RANK_KEYS}


@dataclass(frozen=True, kw_only=True)
class Rank(JournalEvent):
    name: ClassVar[str] = "Rank"

    combat: Optional[int] = None
    trade: Optional[int] = None
    explore: Optional[int] = None
    soldier: Optional[int] = None
    exobiologist: Optional[int] = None
    empire: Optional[int] = None
    federation: Optional[int] = None
    cqc: Optional[int] = None

    @classmethod
    def _parse_fields(cls, raw):
        return _rank_fields(raw)

    def values(self) -> Dict[str, Optional[int]]:
        return {attr: getattr(self, attr) for attr, _ in _RANK_KEYS}


@dataclass(frozen=True, kw_only=True)
class Progress(Rank):
    """Percent progress towards the next rank in each category"""
    name: ClassVar[str] = "Progress"


@dataclass(frozen=True, kw_only=True)
class Promotion(Rank):
    """Carries only the categories that changed"""
    name: ClassVar[str] = "Promotion"


@dataclass(frozen=True, kw_only=True)
class Reputation(JournalEvent):
    name: ClassVar[str] = "Reputation"

    empire: Optional[float] = None
    federation: Optional[float] = None
    alliance: Optional[float] = None
    independent: Optional[float] = None

    @classmethod
    def _parse_fields(cls, raw):
        return {
            "empire": raw.get("Empire"),
            "federation": raw.get("Federation"),
            "alliance": raw.get("Alliance"),
            "independent": raw.get("Independent"),
        }


@dataclass(frozen=True, kw_only=True)
class Powerplay(JournalEvent):
    name: ClassVar[str] = "Powerplay"

    power: Optional[str] = None
    rank: Optional[int] = None
    merits: Optional[int] = None
    time_pledged: Optional[int] = None

    @classmethod
    def _parse_fields(cls, raw):
        return {
            "power": raw.get("Power"),
            "rank": raw.get("Rank"),
            "merits": raw.get("Merits"),
            "time_pledged": raw.get("TimePledged"),
        }


# ============================================================================
# NAVIGATION EVENTS
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class LocationEvent(JournalEvent):
    """Base for events that place the player in a system"""
    star_system: str
    system_address: int
    star_pos: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    @classmethod
    def _parse_fields(cls, raw):
        return {
            "star_system": _required(raw, "StarSystem", str),
            "system_address": _required(raw, "SystemAddress", int),
            "star_pos": _star_pos(raw),
        }


@dataclass(frozen=True, kw_only=True)
class Location(LocationEvent):
    name: ClassVar[str] = "Location"

    docked: bool = False
    station_name: Optional[str] = None
    market_id: Optional[int] = None
    body: Optional[str] = None
    body_id: Optional[int] = None

    @classmethod
    def _parse_fields(cls, raw):
        fields = super()._parse_fields(raw)
        fields.update({
            "docked": bool(raw.get("Docked", False)),
            "station_name": raw.get("StationName"),
            "market_id": raw.get("MarketID"),
            "body": raw.get("Body"),
            "body_id": raw.get("BodyID"),
        })
        return fields


@dataclass(frozen=True, kw_only=True)
class FSDJump(LocationEvent):
    name: ClassVar[str] = "FSDJump"

    jump_dist: Optional[float] = None
    fuel_used: Optional[float] = None

    @classmethod
    def _parse_fields(cls, raw):
        fields = super()._parse_fields(raw)
        fields.update({
            "jump_dist": raw.get("JumpDist"),
            "fuel_used": raw.get("FuelUsed"),
        })
        return fields


@dataclass(frozen=True, kw_only=True)
class CarrierJump(LocationEvent):
    name: ClassVar[str] = "CarrierJump"

    station_name: Optional[str] = None
    market_id: Optional[int] = None
    docked: bool = False
    on_foot: bool = False

    @classmethod
    def _parse_fields(cls, raw):
        fields = super()._parse_fields(raw)
        fields.update({
            "station_name": raw.get("StationName"),
            "market_id": raw.get("MarketID"),
            "docked": bool(raw.get("Docked", False)),
            "on_foot": bool(raw.get("OnFoot", False)),
        })
        return fields


@dataclass(frozen=True, kw_only=True)
class FSSDiscoveryScan(JournalEvent):
    name: ClassVar[str] = "FSSDiscoveryScan"

    system_address: int
    system_name: Optional[str] = None
    body_count: int = 0
    progress: Optional[float] = None

    @classmethod
    def _parse_fields(cls, raw):
        return {
            "system_address": _required(raw, "SystemAddress", int),
            "system_name": raw.get("SystemName"),
            "body_count": int(_optional(raw, "BodyCount", 0)),
            "progress": raw.get("Progress"),
        }


@dataclass(frozen=True, kw_only=True)
class FSSAllBodiesFound(JournalEvent):
    name: ClassVar[str] = "FSSAllBodiesFound"

    system_address: int
    system_name: Optional[str] = None
    count: int = 0

    @classmethod
    def _parse_fields(cls, raw):
        return {
            "system_address": _required(raw, "SystemAddress", int),
            "system_name": raw.get("SystemName"),
            "count": int(_optional(raw, "Count", 0)),
        }


@dataclass(frozen=True)
class RouteStop:
    star_system: str
    system_address: Optional[int]
    star_pos: Tuple[float, float, float]
    star_class: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "StarSystem": self.star_system,
            "SystemAddress": self.system_address,
            "StarPos": list(self.star_pos),
            "StarClass": self.star_class,
        }


@dataclass(frozen=True, kw_only=True)
class NavRoute(JournalEvent):
    name: ClassVar[str] = "NavRoute"

    route: Tuple[RouteStop, ...] = ()

    @classmethod
    def _parse_fields(cls, raw):
        stops = []
        for entry in raw.get("Route") or []:
            if not isinstance(entry, dict) or not entry.get("StarSystem"):
                continue
            stops.append(RouteStop(
                star_system=entry["StarSystem"],
                system_address=entry.get("SystemAddress"),
                star_pos=_star_pos(entry),
                star_class=entry.get("StarClass"),
            ))
        return {"route": tuple(stops)}


@dataclass(frozen=True, kw_only=True)
class NavRouteClear(JournalEvent):
    name: ClassVar[str] = "NavRouteClear"


# ============================================================================
# SURFACE EVENTS
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class Touchdown(JournalEvent):
    name: ClassVar[str] = "Touchdown"

    player_controlled: bool = True
    body: Optional[str] = None
    body_id: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    star_system: Optional[str] = None
    system_address: Optional[int] = None
    nearest_destination: Optional[str] = None

    @classmethod
    def _parse_fields(cls, raw):
        return {
            "player_controlled": bool(raw.get("PlayerControlled", True)),
            "body": raw.get("Body"),
            "body_id": raw.get("BodyID"),
            "latitude": raw.get("Latitude"),
            "longitude": raw.get("Longitude"),
            "star_system": raw.get("StarSystem"),
            "system_address": raw.get("SystemAddress"),
            "nearest_destination": _localised(raw, "NearestDestination"),
        }


@dataclass(frozen=True, kw_only=True)
class Liftoff(Touchdown):
    name: ClassVar[str] = "Liftoff"


@dataclass(frozen=True, kw_only=True)
class Disembark(JournalEvent):
    name: ClassVar[str] = "Disembark"

    srv: bool = False
    on_station: bool = False
    on_planet: bool = False
    body: Optional[str] = None
    body_id: Optional[int] = None
    star_system: Optional[str] = None
    system_address: Optional[int] = None

    @classmethod
    def _parse_fields(cls, raw):
        return {
            "srv": bool(raw.get("SRV", False)),
            "on_station": bool(raw.get("OnStation", False)),
            "on_planet": bool(raw.get("OnPlanet", False)),
            "body": raw.get("Body"),
            "body_id": raw.get("BodyID"),
            "star_system": raw.get("StarSystem"),
            "system_address": raw.get("SystemAddress"),
        }


# ============================================================================
# SCAN EVENTS
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class Scan(JournalEvent):
    """Body scan; physical attributes beyond these stay in `raw`"""
    name: ClassVar[str] = "Scan"

    body_name: str
    body_id: int
    system_address: int
    star_system: Optional[str] = None
    scan_type: Optional[str] = None
    distance_from_arrival_ls: Optional[float] = None
    star_type: Optional[str] = None
    planet_class: Optional[str] = None
    terraform_state: Optional[str] = None
    parents: Tuple[Tuple[str, int], ...] = ()
    mass: Optional[float] = None
    radius: Optional[float] = None
    surface_gravity: Optional[float] = None
    temperature: Optional[float] = None
    atmosphere_type: Optional[str] = None
    volcanism: Optional[str] = None
    landable: bool = False
    was_discovered: bool = False
    was_mapped: bool = False
    was_footfalled: bool = False
    semi_major_axis: Optional[float] = None

    @classmethod
    def _parse_fields(cls, raw):
        parents = []
        for entry in raw.get("Parents") or []:
            if isinstance(entry, dict) and entry:
                kind, ident = next(iter(entry.items()))
                parents.append((str(kind), ident))

        mass = raw.get("MassEM")
        if mass is None:
            mass = raw.get("StellarMass")
        temperature = raw.get("SurfaceTemperature")
        if temperature is None:
            temperature = raw.get("StellarSurfaceTemperature")

        return {
            "body_name": _required(raw, "BodyName", str),
            "body_id": _required(raw, "BodyID", int),
            "system_address": _required(raw, "SystemAddress", int),
            "star_system": raw.get("StarSystem"),
            "scan_type": raw.get("ScanType"),
            "distance_from_arrival_ls": raw.get("DistanceFromArrivalLS"),
            "star_type": raw.get("StarType") or None,
            "planet_class": raw.get("PlanetClass") or None,
            "terraform_state": raw.get("TerraformState") or None,
            "parents": tuple(parents),
            "mass": mass,
            "radius": raw.get("Radius"),
            "surface_gravity": raw.get("SurfaceGravity"),
            "temperature": temperature,
            "atmosphere_type": raw.get("AtmosphereType"),
            "volcanism": raw.get("Volcanism"),
            "landable": bool(raw.get("Landable", False)),
            "was_discovered": bool(raw.get("WasDiscovered", False)),
            "was_mapped": bool(raw.get("WasMapped", False)),
            "was_footfalled": bool(raw.get("WasFootfalled", False)),
            "semi_major_axis": raw.get("SemiMajorAxis"),
        }

    @property
    def is_detailed(self) -> bool:
        return self.scan_type == "Detailed"

    @property
    def terraformable(self) -> bool:
        return self.terraform_state == "Terraformable"

    @property
    def raw_sub_type(self) -> str:
        return self.star_type or self.planet_class or ""

    @property
    def gravity_g(self) -> Optional[float]:
        """Surface gravity in g (journal reports m/s^2)"""
        return self.surface_gravity / 9.81 if self.surface_gravity else None


@dataclass(frozen=True, kw_only=True)
class SAAScanComplete(JournalEvent):
    name: ClassVar[str] = "SAAScanComplete"

    body_name: Optional[str] = None
    body_id: int
    system_address: int
    probes_used: Optional[int] = None
    efficiency_target: Optional[int] = None

    @classmethod
    def _parse_fields(cls, raw):
        return {
            "body_name": raw.get("BodyName"),
            "body_id": _required(raw, "BodyID", int),
            "system_address": _required(raw, "SystemAddress", int),
            "probes_used": raw.get("ProbesUsed"),
            "efficiency_target": raw.get("EfficiencyTarget"),
        }


@dataclass(frozen=True)
class Signal:
    type: str
    count: int
    type_localised: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class BodySignalsEvent(JournalEvent):
    """Base for FSSBodySignals and SAASignalsFound"""
    body_name: str = ""
    body_id: int
    system_address: int
    signals: Tuple[Signal, ...] = ()

    @classmethod
    def _parse_fields(cls, raw):
        signals = []
        for entry in raw.get("Signals") or []:
            if not isinstance(entry, dict) or "Type" not in entry:
                continue
            signals.append(Signal(
                type=str(entry["Type"]),
                count=int(entry.get("Count") or 0),
                type_localised=entry.get("Type_Localised"),
            ))
        return {
            "body_name": raw.get("BodyName") or "",
            "body_id": _required(raw, "BodyID", int),
            "system_address": _required(raw, "SystemAddress", int),
            "signals": tuple(signals),
        }


@dataclass(frozen=True, kw_only=True)
class FSSBodySignals(BodySignalsEvent):
    name: ClassVar[str] = "FSSBodySignals"


@dataclass(frozen=True, kw_only=True)
class SAASignalsFound(BodySignalsEvent):
    name: ClassVar[str] = "SAASignalsFound"

    genuses: Tuple[str, ...] = ()

    @classmethod
    def _parse_fields(cls, raw):
        fields = super()._parse_fields(raw)
        names = []
        for entry in raw.get("Genuses") or []:
            if isinstance(entry, dict):
                genus = _localised(entry, "Genus")
                if genus:
                    names.append(genus)
        fields["genuses"] = tuple(names)
        return fields


@dataclass(frozen=True, kw_only=True)
class ScanOrganic(JournalEvent):
    name: ClassVar[str] = "ScanOrganic"

    scan_type: str
    genus: str
    species: str
    variant: Optional[str] = None
    system_address: int
    body: int

    @classmethod
    def _parse_fields(cls, raw):
        genus = _localised(raw, "Genus")
        species = _localised(raw, "Species")
        if not genus or not species:
            raise EventParseError(
                "ScanOrganic: missing genus or species",
                context={"event": "ScanOrganic"}
            )
        return {
            "scan_type": _required(raw, "ScanType", str),
            "genus": genus,
            "species": species,
            "variant": _localised(raw, "Variant"),
            "system_address": _required(raw, "SystemAddress", int),
            "body": _required(raw, "Body", int),
        }


@dataclass(frozen=True, kw_only=True)
class CodexEntry(JournalEvent):
    name: ClassVar[str] = "CodexEntry"

    entry_id: int
    entry_name: str
    category: Optional[str] = None
    sub_category: Optional[str] = None
    region: Optional[str] = None
    system: Optional[str] = None
    system_address: Optional[int] = None
    body_id: Optional[int] = None
    is_new_entry: bool = False
    new_traits_discovered: bool = False
    voucher_amount: int = 0

    @classmethod
    def _parse_fields(cls, raw):
        entry_name = _localised(raw, "Name")
        if not entry_name:
            raise EventParseError("CodexEntry: missing Name", context={"event": "CodexEntry"})
        return {
            "entry_id": _required(raw, "EntryID", int),
            "entry_name": entry_name,
            "category": _localised(raw, "Category"),
            "sub_category": _localised(raw, "SubCategory"),
            "region": _localised(raw, "Region"),
            "system": raw.get("System"),
            "system_address": raw.get("SystemAddress"),
            "body_id": raw.get("BodyID"),
            "is_new_entry": bool(raw.get("IsNewEntry", False)),
            "new_traits_discovered": bool(raw.get("NewTraitsDiscovered", False)),
            "voucher_amount": int(_optional(raw, "VoucherAmount", 0)),
        }


# ============================================================================
# REGISTRY / PARSING
# ============================================================================

EVENT_TYPES: Dict[str, type] = {
    cls.name: cls for cls in (
        Fileheader, LoadGame, Continued, Shutdown,
        Location, FSDJump, CarrierJump, FSSDiscoveryScan, FSSAllBodiesFound,
        NavRoute, NavRouteClear,
        Touchdown, Liftoff, Disembark,
        Scan, SAAScanComplete, FSSBodySignals, SAASignalsFound, ScanOrganic, CodexEntry,
        Rank, Progress, Reputation, Powerplay, Promotion,
    )
}


def parse_event(obj: Any) -> JournalEvent:
    """
    Build the typed event for a decoded journal object

    Args:
        obj: Decoded JSON value

    Returns:
        Typed event; UnknownEvent for kinds outside the vocabulary

    Raises:
        EventParseError: Not an object, no `event` discriminator, or a
            required field is missing/mistyped
    """
    if not isinstance(obj, dict):
        raise EventParseError("Journal entry is not an object", context={"type": type(obj).__name__})
    kind = obj.get("event")
    if not isinstance(kind, str) or not kind:
        raise EventParseError("Journal entry has no event discriminator")

    event_cls = EVENT_TYPES.get(kind)
    if event_cls is None:
        return UnknownEvent(timestamp=str(obj.get("timestamp") or ""), raw=obj, event=kind)

    try:
        return event_cls.from_raw(obj)
    except (TypeError, ValueError) as e:
        raise EventParseError(f"{kind}: {e}", context={"event": kind}) from e


def parse_line(line: str) -> Optional[JournalEvent]:
    """Parse one raw journal line; blank lines give None"""
    text = line.strip()
    if not text:
        return None
    try:
        obj = json.loads(text)
    except ValueError as e:
        raise EventParseError(f"Invalid JSON: {e}", context={"line": text[:200]}) from e
    return parse_event(obj)


# ============================================================================
# CLASSIFICATION HELPERS
# ============================================================================

def determine_body_type(scan: Scan) -> str:
    """
    Classify a scanned body as Star / Planet / Moon / Belt / Ring

    A PlanetClass body orbiting a planet, or a non-primary star, is a Moon.
    Anything with neither StarType nor PlanetClass is a belt cluster.
    """
    if scan.star_type:
        return "Star"

    if " Ring" in scan.body_name:
        return "Ring"

    if ("Belt" in scan.body_name or "Cluster" in scan.body_name) and any(
        kind == "Ring" for kind, _ in scan.parents
    ):
        return "Belt"

    if scan.planet_class:
        if scan.parents:
            kind, ident = scan.parents[0]
            if kind == "Planet":
                return "Moon"
            if kind == "Star" and ident:
                return "Moon"
        return "Planet"

    return "Belt"


def extract_parent_body_id(scan: Scan) -> Optional[int]:
    """Immediate parent body id; None for barycentres (`Null`) and primaries"""
    if not scan.parents:
        return None
    kind, ident = scan.parents[0]
    if kind == "Null":
        return None
    if isinstance(ident, bool) or not isinstance(ident, int):
        return None
    return ident


SIGNAL_TYPES = {
    "$SAA_SignalType_Biological;": "biological",
    "$SAA_SignalType_Geological;": "geological",
    "$SAA_SignalType_Human;": "human",
    "$SAA_SignalType_Thargoid;": "thargoid",
}


def decode_signal_type(signal_type: str) -> str:
    """Journal signal type token -> biological / geological / human / thargoid / other"""
    return SIGNAL_TYPES.get(signal_type, "other")
