"""
Signal Reconciliation
=====================

Pure conversion of a "signals observed" event into counted categories and a
routing decision: ring signals become ring materials on the parent body,
everything else becomes signal counts on the body itself.
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   signals.py
#
# Connected modules (direct imports):
#   events
# ============================================================================

import re
from dataclasses import dataclass
from typing import Optional, Iterable, Tuple, List, Dict, Any

from .events import BodySignalsEvent, SAASignalsFound, Signal, decode_signal_type


RING_SUFFIX = re.compile(r"\s+[A-Z]\s+Ring$")


@dataclass(frozen=True)
class SignalCounts:
    """Counted signal categories.

    `human` and `thargoid` stay None when the event did not mention them, so
    a later update never overwrites a known count with zero.
    """
    bio: int = 0
    geo: int = 0
    human: Optional[int] = None
    thargoid: Optional[int] = None

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {
            "bio": self.bio,
            "geo": self.geo,
            "human": self.human,
            "thargoid": self.thargoid,
        }


def parse_signal_counts(signals: Iterable[Signal]) -> SignalCounts:
    """Count signals by category; the last occurrence of a category wins"""
    counts = {"biological": 0, "geological": 0, "human": None, "thargoid": None}
    for signal in signals or ():
        category = decode_signal_type(signal.type)
        if category in counts:
            counts[category] = signal.count
    return SignalCounts(
        bio=counts["biological"],
        geo=counts["geological"],
        human=counts["human"],
        thargoid=counts["thargoid"],
    )


def is_ring_name(body_name: Optional[str]) -> bool:
    return bool(body_name) and RING_SUFFIX.search(body_name) is not None


def ring_parent_name(body_name: str) -> str:
    """"Col 285 Sector AB-C d1 3 A Ring" -> "Col 285 Sector AB-C d1 3" """
    return RING_SUFFIX.sub("", body_name)


@dataclass(frozen=True)
class RingMaterialsRouting:
    """Ring signals: merge materials into the named ring of the parent body"""
    parent_name: str
    ring_name: str
    materials: Tuple[Dict[str, Any], ...]


@dataclass(frozen=True)
class BodySignalsRouting:
    """Body signals: counts for the body, plus genus hints from a DSS scan"""
    system_address: int
    body_id: int
    counts: SignalCounts
    genuses: Tuple[str, ...] = ()


SignalRouting = RingMaterialsRouting | BodySignalsRouting


def reconcile(event: BodySignalsEvent) -> Optional[SignalRouting]:
    """
    Decide where a signals event lands

    Args:
        event: FSSBodySignals or SAASignalsFound

    Returns:
        RingMaterialsRouting for ring bodies (None if there is nothing to
        merge), otherwise BodySignalsRouting
    """
    if is_ring_name(event.body_name):
        materials: List[Dict[str, Any]] = [
            {"Name": signal.type, "Count": signal.count} for signal in event.signals
        ]
        parent = ring_parent_name(event.body_name)
        if not parent or not materials:
            return None
        return RingMaterialsRouting(
            parent_name=parent,
            ring_name=event.body_name,
            materials=tuple(materials),
        )

    genuses = event.genuses if isinstance(event, SAASignalsFound) else ()
    return BodySignalsRouting(
        system_address=event.system_address,
        body_id=event.body_id,
        counts=parse_signal_counts(event.signals),
        genuses=tuple(genuses),
    )
