"""
Session State - Current Exploration Context
===========================================

In-memory aggregate of "where is the player and what are they doing",
owned by one JournalReconstructor instance.

Design:
- Thread-safe: the watcher thread writes, UI-facing callers read
- Immutable snapshots: every sub-state is a frozen dataclass replaced whole
- Pending signals: signal counts buffered until their body is scanned
- EventEmitter: named domain events for the presentation boundary
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   state.py
#
# Connected modules (direct imports):
#   events, signals
# ============================================================================

import logging
import random
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from threading import RLock
from typing import Optional, Tuple, List, Callable, Dict, Any, Iterable

from .events import RouteStop
from .signals import SignalCounts


logger = logging.getLogger("galnetops.state")


# =============================================================================
# DOMAIN EVENT NAMES
# =============================================================================

SYSTEM_CHANGED = "system-changed"
CARRIER_JUMPED = "carrier-jumped"
ALL_BODIES_FOUND = "all-bodies-found"
ROUTE_PLOTTED = "route-plotted"
ROUTE_CLEARED = "route-cleared"
TOUCHDOWN = "touchdown"
LIFTOFF = "liftoff"
BODY_FOOTFALLED = "body-footfalled"
BODY_SCANNED = "body-scanned"
BODY_MAPPED = "body-mapped"
BODY_SIGNALS_UPDATED = "body-signals-updated"
RING_MATERIALS_UPDATED = "ring-materials-updated"
BIO_SCANNED = "bio-scanned"
CODEX_ENTRY = "codex-entry"
GAME_STARTED = "game-started"
GAME_STOPPED = "game-stopped"
COMMANDER_UPDATED = "commander-updated"
JOURNAL_CONTINUED = "journal-continued"
JOURNAL_FILE_CHANGED = "journal-file-changed"
WATCHER_STARTED = "watcher-started"
WATCHER_STOPPED = "watcher-stopped"
BACKFILL_PROGRESS = "backfill-progress"


# =============================================================================
# EVENT EMITTER
# =============================================================================

@dataclass(frozen=True)
class DomainEvent:
    """A named state change for the presentation boundary"""
    name: str
    payload: Dict[str, Any]
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class EventEmitter:
    """
    Publishes domain events to subscribers.

    The engine has no knowledge of who listens. Subscribers register for
    specific names or, with names=None, for everything.

    Usage:
        emitter = EventEmitter()
        emitter.subscribe(on_system, names=[SYSTEM_CHANGED])
        emitter.emit(SYSTEM_CHANGED, {"name": "Sol"})
    """

    def __init__(self, max_history: int = 100):
        self._lock = RLock()
        self._subscribers: List[Tuple[Optional[frozenset], Callable[[DomainEvent], None]]] = []
        self._history: List[DomainEvent] = []
        self._max_history = max_history

    def subscribe(
        self,
        callback: Callable[[DomainEvent], None],
        names: Optional[Iterable[str]] = None,
    ) -> Callable[[], None]:
        """
        Register a subscriber

        Args:
            callback: Receives each DomainEvent
            names: Event names to receive (None = all)

        Returns:
            Function that removes the subscription
        """
        entry = (frozenset(names) if names is not None else None, callback)
        with self._lock:
            self._subscribers.append(entry)

        def _unsubscribe():
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return _unsubscribe

    def emit(self, name: str, payload: Optional[Dict[str, Any]] = None) -> DomainEvent:
        event = DomainEvent(name=name, payload=dict(payload or {}))
        with self._lock:
            self._history.append(event)
            if len(self._history) > self._max_history:
                self._history.pop(0)
            subscribers = list(self._subscribers)

        # Callbacks run outside the lock
        for names, callback in subscribers:
            if names is not None and name not in names:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber failed for %s", name)
        return event

    def get_history(self) -> List[DomainEvent]:
        with self._lock:
            return list(self._history)

    def clear_history(self):
        with self._lock:
            self._history.clear()


# =============================================================================
# STATE SNAPSHOTS (Immutable)
# =============================================================================

@dataclass(frozen=True)
class SystemSnapshot:
    name: Optional[str] = None
    system_address: Optional[int] = None
    star_pos: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    db_id: Optional[int] = None
    body_count: Optional[int] = None
    all_bodies_found: bool = False


@dataclass(frozen=True)
class GameSnapshot:
    running: bool = False
    commander: Optional[str] = None
    game_mode: Optional[str] = None
    game_version: Optional[str] = None
    ship: Optional[str] = None
    ship_name: Optional[str] = None
    ship_ident: Optional[str] = None
    credits: int = 0
    loan: int = 0
    odyssey: bool = False
    horizons: bool = False
    journal_part: int = 1


@dataclass(frozen=True)
class CarrierSnapshot:
    """Fleet carrier the player is aboard (docked or on foot)"""
    aboard: bool = False
    station_name: Optional[str] = None
    market_id: Optional[int] = None
    last_jump_system: Optional[str] = None
    last_jump_timestamp: Optional[str] = None


@dataclass(frozen=True)
class RouteSnapshot:
    stops: Tuple[RouteStop, ...] = ()
    jumps_remaining: int = 0

    @property
    def active(self) -> bool:
        return bool(self.stops) and self.jumps_remaining > 0

    @property
    def destination(self) -> Optional[RouteStop]:
        return self.stops[-1] if self.stops else None


@dataclass(frozen=True)
class SurfaceSnapshot:
    landed: bool = False
    on_foot: bool = False
    body: Optional[str] = None
    body_id: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    nearest_destination: Optional[str] = None


@dataclass(frozen=True)
class CommanderSnapshot:
    ranks: Dict[str, Optional[int]] = field(default_factory=dict)
    progress: Dict[str, Optional[int]] = field(default_factory=dict)
    reputation: Dict[str, Optional[float]] = field(default_factory=dict)
    power: Optional[str] = None
    power_rank: Optional[int] = None
    merits: Optional[int] = None
    time_pledged: Optional[int] = None


@dataclass(frozen=True)
class SessionSnapshot:
    """Everything a UI needs to render the current context"""
    session_id: str
    system: SystemSnapshot
    game: GameSnapshot
    carrier: CarrierSnapshot
    route: RouteSnapshot
    surface: SurfaceSnapshot
    commander: CommanderSnapshot
    pending_signals: int


# =============================================================================
# PENDING SIGNALS
# =============================================================================

@dataclass(frozen=True)
class PendingSignal:
    counts: SignalCounts
    genuses: Tuple[str, ...] = ()
    timestamp: Optional[str] = None


class PendingSignals:
    """
    Signal counts waiting for their body row.

    Keyed by (system_address, body_id). A later signals event for the same
    body replaces the counts; genus hints are kept unless the new event
    carries its own.
    """

    def __init__(self):
        self._lock = RLock()
        self._entries: Dict[Tuple[int, int], PendingSignal] = {}

    def add(
        self,
        system_address: int,
        body_id: int,
        counts: SignalCounts,
        genuses: Tuple[str, ...] = (),
        timestamp: Optional[str] = None,
    ):
        key = (system_address, body_id)
        with self._lock:
            previous = self._entries.get(key)
            if previous is not None and not genuses:
                genuses = previous.genuses
            self._entries[key] = PendingSignal(counts=counts, genuses=tuple(genuses), timestamp=timestamp)

    def get(self, system_address: int, body_id: int) -> Optional[PendingSignal]:
        with self._lock:
            return self._entries.get((system_address, body_id))

    def pop(self, system_address: int, body_id: int) -> Optional[PendingSignal]:
        with self._lock:
            return self._entries.pop((system_address, body_id), None)

    def discard_other_systems(self, system_address: Optional[int]) -> int:
        """Drop entries for every system except `system_address`; returns the count dropped"""
        with self._lock:
            stale = [key for key in self._entries if key[0] != system_address]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._entries


# =============================================================================
# SESSION STATE
# =============================================================================

_SESSION_ALPHABET = string.digits + string.ascii_lowercase


def generate_session_id(now_ms: Optional[int] = None) -> str:
    """session_<epoch ms>_<9 base36 chars>"""
    millis = int(time.time() * 1000) if now_ms is None else now_ms
    suffix = "".join(random.choices(_SESSION_ALPHABET, k=9))
    return f"session_{millis}_{suffix}"


class SessionState:
    """
    Mutable holder of the current snapshots.

    Each setter swaps in a new frozen snapshot, so readers holding an old
    one never see a half-applied update.
    """

    def __init__(self):
        self._lock = RLock()
        self.pending = PendingSignals()
        self.reset()

    def reset(self):
        with self._lock:
            self._session_id = generate_session_id()
            self._system = SystemSnapshot()
            self._game = GameSnapshot()
            self._carrier = CarrierSnapshot()
            self._route = RouteSnapshot()
            self._surface = SurfaceSnapshot()
            self._commander = CommanderSnapshot()
            self.pending.clear()

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------
    @property
    def session_id(self) -> str:
        with self._lock:
            return self._session_id

    def new_session(self) -> str:
        with self._lock:
            self._session_id = generate_session_id()
            return self._session_id

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------
    @property
    def system(self) -> SystemSnapshot:
        with self._lock:
            return self._system

    @property
    def game(self) -> GameSnapshot:
        with self._lock:
            return self._game

    @property
    def carrier(self) -> CarrierSnapshot:
        with self._lock:
            return self._carrier

    @property
    def route(self) -> RouteSnapshot:
        with self._lock:
            return self._route

    @property
    def surface(self) -> SurfaceSnapshot:
        with self._lock:
            return self._surface

    @property
    def commander(self) -> CommanderSnapshot:
        with self._lock:
            return self._commander

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------
    def set_system(self, system: SystemSnapshot) -> bool:
        """Replace the current system; True when the address changed"""
        with self._lock:
            changed = system.system_address != self._system.system_address
            self._system = system
            if changed:
                dropped = self.pending.discard_other_systems(system.system_address)
                if dropped:
                    logger.debug("Discarded %d stale pending signal(s)", dropped)
            return changed

    def update_system(self, **changes) -> SystemSnapshot:
        with self._lock:
            self._system = replace(self._system, **changes)
            return self._system

    def update_game(self, **changes) -> GameSnapshot:
        with self._lock:
            self._game = replace(self._game, **changes)
            return self._game

    def update_carrier(self, **changes) -> CarrierSnapshot:
        with self._lock:
            self._carrier = replace(self._carrier, **changes)
            return self._carrier

    def set_route(self, route: RouteSnapshot):
        with self._lock:
            self._route = route

    def set_surface(self, surface: SurfaceSnapshot):
        with self._lock:
            self._surface = surface

    def update_commander(self, **changes) -> CommanderSnapshot:
        with self._lock:
            self._commander = replace(self._commander, **changes)
            return self._commander

    def snapshot(self) -> SessionSnapshot:
        """Frozen copy of the whole context"""
        with self._lock:
            return SessionSnapshot(
                session_id=self._session_id,
                system=self._system,
                game=self._game,
                carrier=self._carrier,
                route=self._route,
                surface=self._surface,
                commander=self._commander,
                pending_signals=len(self.pending),
            )
