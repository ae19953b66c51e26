"""
Journal Reconstructor - Event Replay State Machine
==================================================

Turns raw journal lines into store mutations, session-state updates and
domain events.

Two replay modes:
- Incremental: apply_line() per new line, in arrival order, emitting one
  domain event per meaningful change
- Cold start: cold_start() reads a whole file, keeps only the latest
  state-defining events plus the detail events of the system that ends up
  current, then applies them

Bulk mode (backfill, cold start) persists exactly like live mode but emits
nothing.
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   reconstructor.py
#
# Connected modules (direct imports):
#   database, events, exobiology, signals, state
#
# Notes:
#   - Dispatch is keyed by the exact event class; UnknownEvent (and any kind
#     without a handler) lands in the ignore arm.
#   - A failing handler is logged with traceback and counted; the next line
#     is still applied.
# ============================================================================

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Optional, Dict, Any, List, Iterable, Callable

from .database import ExplorationDatabase, utc_now_iso
from .errors import EventParseError
from .events import (
    JournalEvent, LocationEvent, BodySignalsEvent,
    Fileheader, LoadGame, Continued, Shutdown,
    Location, FSDJump, CarrierJump, FSSDiscoveryScan, FSSAllBodiesFound,
    NavRoute, NavRouteClear,
    Touchdown, Liftoff, Disembark,
    Scan, SAAScanComplete, FSSBodySignals, SAASignalsFound, ScanOrganic, CodexEntry,
    Rank, Progress, Reputation, Powerplay, Promotion,
    parse_line,
)
from .exobiology import get_biological_value, scan_progress_for
from .signals import reconcile, RingMaterialsRouting, BodySignalsRouting
from .state import (
    SessionState, EventEmitter, SystemSnapshot, RouteSnapshot, SurfaceSnapshot,
    SYSTEM_CHANGED, CARRIER_JUMPED, ALL_BODIES_FOUND, ROUTE_PLOTTED, ROUTE_CLEARED,
    TOUCHDOWN, LIFTOFF, BODY_FOOTFALLED, BODY_SCANNED, BODY_MAPPED,
    BODY_SIGNALS_UPDATED, RING_MATERIALS_UPDATED, BIO_SCANNED, CODEX_ENTRY,
    GAME_STARTED, GAME_STOPPED, COMMANDER_UPDATED, JOURNAL_CONTINUED,
)


logger = logging.getLogger("galnetops.reconstructor")

# Latest instance wins during a cold start
STATE_DEFINING_EVENTS = (LoadGame, Rank, Progress, Reputation, Powerplay)


def system_snapshot(row: Dict[str, Any]) -> SystemSnapshot:
    """SystemSnapshot from a `systems` row"""
    return SystemSnapshot(
        name=row["name"],
        system_address=row["system_address"],
        star_pos=(row["star_pos_x"], row["star_pos_y"], row["star_pos_z"]),
        db_id=row["id"],
        body_count=row.get("body_count"),
        all_bodies_found=bool(row.get("all_bodies_found")),
    )


# ============================================================================
# COLD START COLLECTION
# ============================================================================

@dataclass
class LoadedJournal:
    """What a cold start keeps from one file"""
    latest: Dict[type, JournalEvent] = field(default_factory=dict)
    location: Optional[LocationEvent] = None
    fileheader: Optional[Fileheader] = None
    scans: Dict[int, List[Scan]] = field(default_factory=lambda: defaultdict(list))
    mapped: Dict[int, List[SAAScanComplete]] = field(default_factory=lambda: defaultdict(list))
    signals: Dict[int, List[BodySignalsEvent]] = field(default_factory=lambda: defaultdict(list))


@dataclass(frozen=True)
class ColdStartSummary:
    system_address: Optional[int] = None
    scans: int = 0
    mapped: int = 0
    signals: int = 0


# ============================================================================
# RECONSTRUCTOR
# ============================================================================

class JournalReconstructor:
    """
    Applies journal events to the store and the session state.

    Usage:
        reconstructor = JournalReconstructor(database, emitter)
        for line in lines:
            reconstructor.apply_line(line)
    """

    def __init__(
        self,
        database: ExplorationDatabase,
        emitter: EventEmitter,
        state: Optional[SessionState] = None,
    ):
        """
        Initialize reconstructor

        Args:
            database: Persistence store
            emitter: Domain event boundary
            state: Session aggregate (a fresh one when None)
        """
        self.db = database
        self.emitter = emitter
        self.state = state or SessionState()

        # One line is applied whole before the next starts
        self._lock = threading.RLock()

        self.lines_processed = 0
        self.events_applied = 0
        self.events_ignored = 0
        self.lines_skipped = 0
        self.handler_errors = 0

        self._handlers: Dict[type, Callable[[Any, bool], None]] = {
            Fileheader: self._handle_fileheader,
            LoadGame: self._handle_load_game,
            Continued: self._handle_continued,
            Shutdown: self._handle_shutdown,
            Location: self._handle_location,
            FSDJump: self._handle_fsd_jump,
            CarrierJump: self._handle_carrier_jump,
            FSSDiscoveryScan: self._handle_discovery_scan,
            FSSAllBodiesFound: self._handle_all_bodies_found,
            NavRoute: self._handle_nav_route,
            NavRouteClear: self._handle_nav_route_clear,
            Touchdown: self._handle_touchdown,
            Liftoff: self._handle_liftoff,
            Disembark: self._handle_disembark,
            Scan: self._handle_scan,
            SAAScanComplete: self._handle_saa_scan_complete,
            FSSBodySignals: self._handle_signals,
            SAASignalsFound: self._handle_signals,
            ScanOrganic: self._handle_scan_organic,
            CodexEntry: self._handle_codex_entry,
            Rank: self._handle_rank,
            Progress: self._handle_progress,
            Reputation: self._handle_reputation,
            Powerplay: self._handle_powerplay,
            Promotion: self._handle_promotion,
        }

    @property
    def handled_event_types(self) -> frozenset:
        return frozenset(self._handlers)

    # ========================================================================
    # ENTRY POINTS
    # ========================================================================

    def apply_line(self, line: str, bulk: bool = False) -> bool:
        """
        Parse and apply one raw journal line

        Malformed lines are skipped and counted, never raised.

        Returns:
            True if a handler applied the event
        """
        self.lines_processed += 1
        try:
            event = parse_line(line)
        except EventParseError as e:
            self.lines_skipped += 1
            logger.debug("Skipping malformed line: %s", e)
            return False
        if event is None:
            return False
        return self.apply_event(event, bulk=bulk)

    def apply_event(self, event: JournalEvent, bulk: bool = False) -> bool:
        """Route a typed event to its handler"""
        handler = self._handlers.get(type(event))
        if handler is None:
            self.events_ignored += 1
            return False
        return self._run_handler(handler, event, bulk)

    def replay_lines(self, lines: Iterable[str], bulk: bool = False) -> int:
        """Apply lines in order; returns how many were applied"""
        applied = 0
        for line in lines:
            if self.apply_line(line, bulk=bulk):
                applied += 1
        return applied

    def new_session(self) -> str:
        session_id = self.state.new_session()
        logger.info("New session %s", session_id)
        return session_id

    def _run_handler(self, handler: Callable[[Any, bool], None], event: JournalEvent, bulk: bool) -> bool:
        with self._lock:
            try:
                handler(event, bulk)
            except Exception:
                self.handler_errors += 1
                logger.exception("Handler failed for %s at %s", event.name, event.timestamp)
                return False
        self.events_applied += 1
        return True

    def _emit(self, bulk: bool, name: str, payload: Optional[Dict[str, Any]] = None):
        if not bulk:
            self.emitter.emit(name, payload)

    # ========================================================================
    # COLD START
    # ========================================================================

    def cold_start(self, lines: Iterable[str], emit: bool = True) -> ColdStartSummary:
        """
        Rebuild current state from a whole journal file

        Keeps the latest LoadGame/Rank/Progress/Reputation/Powerplay and the
        latest Location/FSDJump/CarrierJump, plus every Scan, SAAScanComplete
        and signals event grouped by system address. Detail events are applied
        only for the system that ends up current.

        Args:
            lines: Every line of the file
            emit: Emit system-changed / commander-updated at the end

        Returns:
            ColdStartSummary of what was applied
        """
        loaded = self._collect(lines)

        if loaded.fileheader is not None:
            self._run_handler(self._handle_fileheader, loaded.fileheader, True)
        for event_type in STATE_DEFINING_EVENTS:
            event = loaded.latest.get(event_type)
            if event is not None:
                self._run_handler(self._handlers[event_type], event, True)

        if loaded.location is None:
            logger.info("No location event found in journal")
            if emit and self.state.game.commander:
                self.emitter.emit(COMMANDER_UPDATED, self._commander_payload())
            return ColdStartSummary()

        address = loaded.location.system_address
        if not self._run_handler(self._enter_system_bulk, loaded.location, True):
            return ColdStartSummary(system_address=address)

        scans = loaded.scans.get(address, [])
        mapped = loaded.mapped.get(address, [])
        signals = loaded.signals.get(address, [])
        for event in scans:
            self._run_handler(self._handle_scan, event, True)
        for event in mapped:
            self._run_handler(self._handle_saa_scan_complete, event, True)
        for event in signals:
            self._run_handler(self._handle_signals, event, True)

        if scans or mapped or signals:
            logger.info(
                "Loaded %d scan(s), %d mapped, %d signal event(s) for current system",
                len(scans), len(mapped), len(signals)
            )

        if emit:
            row = self.db.get_system_by_address(address)
            if row is not None:
                self.emitter.emit(SYSTEM_CHANGED, row)
            if self.state.game.commander:
                self.emitter.emit(COMMANDER_UPDATED, self._commander_payload())

        return ColdStartSummary(
            system_address=address,
            scans=len(scans),
            mapped=len(mapped),
            signals=len(signals),
        )

    def _collect(self, lines: Iterable[str]) -> LoadedJournal:
        loaded = LoadedJournal()
        for line in lines:
            self.lines_processed += 1
            try:
                event = parse_line(line)
            except EventParseError as e:
                self.lines_skipped += 1
                logger.debug("Skipping malformed line: %s", e)
                continue
            if event is None:
                continue

            if type(event) in STATE_DEFINING_EVENTS:
                loaded.latest[type(event)] = event
            elif isinstance(event, (Location, FSDJump, CarrierJump)):
                loaded.location = event
            elif isinstance(event, Fileheader):
                loaded.fileheader = event
            elif isinstance(event, Scan):
                loaded.scans[event.system_address].append(event)
            elif isinstance(event, SAAScanComplete):
                loaded.mapped[event.system_address].append(event)
            elif isinstance(event, BodySignalsEvent):
                loaded.signals[event.system_address].append(event)
        return loaded

    # ========================================================================
    # SESSION HANDLERS
    # ========================================================================

    def _handle_fileheader(self, event: Fileheader, bulk: bool):
        game = self.state.game
        self.state.update_game(
            game_version=event.game_version or game.game_version,
            odyssey=event.odyssey or game.odyssey,
            journal_part=event.part,
        )

    def _handle_load_game(self, event: LoadGame, bulk: bool):
        game = self.state.update_game(
            running=True,
            commander=event.commander,
            game_mode=event.game_mode,
            ship=event.ship,
            ship_name=event.ship_name,
            ship_ident=event.ship_ident,
            credits=event.credits,
            loan=event.loan,
            odyssey=event.odyssey,
            horizons=event.horizons,
        )
        logger.debug("Game loaded (%s)", event.game_mode)
        self._emit(bulk, GAME_STARTED, {
            "commander": game.commander,
            "gameMode": game.game_mode,
            "ship": game.ship,
            "odyssey": game.odyssey,
            "timestamp": event.timestamp,
        })
        self._emit(bulk, COMMANDER_UPDATED, self._commander_payload())

    def _handle_continued(self, event: Continued, bulk: bool):
        self.state.update_game(journal_part=event.part)
        self._emit(bulk, JOURNAL_CONTINUED, {"part": event.part, "timestamp": event.timestamp})

    def _handle_shutdown(self, event: Shutdown, bulk: bool):
        self.state.update_game(running=False)
        logger.info("Game shut down")
        self._emit(bulk, GAME_STOPPED, {"timestamp": event.timestamp or utc_now_iso()})

    def _handle_rank(self, event: Rank, bulk: bool):
        self.state.update_commander(ranks=event.values())
        self._emit(bulk, COMMANDER_UPDATED, self._commander_payload())

    def _handle_progress(self, event: Progress, bulk: bool):
        self.state.update_commander(progress=event.values())
        self._emit(bulk, COMMANDER_UPDATED, self._commander_payload())

    def _handle_reputation(self, event: Reputation, bulk: bool):
        self.state.update_commander(reputation={
            "empire": event.empire,
            "federation": event.federation,
            "alliance": event.alliance,
            "independent": event.independent,
        })
        self._emit(bulk, COMMANDER_UPDATED, self._commander_payload())

    def _handle_powerplay(self, event: Powerplay, bulk: bool):
        self.state.update_commander(
            power=event.power,
            power_rank=event.rank,
            merits=event.merits,
            time_pledged=event.time_pledged,
        )
        self._emit(bulk, COMMANDER_UPDATED, self._commander_payload())

    def _handle_promotion(self, event: Promotion, bulk: bool):
        # Only the categories that changed are present
        ranks = dict(self.state.commander.ranks)
        ranks.update({key: value for key, value in event.values().items() if value is not None})
        self.state.update_commander(ranks=ranks)
        self._emit(bulk, COMMANDER_UPDATED, self._commander_payload())

    def _commander_payload(self) -> Dict[str, Any]:
        game = self.state.game
        commander = self.state.commander
        return {
            "name": game.commander,
            "credits": game.credits,
            "loan": game.loan,
            "ship": game.ship,
            "shipName": game.ship_name,
            "shipIdent": game.ship_ident,
            "ranks": dict(commander.ranks),
            "progress": dict(commander.progress),
            "reputation": dict(commander.reputation),
            "powerplay": {
                "power": commander.power,
                "rank": commander.power_rank,
                "merits": commander.merits,
                "timePledged": commander.time_pledged,
            },
        }

    # ========================================================================
    # NAVIGATION HANDLERS
    # ========================================================================

    def _enter_system(self, event: LocationEvent) -> Dict[str, Any]:
        """Upsert the event's system and make it current"""
        row = self.db.upsert_system(
            event.system_address,
            event.star_system,
            event.star_pos,
            timestamp=event.timestamp or None,
        )
        self.state.set_system(system_snapshot(row))
        return row

    def _enter_system_bulk(self, event: LocationEvent, bulk: bool):
        self._enter_system(event)

    def _handle_location(self, event: Location, bulk: bool):
        row = self._enter_system(event)
        self._emit(bulk, SYSTEM_CHANGED, row)

    def _handle_fsd_jump(self, event: FSDJump, bulk: bool):
        if self.state.carrier.aboard:
            self.state.update_carrier(aboard=False, station_name=None, market_id=None)
        if self.state.surface.landed or self.state.surface.on_foot:
            self.state.set_surface(SurfaceSnapshot())
        self._advance_route(event)

        row = self._enter_system(event)
        self.db.add_route_entry(
            row["id"],
            event.timestamp or utc_now_iso(),
            event.jump_dist,
            event.fuel_used,
            self.state.session_id,
        )
        self._emit(bulk, SYSTEM_CHANGED, row)

    def _advance_route(self, event: FSDJump):
        route = self.state.route
        if not route.active:
            return
        remaining = route.jumps_remaining - 1
        destination = route.destination
        reached = remaining <= 0 or (destination is not None and destination.star_system == event.star_system)
        if reached:
            self.state.set_route(RouteSnapshot())
            logger.info("Route destination reached")
        else:
            self.state.set_route(replace(route, jumps_remaining=remaining))

    def _handle_carrier_jump(self, event: CarrierJump, bulk: bool):
        carrier = self.state.update_carrier(
            aboard=True,
            station_name=event.station_name,
            market_id=event.market_id,
            last_jump_system=event.star_system,
            last_jump_timestamp=event.timestamp,
        )
        row = self._enter_system(event)
        logger.debug("Carrier jump to %s", event.star_system)
        self._emit(bulk, SYSTEM_CHANGED, row)
        self._emit(bulk, CARRIER_JUMPED, {
            "system": row,
            "carrierName": carrier.station_name,
            "carrierMarketId": carrier.market_id,
            "docked": event.docked,
            "onFoot": event.on_foot,
            "timestamp": event.timestamp,
        })

    def _handle_discovery_scan(self, event: FSSDiscoveryScan, bulk: bool):
        self.db.update_system_body_count(event.system_address, event.body_count)
        row = self.db.get_system_by_address(event.system_address)
        if row is None:
            return
        self.state.set_system(system_snapshot(row))
        self._emit(bulk, SYSTEM_CHANGED, row)

    def _handle_all_bodies_found(self, event: FSSAllBodiesFound, bulk: bool):
        self.db.mark_system_all_bodies_found(event.system_address)
        row = self.db.get_system_by_address(event.system_address)
        logger.info("All %d bodies found", event.count)
        if row is None:
            return
        self.state.set_system(system_snapshot(row))
        self._emit(bulk, SYSTEM_CHANGED, row)
        self._emit(bulk, ALL_BODIES_FOUND, {
            "systemName": event.system_name,
            "systemAddress": event.system_address,
            "bodyCount": event.count,
            "timestamp": event.timestamp,
        })

    def _handle_nav_route(self, event: NavRoute, bulk: bool):
        if not event.route:
            return
        route = RouteSnapshot(stops=event.route, jumps_remaining=len(event.route) - 1)
        self.state.set_route(route)
        logger.info("Route plotted (%d jumps)", route.jumps_remaining)
        self._emit(bulk, ROUTE_PLOTTED, {
            "destination": route.destination.star_system,
            "jumpsTotal": route.jumps_remaining,
            "route": [stop.star_system for stop in route.stops],
            "timestamp": event.timestamp,
        })

    def _handle_nav_route_clear(self, event: NavRouteClear, bulk: bool):
        had_route = bool(self.state.route.stops)
        self.state.set_route(RouteSnapshot())
        if had_route:
            logger.info("Route cleared")
            self._emit(bulk, ROUTE_CLEARED, {"timestamp": event.timestamp or utc_now_iso()})

    # ========================================================================
    # SURFACE HANDLERS
    # ========================================================================

    def _handle_touchdown(self, event: Touchdown, bulk: bool):
        if not event.player_controlled:
            return
        self.state.set_surface(SurfaceSnapshot(
            landed=True,
            body=event.body,
            body_id=event.body_id,
            latitude=event.latitude,
            longitude=event.longitude,
            nearest_destination=event.nearest_destination,
        ))
        self._emit(bulk, TOUCHDOWN, self._surface_payload(event))

    def _handle_liftoff(self, event: Liftoff, bulk: bool):
        if not event.player_controlled:
            return
        self.state.set_surface(SurfaceSnapshot())
        self._emit(bulk, LIFTOFF, self._surface_payload(event))

    @staticmethod
    def _surface_payload(event: Touchdown) -> Dict[str, Any]:
        return {
            "bodyName": event.body,
            "bodyId": event.body_id,
            "latitude": event.latitude,
            "longitude": event.longitude,
            "nearestDestination": event.nearest_destination,
            "systemName": event.star_system,
            "systemAddress": event.system_address,
            "timestamp": event.timestamp,
        }

    def _handle_disembark(self, event: Disembark, bulk: bool):
        # On foot on a planet surface only
        if event.srv or event.on_station or not event.on_planet:
            return
        self.state.set_surface(replace(self.state.surface, on_foot=True))

        system = self.state.system
        if system.db_id is None or event.body_id is None:
            return
        if self.db.update_body_footfalled(system.db_id, event.body_id):
            logger.debug("First footfall recorded")
            self._emit(bulk, BODY_FOOTFALLED, {
                "bodyId": event.body_id,
                "bodyName": event.body,
                "systemAddress": system.system_address,
            })

    # ========================================================================
    # SCAN HANDLERS
    # ========================================================================

    def _handle_scan(self, event: Scan, bulk: bool):
        system = self.db.get_system_by_address(event.system_address)
        if system is None:
            # Scan before any navigation event for this system
            system = self.db.upsert_system(
                event.system_address,
                event.star_system or str(event.system_address),
                (0.0, 0.0, 0.0),
                timestamp=event.timestamp or None,
            )

        body = self.db.upsert_body(system["id"], event)

        pending = self.state.pending.pop(event.system_address, event.body_id)
        if pending is not None:
            self.db.update_body_signals(system["id"], event.body_id, pending.counts)
            if pending.genuses:
                self.db.merge_body_genuses(system["id"], event.body_id, list(pending.genuses))
            body = self.db.get_body_by_system_and_body_id(system["id"], event.body_id) or body
            logger.debug("Applied pending signals to body %d", event.body_id)

        self._emit(bulk, BODY_SCANNED, body)

    def _handle_saa_scan_complete(self, event: SAAScanComplete, bulk: bool):
        system = self.db.get_system_by_address(event.system_address)
        if system is None:
            return
        if not self.db.update_body_mapped(system["id"], event.body_id):
            logger.debug("Mapped body %d not in store yet", event.body_id)
            return
        self._emit(bulk, BODY_MAPPED, {
            "bodyId": event.body_id,
            "bodyName": event.body_name,
            "systemAddress": event.system_address,
        })

    def _handle_signals(self, event: BodySignalsEvent, bulk: bool):
        routing = reconcile(event)
        if routing is None:
            return

        system = self.db.get_system_by_address(event.system_address)
        if isinstance(routing, RingMaterialsRouting):
            self._apply_ring_materials(system, routing, event, bulk)
            return

        if system is None or not self.db.update_body_signals(system["id"], routing.body_id, routing.counts):
            # Body not scanned yet; applied when its Scan arrives
            self.state.pending.add(
                routing.system_address,
                routing.body_id,
                routing.counts,
                genuses=routing.genuses,
                timestamp=event.timestamp,
            )
            return

        if routing.genuses:
            self.db.merge_body_genuses(system["id"], routing.body_id, list(routing.genuses))
        self._emit_body_signals(system, routing, bulk)

    def _apply_ring_materials(
        self,
        system: Optional[Dict[str, Any]],
        routing: RingMaterialsRouting,
        event: BodySignalsEvent,
        bulk: bool,
    ):
        if system is None:
            return
        merged = self.db.merge_ring_materials_into_parent(
            system["id"], routing.parent_name, routing.ring_name, routing.materials
        )
        if not merged:
            logger.debug("No parent ring entry for %s", routing.ring_name)
            return
        self._emit(bulk, RING_MATERIALS_UPDATED, {
            "systemAddress": event.system_address,
            "bodyId": event.body_id,
            "parentName": routing.parent_name,
            "ringName": routing.ring_name,
            "materials": [dict(m) for m in routing.materials],
        })

    def _emit_body_signals(self, system: Dict[str, Any], routing: BodySignalsRouting, bulk: bool):
        if bulk:
            return
        body = self.db.get_body_by_system_and_body_id(system["id"], routing.body_id) or {}
        self.emitter.emit(BODY_SIGNALS_UPDATED, {
            "systemAddress": routing.system_address,
            "bodyId": routing.body_id,
            "bioSignals": body.get("bio_signals", routing.counts.bio),
            "geoSignals": body.get("geo_signals", routing.counts.geo),
            "humanSignals": body.get("human_signals", routing.counts.human),
            "thargoidSignals": body.get("thargoid_signals", routing.counts.thargoid),
        })

    def _handle_scan_organic(self, event: ScanOrganic, bulk: bool):
        system = self.db.get_system_by_address(event.system_address)
        if system is None:
            return
        body = self.db.get_body_by_system_and_body_id(system["id"], event.body)
        if body is None:
            logger.debug("Organic scan on unknown body %d", event.body)
            return

        bio = self.db.upsert_biological(
            body["id"],
            event.genus,
            event.species,
            event.variant,
            get_biological_value(event.species),
            scan_progress_for(event.scan_type),
        )
        self._emit(bulk, BIO_SCANNED, bio)

    def _handle_codex_entry(self, event: CodexEntry, bulk: bool):
        entry = self.db.upsert_codex_entry(event)
        self._emit(bulk, CODEX_ENTRY, entry)

    # ========================================================================
    # STATISTICS
    # ========================================================================

    def get_stats(self) -> Dict[str, int]:
        """Get processing statistics"""
        return {
            "lines_processed": self.lines_processed,
            "events_applied": self.events_applied,
            "events_ignored": self.events_ignored,
            "lines_skipped": self.lines_skipped,
            "handler_errors": self.handler_errors,
        }

    def reset_stats(self):
        self.lines_processed = 0
        self.events_applied = 0
        self.events_ignored = 0
        self.lines_skipped = 0
        self.handler_errors = 0
