"""
Journal Watcher - Live Tailing Loop
===================================

Follows the newest journal file in a background thread and feeds new
lines to the JournalReconstructor.

Responsibilities:
- start(): cold-start from the newest file, then track its end offset
- poll_once(): rotation check, then incremental read of complete lines
- Rotation: drain the old file, notify once, new session, replay the new
  file from 0 while live reads are held off, then follow it
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   watcher.py
#
# Connected modules (direct imports):
#   config, database, errors, reconstructor, state, tailer
#
# Notes:
#   - Polling, not filesystem notifications: one thread, one stop Event.
#   - The in-flight guard is released in a finally block, so a failed
#     replay never blocks later reads.
# ============================================================================

import logging
import threading
import time
from pathlib import Path
from typing import Optional, Dict, Any, Callable

from .config import MonitoringConfig
from .database import ExplorationDatabase, utc_now_iso
from .errors import GalnetError
from .reconstructor import JournalReconstructor, system_snapshot
from .state import (
    EventEmitter, SystemSnapshot, GameSnapshot, CarrierSnapshot, RouteSnapshot,
    SurfaceSnapshot, CommanderSnapshot,
    WATCHER_STARTED, WATCHER_STOPPED, JOURNAL_FILE_CHANGED,
)
from .tailer import JournalTailer, TailPosition


logger = logging.getLogger("galnetops.watcher")


class JournalWatcher:
    """
    Live journal follower.

    Usage:
        watcher = JournalWatcher(database, reconstructor, JournalTailer, config.monitoring, emitter)
        watcher.set_path(journal_dir)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        database: ExplorationDatabase,
        reconstructor: JournalReconstructor,
        tailer_factory: Callable[..., JournalTailer] = JournalTailer,
        config: Optional[MonitoringConfig] = None,
        emitter: Optional[EventEmitter] = None,
        journal_dir: Optional[Path] = None,
    ):
        """
        Initialize journal watcher

        Args:
            database: Persistence store
            reconstructor: Applies the lines read
            tailer_factory: Builds a JournalTailer for a directory
            config: Polling intervals and caps
            emitter: Domain event boundary (defaults to the reconstructor's)
            journal_dir: Directory to follow
        """
        self.db = database
        self.reconstructor = reconstructor
        self.emitter = emitter or reconstructor.emitter
        self.config = config or MonitoringConfig()
        self._tailer_factory = tailer_factory

        self.journal_dir: Optional[Path] = Path(journal_dir).expanduser() if journal_dir else None
        self.tailer: Optional[JournalTailer] = None
        self.position = TailPosition()

        # Control
        self.stop_event = threading.Event()
        self.monitor_thread: Optional[threading.Thread] = None
        self._running = False

        # In-flight guard for new-file replay
        self._replay_lock = threading.Lock()
        self._processing_new_file = False

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    def set_path(self, journal_dir: Path) -> bool:
        """Change the followed directory; restarts when running"""
        self.journal_dir = Path(journal_dir).expanduser()
        if self._running:
            background = self.monitor_thread is not None
            self.stop()
            return self.start(background=background)
        return True

    def start(self, background: bool = True) -> bool:
        """
        Start following the journal directory

        Args:
            background: Run the polling loop in a daemon thread (False lets
                the caller drive poll_once())

        Returns:
            True if watching started
        """
        if self._running:
            return True
        if self.journal_dir is None:
            logger.info("No journal path configured")
            return False
        if not self.journal_dir.is_dir():
            logger.error("Journal path does not exist: %s", self.journal_dir)
            return False

        self.tailer = self._tailer_factory(
            self.journal_dir,
            max_files=self.config.max_files_in_directory,
            max_lines_per_read=self.config.max_lines_per_file,
        )
        self.position.reset(None)

        latest = self.tailer.latest()
        if latest is not None:
            logger.info("Loading current state from journal: %s", latest.name)
            result = self.tailer.read_all(latest)
            self.reconstructor.cold_start(result.lines)
            self.position.reset(latest, result.offset)
            logger.info("Starting with journal file: %s", latest.name)
        else:
            # No journal yet; fall back to the last visited system
            row = self.db.get_current_system()
            if row is not None:
                self.reconstructor.state.set_system(system_snapshot(row))

        self.stop_event.clear()
        self._running = True
        if background:
            self.monitor_thread = threading.Thread(
                target=self._monitor_loop, name="galnetops-watcher", daemon=True
            )
            self.monitor_thread.start()

        logger.info("Journal watcher started")
        self.emitter.emit(WATCHER_STARTED, {"path": str(self.journal_dir)})
        return True

    def stop(self):
        """Stop following; safe to call when not running"""
        if not self._running:
            return
        self.stop_event.set()
        if self.monitor_thread is not None:
            self.monitor_thread.join(timeout=2.0)
            self.monitor_thread = None

        self._running = False
        self.reconstructor.state.update_game(running=False)
        logger.info("Journal watcher stopped")
        self.emitter.emit(WATCHER_STOPPED, {})

    # ========================================================================
    # POLLING
    # ========================================================================

    def _monitor_loop(self):
        """Main polling loop (runs in background thread)"""
        last_rotation_check = 0.0
        try:
            while not self.stop_event.is_set():
                now = time.monotonic()
                check_rotation = now - last_rotation_check >= self.config.rotation_check_seconds
                if check_rotation:
                    last_rotation_check = now

                try:
                    applied = self.poll_once(check_rotation=check_rotation)
                except GalnetError as e:
                    logger.warning("Journal poll failed: %s", e)
                    applied = 0

                delay = self.config.poll_fast_seconds if applied else self.config.poll_slow_seconds
                self.stop_event.wait(delay)
        except Exception:
            logger.exception("Journal watcher crashed")
            self._running = False

    def poll_once(self, check_rotation: bool = True) -> int:
        """
        One iteration: rotation check, then incremental read

        Returns:
            Number of events applied
        """
        if self.tailer is None or self._processing_new_file:
            return 0

        if check_rotation or self.position.file is None:
            newest = self.tailer.detect_rotation(self.position)
            if newest is not None:
                return self._handle_rotation(newest)

        return self._read_new_lines()

    def _read_new_lines(self) -> int:
        if self.position.file is None or self._processing_new_file:
            return 0
        result = self.tailer.read_since(self.position.file, self.position.offset)
        applied = self.reconstructor.replay_lines(result.lines)
        self.position.offset = result.offset
        return applied

    def _handle_rotation(self, new_file: Path) -> int:
        """Switch to a brand-new journal file"""
        if not self._replay_lock.acquire(blocking=False):
            logger.info("Already processing a new file, skipping")
            return 0

        try:
            # Whatever the old file still holds (Shutdown, final jumps)
            applied = self._read_new_lines()

            self._processing_new_file = True
            previous = self.position.file

            logger.info("New journal file detected: %s", new_file.name)
            self.emitter.emit(JOURNAL_FILE_CHANGED, {
                "previousFile": previous.name if previous else None,
                "newFile": new_file.name,
                "timestamp": utc_now_iso(),
            })
            self.position.reset(new_file, 0)
            self.reconstructor.new_session()

            if self.config.new_file_settle_seconds > 0:
                self.stop_event.wait(self.config.new_file_settle_seconds)
            if not new_file.exists():
                logger.error("New journal file no longer exists: %s", new_file.name)
                return applied

            result = self.tailer.read_all(new_file)
            applied += self.reconstructor.replay_lines(result.lines)
            self.position.offset = result.offset
            logger.info("Processed new journal file: %s, position: %d", new_file.name, self.position.offset)
            return applied
        finally:
            self._processing_new_file = False
            self._replay_lock.release()

    # ========================================================================
    # STATE GETTERS
    # ========================================================================

    def get_current_file_info(self) -> Dict[str, Any]:
        return {
            "file": self.position.file.name if self.position.file else None,
            "position": self.position.offset,
        }

    def get_current_system(self) -> SystemSnapshot:
        return self.reconstructor.state.system

    def get_game_state(self) -> GameSnapshot:
        return self.reconstructor.state.game

    def get_carrier_state(self) -> CarrierSnapshot:
        return self.reconstructor.state.carrier

    def get_route_info(self) -> RouteSnapshot:
        return self.reconstructor.state.route

    def get_surface_state(self) -> SurfaceSnapshot:
        return self.reconstructor.state.surface

    def get_commander_state(self) -> CommanderSnapshot:
        return self.reconstructor.state.commander
