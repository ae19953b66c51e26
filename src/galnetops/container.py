"""
Engine Container
================

Builds and wires every engine component from one AppConfig.

Benefits:
- Clear dependencies for each component
- Easy to swap parts out for testing (opener, tailer factory)
- One place that owns startup order and shutdown
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   container.py
#
# Connected modules (direct imports):
#   backfill, config, database, errors, logging_setup, reconstructor,
#   state, tailer, upstream, watcher
#
# Notes:
#   - Startup order: logging -> store (migrations) -> emitter ->
#     reconstructor -> watcher / backfill -> upstream cache.
#   - A migration failure aborts create(); nothing else is started.
#   - Backfill replays through its own reconstructor and SessionState; the
#     live session aggregate is only touched by the watcher.
# ============================================================================

# ============================================================================
# IMPORTS
# ============================================================================

import logging
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any, Callable, Generator

from .backfill import BackfillOrchestrator, BackfillProgress, BackfillResult
from .config import AppConfig, ConfigValidator
from .database import ExplorationDatabase, ImportValidation
from .errors import ConfigurationError, ErrorContext, ErrorHandler, GalnetError
from .logging_setup import FileLogger, configure_logging
from .reconstructor import JournalReconstructor
from .state import EventEmitter, SessionSnapshot, SessionState
from .tailer import JournalTailer
from .upstream import UpstreamCache
from .watcher import JournalWatcher


logger = logging.getLogger("galnetops.container")

ERROR_LOG_NAME = "errors.log"


# ============================================================================
# CONTAINER
# ============================================================================

@dataclass
class EngineContainer:
    """
    Container for all engine dependencies

    Usage:
        engine = EngineContainer.create()
        engine.start_watching()
        ...
        engine.cleanup()
    """
    config: AppConfig
    database: ExplorationDatabase
    emitter: EventEmitter
    reconstructor: JournalReconstructor
    watcher: JournalWatcher
    backfill: BackfillOrchestrator
    upstream: UpstreamCache
    error_handler: ErrorHandler
    error_log: Optional[FileLogger] = None

    @classmethod
    def create(
        cls,
        config: Optional[AppConfig] = None,
        opener: Callable[..., Any] = urllib.request.urlopen,
    ) -> 'EngineContainer':
        """
        Create the container with all dependencies

        Args:
            config: Application configuration (uses default if None)
            opener: urlopen-compatible callable for the upstream cache

        Returns:
            Configured container

        Raises:
            ConfigurationError: The configuration does not validate
            MigrationError: The store could not be brought to the current schema
        """
        if config is None:
            config = AppConfig.create_default()

        problems = ConfigValidator.validate(config)
        if problems:
            raise ConfigurationError(
                "Invalid configuration: " + "; ".join(problems),
                context={"errors": problems}
            )

        config.paths.data_dir.mkdir(parents=True, exist_ok=True)
        configure_logging(config.logging, config.paths.log_path)
        logger.info("Engine starting: %s v%s", config.app_name, config.version)

        database = ExplorationDatabase(config.paths.db_path)
        logger.info("Database initialized: %s (schema %d)", config.paths.db_path, database.schema_version)

        error_log = FileLogger(
            config.paths.data_dir / ERROR_LOG_NAME,
            max_bytes=config.logging.max_bytes,
            backup_count=config.logging.backup_count,
        )
        error_handler = ErrorHandler(error_log)

        emitter = EventEmitter()
        reconstructor = JournalReconstructor(database, emitter)

        monitoring = config.monitoring
        watcher = JournalWatcher(
            database,
            reconstructor,
            tailer_factory=JournalTailer,
            config=monitoring,
            emitter=emitter,
            journal_dir=config.paths.journal_dir,
        )
        backfill = BackfillOrchestrator(
            JournalTailer(
                config.paths.journal_dir,
                max_files=monitoring.max_files_in_directory,
                max_lines_per_read=monitoring.max_lines_per_file,
            ),
            JournalReconstructor(database, emitter, state=SessionState()),
            emitter,
            max_files=monitoring.max_backfill_files,
        )

        upstream = UpstreamCache(config.upstream, database, opener=opener)

        return cls(
            config=config,
            database=database,
            emitter=emitter,
            reconstructor=reconstructor,
            watcher=watcher,
            backfill=backfill,
            upstream=upstream,
            error_handler=error_handler,
            error_log=error_log,
        )

    # ========================================================================
    # WATCHING
    # ========================================================================

    def start_watching(self, background: bool = True) -> bool:
        return self.watcher.start(background=background)

    def stop_watching(self):
        self.watcher.stop()

    def set_journal_dir(self, journal_dir: Path) -> bool:
        """Point the watcher and the backfill at another directory"""
        journal_dir = Path(journal_dir).expanduser()
        self.config.paths.journal_dir = journal_dir
        self.backfill.tailer = JournalTailer(
            journal_dir,
            max_files=self.config.monitoring.max_files_in_directory,
            max_lines_per_read=self.config.monitoring.max_lines_per_file,
        )
        return self.watcher.set_path(journal_dir)

    def get_session_snapshot(self) -> SessionSnapshot:
        return self.reconstructor.state.snapshot()

    # ========================================================================
    # BACKFILL
    # ========================================================================

    def run_backfill(self, journal_dir: Optional[Path] = None) -> BackfillResult:
        return self.backfill.run(journal_dir)

    def iter_backfill(
        self,
        journal_dir: Optional[Path] = None,
    ) -> Generator[BackfillProgress, None, BackfillResult]:
        return self.backfill.iter_run(journal_dir)

    def cancel_backfill(self) -> bool:
        return self.backfill.cancel()

    def is_backfilling(self) -> bool:
        return self.backfill.is_running()

    # ========================================================================
    # UPSTREAM CACHE
    # ========================================================================

    def clear_cache(self, kind: Optional[str] = None) -> int:
        return self.upstream.clear_cache(kind)

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.upstream.get_cache_stats()

    def get_last_upstream_error(self) -> Optional[str]:
        return self.upstream.get_last_error()

    # ========================================================================
    # DATABASE FILES
    # ========================================================================

    def validate_import(self, import_path: Path) -> ImportValidation:
        return ExplorationDatabase.validate_import(import_path)

    def import_database(self, import_path: Path) -> Path:
        """
        Replace the store's contents with another database file

        Watching is paused for the duration and resumed afterwards.

        Returns:
            Path of the backup of the previous contents
        """
        was_watching = self.watcher.is_running
        self.watcher.stop()
        try:
            return self.database.import_database(import_path)
        except GalnetError as e:
            self.error_handler.handle_error(
                e, ErrorContext("import_database", "container", {"path": str(import_path)})
            )
            raise
        finally:
            if was_watching:
                self.watcher.start()

    def backup_database(self, destination: Path) -> Path:
        try:
            return self.database.backup_database(destination)
        except GalnetError as e:
            self.error_handler.handle_error(
                e, ErrorContext("backup_database", "container", {"destination": str(destination)})
            )
            raise

    # ========================================================================
    # SHUTDOWN
    # ========================================================================

    def cleanup(self):
        """Stop background work and release resources"""
        self.backfill.cancel()
        try:
            self.watcher.stop()
        finally:
            self.database.close()
            logger.info("Engine shutdown complete")
            if self.error_log is not None:
                self.error_log.close()
