"""
Unit Tests - GalnetOps Engine
=============================

Tests cover:
- Configuration (defaults, caps, file loading, validation)
- Error handling (taxonomy, store-error classification, retry)
- Logging setup
- Engine container wiring and operational controls
"""

import json
import logging
import shutil
import sqlite3
import tempfile
import unittest
from unittest.mock import Mock
from pathlib import Path

# Import components to test
import sys
sys.path.insert(0, str(Path(__file__).parent / "src"))

from galnetops.config import (
    AppConfig,
    PathConfig,
    MonitoringConfig,
    UpstreamConfig,
    LoggingConfig,
    ConfigLoader,
    ConfigValidator,
    MAX_FILES_IN_DIRECTORY,
    MAX_LINES_PER_FILE,
)
from galnetops.errors import (
    ErrorHandler,
    ErrorSeverity,
    ErrorContext,
    GalnetError,
    ConfigurationError,
    DatabaseError,
    TransientStoreError,
    ConstraintStoreError,
    CorruptionStoreError,
    ValidationError,
    NetworkError,
    classify_db_error,
    wrap_db_error,
    retry_on_error,
)
from galnetops.logging_setup import configure_logging, FileLogger, ROOT_LOGGER_NAME
from galnetops.container import EngineContainer
from galnetops.state import SYSTEM_CHANGED


def _tagged_handlers():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    return [h for h in logger.handlers if getattr(h, "_galnetops_handler", False)]


# ============================================================================
# TEST CONFIGURATION
# ============================================================================

class TestConfiguration(unittest.TestCase):
    """Test configuration classes"""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_monitoring_config_defaults(self):
        """Test MonitoringConfig has correct defaults"""
        config = MonitoringConfig()

        self.assertEqual(config.poll_fast_seconds, 0.1)
        self.assertEqual(config.poll_slow_seconds, 0.25)
        self.assertEqual(config.rotation_check_seconds, 5.0)
        self.assertEqual(config.max_files_in_directory, 10_000)
        self.assertEqual(config.max_backfill_files, 1_000)

    def test_caps_are_clamped(self):
        """Test caps above the built-in limits are clamped"""
        config = MonitoringConfig(max_files_in_directory=50_000, max_lines_per_file=5_000_000)

        self.assertEqual(config.max_files_in_directory, MAX_FILES_IN_DIRECTORY)
        self.assertEqual(config.max_lines_per_file, MAX_LINES_PER_FILE)

    def test_caps_can_be_lowered(self):
        """Test caps below the built-in limits are kept"""
        config = MonitoringConfig(max_files_in_directory=10)
        self.assertEqual(config.max_files_in_directory, 10)

    def test_upstream_config_defaults(self):
        """Test UpstreamConfig has correct defaults"""
        config = UpstreamConfig()

        self.assertEqual(config.api_base, "https://www.edsm.net")
        self.assertEqual(config.rate_limit_seconds, 1.0)
        self.assertEqual(config.max_retries, 3)
        self.assertEqual(set(config.retryable_status_codes), {502, 503, 504, 429})

    def test_app_config_creation(self):
        """Test AppConfig can be created"""
        config = AppConfig.create_default()

        self.assertEqual(config.app_name, "GalnetOps")
        self.assertIsInstance(config.paths, PathConfig)
        self.assertIsInstance(config.monitoring, MonitoringConfig)
        self.assertIsInstance(config.upstream, UpstreamConfig)
        self.assertEqual(config.paths.db_path.name, "galnetops.db")

    def test_config_to_dict(self):
        """Test config can be converted to dict"""
        config_dict = AppConfig.create_default().to_dict()

        self.assertIsInstance(config_dict, dict)
        self.assertIn("paths", config_dict)
        self.assertEqual(config_dict["monitoring"]["poll_fast_seconds"], 0.1)
        self.assertEqual(config_dict["upstream"]["retryable_status_codes"], [502, 503, 504, 429])

    def test_yaml_round_trip(self):
        """Test saving and loading a YAML config file"""
        config = AppConfig.create_default()
        config.paths.journal_dir = self.tmp / "journals"
        config.monitoring.poll_slow_seconds = 0.5
        path = self.tmp / "config.yaml"

        ConfigLoader.save_to_file(config, path)
        loaded = ConfigLoader.load_from_file(path)

        self.assertEqual(loaded.paths.journal_dir, self.tmp / "journals")
        self.assertEqual(loaded.monitoring.poll_slow_seconds, 0.5)
        self.assertEqual(loaded.upstream.retryable_status_codes, (502, 503, 504, 429))

    def test_missing_keys_fall_back_to_defaults(self):
        """Test a partial JSON config keeps defaults for everything else"""
        path = self.tmp / "config.json"
        path.write_text(json.dumps({"upstream": {"max_retries": 5}}), encoding="utf-8")

        loaded = ConfigLoader.load_from_file(path)

        self.assertEqual(loaded.upstream.max_retries, 5)
        self.assertEqual(loaded.upstream.rate_limit_seconds, 1.0)
        self.assertEqual(loaded.monitoring.poll_fast_seconds, 0.1)

    def test_load_missing_file(self):
        """Test loading a missing file raises ConfigurationError"""
        with self.assertRaises(ConfigurationError):
            ConfigLoader.load_from_file(self.tmp / "nope.yaml")

    def test_load_unsupported_format(self):
        """Test loading an unsupported extension raises ConfigurationError"""
        path = self.tmp / "config.ini"
        path.write_text("[x]", encoding="utf-8")

        with self.assertRaises(ConfigurationError):
            ConfigLoader.load_from_file(path)

    def test_load_invalid_yaml(self):
        """Test a broken YAML file raises ConfigurationError"""
        path = self.tmp / "config.yaml"
        path.write_text("monitoring: [unclosed", encoding="utf-8")

        with self.assertRaises(ConfigurationError):
            ConfigLoader.load_from_file(path)

    def test_find_config_file(self):
        """Test config file search across directories"""
        (self.tmp / "b").mkdir()
        target = self.tmp / "b" / "config.yml"
        target.write_text("{}", encoding="utf-8")

        found = ConfigLoader.find_config_file([self.tmp / "a", self.tmp / "b"])
        self.assertEqual(found, target)

    def test_validator_accepts_defaults(self):
        """Test default configuration validates"""
        self.assertEqual(ConfigValidator.validate(AppConfig.create_default()), [])

    def test_validator_rejects_ttl_ordering(self):
        """Test memory TTL must be shorter than the persistent TTL"""
        config = AppConfig.create_default()
        config.upstream.memory_ttl_seconds = 7200
        config.upstream.persistent_ttl_hours = 1

        errors = ConfigValidator.validate(config)
        self.assertTrue(any("memory_ttl_seconds" in e for e in errors))

    def test_validator_rejects_bad_values(self):
        """Test non-positive intervals and retry counts are reported"""
        config = AppConfig.create_default()
        config.monitoring.poll_fast_seconds = 0
        config.upstream.max_retries = 0

        errors = ConfigValidator.validate(config)
        self.assertIn("poll_fast_seconds must be positive", errors)
        self.assertIn("max_retries must be at least 1", errors)


# ============================================================================
# TEST ERROR HANDLING
# ============================================================================

class TestErrorHandling(unittest.TestCase):
    """Test error handling system"""

    def setUp(self):
        """Set up test fixtures"""
        self.mock_logger = Mock()
        self.error_handler = ErrorHandler(self.mock_logger)

    def test_galnet_error_creation(self):
        """Test GalnetError creation"""
        error = GalnetError(
            message="Test error",
            severity=ErrorSeverity.ERROR,
            user_message="User friendly message",
            context={"key": "value"}
        )

        self.assertEqual(error.message, "Test error")
        self.assertEqual(error.severity, ErrorSeverity.ERROR)
        self.assertEqual(error.user_message, "User friendly message")
        self.assertEqual(error.context["key"], "value")
        self.assertEqual(error.to_dict()["type"], "GalnetError")

    def test_error_severities(self):
        """Test subclasses carry their severity"""
        self.assertEqual(ConfigurationError("x").severity, ErrorSeverity.CRITICAL)
        self.assertEqual(DatabaseError("x").severity, ErrorSeverity.ERROR)
        self.assertEqual(ValidationError("x").severity, ErrorSeverity.WARNING)
        self.assertEqual(NetworkError("x", status=503).severity, ErrorSeverity.WARNING)
        self.assertEqual(NetworkError("x", status=503).status, 503)

    def test_error_handler_logs_error(self):
        """Test ErrorHandler logs errors"""
        self.error_handler.handle_error(GalnetError("Test error"), notify_user=False)

        self.mock_logger.error.assert_called()

    def test_error_handler_logs_warning_as_info(self):
        """Test warnings go to the info channel"""
        self.error_handler.handle_error(ValidationError("odd value"), notify_user=False)

        self.mock_logger.info.assert_called()
        self.mock_logger.error.assert_not_called()

    def test_error_handler_wraps_plain_exceptions(self):
        """Test non-engine exceptions are wrapped"""
        context = ErrorContext("replay", "reconstructor", {"line": 3})
        self.error_handler.handle_error(ValueError("bad"), context, notify_user=False)

        recent = self.error_handler.get_recent_errors(1)[0]
        self.assertIsInstance(recent, GalnetError)
        self.assertEqual(recent.context["component"], "reconstructor")

    def test_error_handler_wraps_sqlite_errors(self):
        """Test sqlite errors are classified on the way in"""
        self.error_handler.handle_error(sqlite3.OperationalError("database is locked"), notify_user=False)

        self.assertIsInstance(self.error_handler.get_recent_errors(1)[0], TransientStoreError)

    def test_error_handler_tracks_history(self):
        """Test ErrorHandler tracks error history"""
        self.error_handler.handle_error(GalnetError("Error 1"), notify_user=False)
        self.error_handler.handle_error(GalnetError("Error 2"), notify_user=False)

        history = self.error_handler.get_recent_errors(count=2)
        self.assertEqual(len(history), 2)
        self.assertEqual(history[0].message, "Error 1")
        self.assertEqual(history[1].message, "Error 2")

    def test_error_handler_history_is_bounded(self):
        """Test history keeps the last 100 errors"""
        for i in range(120):
            self.error_handler.handle_error(GalnetError(f"Error {i}"), notify_user=False)

        self.assertEqual(len(self.error_handler.error_history), 100)
        self.assertEqual(self.error_handler.error_history[0].message, "Error 20")

    def test_error_handler_critical_callback(self):
        """Test ErrorHandler calls callback for critical errors"""
        critical_callback = Mock()
        self.error_handler.on_critical_error = critical_callback

        self.error_handler.handle_error(ConfigurationError("Critical!"))

        critical_callback.assert_called_once()

    def test_error_handler_user_callback(self):
        """Test ErrorHandler notifies for ordinary errors"""
        on_error = Mock()
        self.error_handler.on_error = on_error

        self.error_handler.handle_error(DatabaseError("failed"))
        self.error_handler.handle_error(DatabaseError("quiet"), notify_user=False)

        on_error.assert_called_once()


class TestStoreErrorClassification(unittest.TestCase):
    """Test engine error classification"""

    def test_busy_is_transient(self):
        """Test lock contention is retryable"""
        info = classify_db_error(sqlite3.OperationalError("database is locked"))

        self.assertEqual(info.kind, "transient")
        self.assertTrue(info.retryable)
        self.assertEqual(info.user_message, "Database is busy; please try again.")

    def test_constraint(self):
        """Test constraint violations are classified"""
        info = classify_db_error(sqlite3.IntegrityError("UNIQUE constraint failed: systems.system_address"))

        self.assertEqual(info.kind, "constraint")
        self.assertFalse(info.retryable)

    def test_corruption(self):
        """Test a foreign file is classified as corruption"""
        info = classify_db_error(sqlite3.DatabaseError("file is not a database"))

        self.assertEqual(info.kind, "corruption")
        self.assertEqual(info.user_message, "Database file may be corrupted.")

    def test_readonly_is_config(self):
        """Test read-only stores are configuration errors"""
        info = classify_db_error(sqlite3.OperationalError("attempt to write a readonly database"))
        self.assertEqual(info.kind, "config")

    def test_unknown(self):
        """Test unrecognised errors get the generic message"""
        info = classify_db_error(RuntimeError("boom"))

        self.assertEqual(info.kind, "unknown")
        self.assertEqual(info.user_message, "Unexpected database error.")
        self.assertNotIn("boom", info.user_message)

    def test_wrap_db_error(self):
        """Test wrapping produces the matching subclass"""
        wrapped = wrap_db_error(sqlite3.IntegrityError("NOT NULL constraint failed"), "upsert_body")

        self.assertIsInstance(wrapped, ConstraintStoreError)
        self.assertIn("upsert_body", wrapped.message)
        self.assertEqual(wrapped.context["operation"], "upsert_body")

    def test_wrap_keeps_existing_database_errors(self):
        """Test an already classified error passes through"""
        original = CorruptionStoreError("bad")
        self.assertIs(wrap_db_error(original, "op"), original)


class TestErrorDecorators(unittest.TestCase):
    """Test error handling decorators"""

    def test_retry_decorator_succeeds_on_retry(self):
        """Test @retry_on_error succeeds on retry"""
        call_count = [0]

        @retry_on_error(max_attempts=3, delay_seconds=0.001)
        def flaky_function():
            call_count[0] += 1
            if call_count[0] < 2:
                raise TransientStoreError("locked")
            return "success"

        self.assertEqual(flaky_function(), "success")
        self.assertEqual(call_count[0], 2)

    def test_retry_decorator_fails_after_max_attempts(self):
        """Test @retry_on_error fails after max attempts"""
        call_count = [0]

        @retry_on_error(max_attempts=3, delay_seconds=0.001)
        def always_fails():
            call_count[0] += 1
            raise TransientStoreError("locked")

        with self.assertRaises(TransientStoreError):
            always_fails()
        self.assertEqual(call_count[0], 3)

    def test_retry_decorator_ignores_other_errors(self):
        """Test non-transient errors are raised at once"""
        call_count = [0]

        @retry_on_error(max_attempts=3, delay_seconds=0.001)
        def constraint():
            call_count[0] += 1
            raise ConstraintStoreError("dup")

        with self.assertRaises(ConstraintStoreError):
            constraint()
        self.assertEqual(call_count[0], 1)


# ============================================================================
# TEST LOGGING
# ============================================================================

class TestLoggingSetup(unittest.TestCase):
    """Test logging configuration"""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())

    def tearDown(self):
        configure_logging(LoggingConfig(console=False))
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_configure_is_idempotent(self):
        """Test calling configure_logging twice does not duplicate handlers"""
        configure_logging(LoggingConfig(console=True))
        configure_logging(LoggingConfig(console=True))

        self.assertEqual(len(_tagged_handlers()), 1)

    def test_file_handler(self):
        """Test a log path adds a rotating file handler"""
        log_path = self.tmp / "logs" / "engine.log"
        logger = configure_logging(LoggingConfig(console=False, level="DEBUG"), log_path)

        logging.getLogger("galnetops.test").info("hello from test")
        for handler in _tagged_handlers():
            handler.flush()

        self.assertEqual(logger.level, logging.DEBUG)
        self.assertIn("hello from test", log_path.read_text(encoding="utf-8"))

    def test_file_logger(self):
        """Test FileLogger writes info and error lines"""
        file_logger = FileLogger(self.tmp / "errors.log")
        try:
            file_logger.info("first")
            file_logger.error("second")
        finally:
            file_logger.close()

        text = (self.tmp / "errors.log").read_text(encoding="utf-8")
        self.assertIn("[INFO]", text)
        self.assertIn("[ERROR]", text)


# ============================================================================
# TEST CONTAINER
# ============================================================================

class TestEngineContainer(unittest.TestCase):
    """Test dependency wiring and operational controls"""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.journal_dir = self.tmp / "journals"
        self.journal_dir.mkdir()
        lines = [
            {"timestamp": "2025-01-01T10:00:00Z", "event": "Fileheader", "part": 1, "gameversion": "4.0"},
            {"timestamp": "2025-01-01T10:00:05Z", "event": "LoadGame", "Commander": "Jameson"},
            {"timestamp": "2025-01-01T10:01:00Z", "event": "Location", "StarSystem": "Sol",
             "SystemAddress": 10477373803, "StarPos": [0, 0, 0]},
        ]
        (self.journal_dir / "Journal.2025-01-01T100000.01.log").write_text(
            "".join(json.dumps(line) + "\n" for line in lines), encoding="utf-8"
        )

        data_dir = self.tmp / "data"
        self.config = AppConfig(
            app_name="GalnetOps",
            version="1.0.0",
            paths=PathConfig(
                journal_dir=self.journal_dir,
                data_dir=data_dir,
                db_path=data_dir / "galnetops.db",
                log_path=data_dir / "galnetops.log",
            ),
            logging=LoggingConfig(console=False),
        )
        self.opener = Mock()
        self.engine = EngineContainer.create(self.config, opener=self.opener)

    def tearDown(self):
        self.engine.cleanup()
        configure_logging(LoggingConfig(console=False))
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_create_runs_migrations(self):
        """Test the store is migrated before anything else starts"""
        info = self.engine.database.get_database_info()

        self.assertEqual(info["schema_version"], 12)
        self.assertTrue(self.config.paths.db_path.exists())

    def test_invalid_config_is_rejected(self):
        """Test create() refuses a configuration that does not validate"""
        self.config.upstream.max_retries = 0

        with self.assertRaises(ConfigurationError):
            EngineContainer.create(self.config)

    def test_start_watching_loads_current_system(self):
        """Test watching cold-starts from the newest journal"""
        seen = []
        self.engine.emitter.subscribe(seen.append, names=[SYSTEM_CHANGED])

        self.assertTrue(self.engine.start_watching(background=False))

        snapshot = self.engine.get_session_snapshot()
        self.assertEqual(snapshot.system.name, "Sol")
        self.assertEqual(snapshot.game.commander, "Jameson")
        self.assertEqual(len(seen), 1)
        self.engine.stop_watching()

    def test_run_backfill(self):
        """Test backfill through the container"""
        result = self.engine.run_backfill()

        self.assertEqual(result.files_processed, 1)
        self.assertFalse(self.engine.is_backfilling())
        self.assertFalse(self.engine.cancel_backfill())
        self.assertIsNotNone(self.engine.database.get_system_by_address(10477373803))

    def test_backfill_leaves_live_session_alone(self):
        """Test a backfill during watching does not move the live state"""
        history = self.tmp / "history"
        history.mkdir()
        (history / "Journal.2024-06-01T100000.01.log").write_text(json.dumps({
            "timestamp": "2024-06-01T10:01:00Z", "event": "FSDJump", "StarSystem": "Achenar",
            "SystemAddress": 164098653, "StarPos": [67.5, -119.5, 24.8],
        }) + "\n", encoding="utf-8")
        self.engine.start_watching(background=False)
        before = self.engine.get_session_snapshot()

        result = self.engine.run_backfill(history)

        after = self.engine.get_session_snapshot()
        self.assertEqual(result.files_processed, 1)
        self.assertIsNotNone(self.engine.database.get_system_by_address(164098653))
        self.assertEqual(after.system.name, "Sol")
        self.assertEqual(after.session_id, before.session_id)
        self.assertIsNot(self.engine.backfill.reconstructor, self.engine.reconstructor)
        self.engine.stop_watching()

    def test_set_journal_dir(self):
        """Test switching directories updates the watcher and the backfill"""
        other = self.tmp / "other"
        other.mkdir()

        self.engine.set_journal_dir(other)

        self.assertEqual(self.engine.watcher.journal_dir, other)
        self.assertEqual(self.engine.backfill.tailer.journal_dir, other)
        self.assertEqual(self.engine.run_backfill().total_files, 0)

    def test_cache_controls(self):
        """Test cache controls reach the upstream cache"""
        self.engine.database.set_cache_entry("system:sol", "system", {"name": "Sol"})

        stats = self.engine.get_cache_stats()
        self.assertEqual(stats["db_stats"]["total_entries"], 1)
        self.assertEqual(self.engine.clear_cache("system"), 1)
        self.assertIsNone(self.engine.get_last_upstream_error())

    def test_backup_validate_and_import(self):
        """Test backup, validation and import round through the container"""
        self.engine.run_backfill()
        backup = self.engine.backup_database(self.tmp / "backup.db")

        validation = self.engine.validate_import(backup)
        self.assertTrue(validation.valid)
        self.assertEqual(validation.system_count, 1)

        self.engine.database.clear_exploration_data()
        previous = self.engine.import_database(backup)

        self.assertTrue(previous.exists())
        self.assertIsNotNone(self.engine.database.get_system_by_address(10477373803))

    def test_import_failure_is_recorded(self):
        """Test a rejected import is raised and kept in the error history"""
        bogus = self.tmp / "bogus.db"
        bogus.write_bytes(b"definitely not sqlite")

        with self.assertRaises(ValidationError):
            self.engine.import_database(bogus)
        self.assertIsInstance(self.engine.error_handler.get_recent_errors(1)[0], ValidationError)


# ============================================================================
# RUN TESTS
# ============================================================================

if __name__ == "__main__":
    unittest.main(verbosity=2)
