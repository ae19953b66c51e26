"""
Configuration
=============

Configuration objects for the ingestion engine and a loader for external
YAML or JSON files.

Benefits:
- Configuration as objects (not dicts)
- No code changes for config updates
- Hard caps that the environment can lower but never raise
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   config.py
#
# Connected modules (direct imports):
#   errors
#
# Notes:
#   - Missing keys in a config file fall back to the dataclass defaults.
#   - File/line caps are clamped to the built-in maxima.
# ============================================================================

# ============================================================================
# IMPORTS
# ============================================================================

import json
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

from .errors import ConfigurationError


# ============================================================================
# HARD LIMITS
# ============================================================================

MAX_FILES_IN_DIRECTORY = 10_000
MAX_BACKFILL_FILES = 1_000
MAX_LINES_PER_FILE = 1_000_000


# ============================================================================
# CONFIGURATION CLASSES
# ============================================================================

def _default_journal_dir() -> Path:
    profile = os.environ.get("USERPROFILE") or str(Path.home())
    return Path(profile) / "Saved Games" / "Frontier Developments" / "Elite Dangerous"


@dataclass
class PathConfig:
    """File paths configuration"""
    journal_dir: Path
    data_dir: Path
    db_path: Path
    log_path: Optional[Path] = None

    @classmethod
    def from_environment(cls) -> 'PathConfig':
        """Create path configuration from environment"""
        journal_dir = os.environ.get("GALNETOPS_JOURNAL_DIR")
        data_dir = Path(os.environ.get("GALNETOPS_DATA_DIR", Path.home() / ".galnetops"))

        return cls(
            journal_dir=Path(journal_dir) if journal_dir else _default_journal_dir(),
            data_dir=data_dir,
            db_path=data_dir / "galnetops.db",
            log_path=data_dir / "galnetops.log",
        )


@dataclass
class MonitoringConfig:
    """Journal monitoring configuration"""
    poll_fast_seconds: float = 0.1
    poll_slow_seconds: float = 0.25
    rotation_check_seconds: float = 5.0
    new_file_settle_seconds: float = 0.5
    max_files_in_directory: int = MAX_FILES_IN_DIRECTORY
    max_lines_per_file: int = MAX_LINES_PER_FILE
    max_backfill_files: int = MAX_BACKFILL_FILES

    def __post_init__(self):
        self.max_files_in_directory = min(int(self.max_files_in_directory), MAX_FILES_IN_DIRECTORY)
        self.max_lines_per_file = min(int(self.max_lines_per_file), MAX_LINES_PER_FILE)
        self.max_backfill_files = min(int(self.max_backfill_files), MAX_BACKFILL_FILES)


@dataclass
class UpstreamConfig:
    """Upstream system-database API configuration"""
    api_base: str = "https://www.edsm.net"
    rate_limit_seconds: float = 1.0
    memory_ttl_seconds: float = 300.0
    persistent_ttl_hours: float = 24.0
    max_memory_entries: int = 2000
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    retryable_status_codes: tuple = (502, 503, 504, 429)
    timeout_seconds: float = 10.0
    search_limit: int = 10
    user_agent: str = "galnetops/1.0"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 5
    console: bool = True


@dataclass
class AppConfig:
    """Complete application configuration"""
    app_name: str
    version: str
    paths: PathConfig
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def create_default(cls) -> 'AppConfig':
        """Create default application configuration"""
        return cls(
            app_name="GalnetOps",
            version="1.0.0",
            paths=PathConfig.from_environment(),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary (file layout)"""
        upstream = asdict(self.upstream)
        upstream["retryable_status_codes"] = list(self.upstream.retryable_status_codes)
        return {
            "application": {
                "name": self.app_name,
                "version": self.version,
            },
            "paths": {
                "journal_dir": str(self.paths.journal_dir),
                "data_dir": str(self.paths.data_dir),
                "db_path": str(self.paths.db_path),
                "log_path": str(self.paths.log_path) if self.paths.log_path else "",
            },
            "monitoring": asdict(self.monitoring),
            "upstream": upstream,
            "logging": asdict(self.logging),
        }


# ============================================================================
# LOADER
# ============================================================================

class ConfigLoader:
    """Load and validate configuration from files"""

    SUPPORTED_FORMATS = ('.yaml', '.yml', '.json')

    @classmethod
    def load_from_file(cls, filepath: Path) -> AppConfig:
        """
        Load configuration from file

        Args:
            filepath: Path to config file (.yaml, .yml, or .json)

        Returns:
            AppConfig instance

        Raises:
            ConfigurationError: If file not found or invalid
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise ConfigurationError(
                f"Configuration file not found: {filepath}",
                context={"filepath": str(filepath)}
            )

        if filepath.suffix not in cls.SUPPORTED_FORMATS:
            raise ConfigurationError(
                f"Unsupported config format: {filepath.suffix}. "
                f"Supported: {', '.join(cls.SUPPORTED_FORMATS)}",
                context={"filepath": str(filepath), "suffix": filepath.suffix}
            )

        try:
            with filepath.open('r', encoding='utf-8') as f:
                if filepath.suffix == '.json':
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to parse config file: {e}",
                context={"filepath": str(filepath), "error": str(e)}
            ) from e

        return cls._dict_to_config(data or {})

    @classmethod
    def _dict_to_config(cls, data: Dict[str, Any]) -> AppConfig:
        """Convert dictionary to AppConfig"""
        if not isinstance(data, dict):
            raise ConfigurationError(
                "Config root must be a mapping",
                context={"type": type(data).__name__}
            )

        try:
            app_section = data.get('application') or {}
            paths_section = data.get('paths') or {}
            monitoring_section = data.get('monitoring') or {}
            upstream_section = data.get('upstream') or {}
            logging_section = data.get('logging') or {}

            defaults = PathConfig.from_environment()
            data_dir = Path(paths_section.get('data_dir') or defaults.data_dir)
            log_path = paths_section.get('log_path')

            paths = PathConfig(
                journal_dir=Path(paths_section.get('journal_dir') or defaults.journal_dir),
                data_dir=data_dir,
                db_path=Path(paths_section.get('db_path') or data_dir / "galnetops.db"),
                log_path=Path(log_path) if log_path else None,
            )

            base_monitoring = MonitoringConfig()
            monitoring = MonitoringConfig(**{
                key: monitoring_section.get(key, getattr(base_monitoring, key))
                for key in asdict(base_monitoring)
            })

            base_upstream = UpstreamConfig()
            upstream_values = {
                key: upstream_section.get(key, getattr(base_upstream, key))
                for key in asdict(base_upstream)
            }
            upstream_values['retryable_status_codes'] = tuple(
                int(code) for code in upstream_values['retryable_status_codes']
            )
            upstream = UpstreamConfig(**upstream_values)

            base_logging = LoggingConfig()
            logging_config = LoggingConfig(**{
                key: logging_section.get(key, getattr(base_logging, key))
                for key in asdict(base_logging)
            })

            return AppConfig(
                app_name=app_section.get('name', 'GalnetOps'),
                version=app_section.get('version', '1.0.0'),
                paths=paths,
                monitoring=monitoring,
                upstream=upstream,
                logging=logging_config,
            )

        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Failed to convert config data: {e}",
                context={"error": str(e)}
            ) from e

    @classmethod
    def save_to_file(cls, config: AppConfig, filepath: Path):
        """
        Save configuration to file

        Args:
            config: AppConfig to save
            filepath: Path to save to (.yaml or .json)
        """
        filepath = Path(filepath)
        data = config.to_dict()
        filepath.parent.mkdir(parents=True, exist_ok=True)

        try:
            with filepath.open('w', encoding='utf-8') as f:
                if filepath.suffix == '.json':
                    json.dump(data, f, indent=2)
                else:
                    yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigurationError(
                f"Failed to save config file: {e}",
                context={"filepath": str(filepath), "error": str(e)}
            ) from e

    @classmethod
    def find_config_file(cls, search_paths: list[Path]) -> Optional[Path]:
        """
        Search for config file in multiple locations

        Args:
            search_paths: List of paths to search

        Returns:
            Path to first config file found, or None
        """
        for search_path in search_paths:
            for ext in cls.SUPPORTED_FORMATS:
                config_file = Path(search_path) / f"config{ext}"
                if config_file.exists():
                    return config_file

        return None

    @classmethod
    def create_default_config_file(cls, filepath: Path):
        """Write the default configuration to `filepath`"""
        cls.save_to_file(AppConfig.create_default(), filepath)


class ConfigValidator:
    """Validate configuration values"""

    @staticmethod
    def validate(config: AppConfig) -> list[str]:
        """
        Validate configuration

        Args:
            config: Configuration to validate

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        monitoring = config.monitoring
        upstream = config.upstream

        if monitoring.poll_fast_seconds <= 0:
            errors.append("poll_fast_seconds must be positive")

        if monitoring.poll_slow_seconds <= 0:
            errors.append("poll_slow_seconds must be positive")

        if monitoring.rotation_check_seconds <= 0:
            errors.append("rotation_check_seconds must be positive")

        if monitoring.max_files_in_directory <= 0:
            errors.append("max_files_in_directory must be positive")

        if monitoring.max_lines_per_file <= 0:
            errors.append("max_lines_per_file must be positive")

        if monitoring.max_backfill_files <= 0:
            errors.append("max_backfill_files must be positive")

        if upstream.rate_limit_seconds < 0:
            errors.append("rate_limit_seconds must not be negative")

        if upstream.memory_ttl_seconds <= 0:
            errors.append("memory_ttl_seconds must be positive")

        if upstream.memory_ttl_seconds >= upstream.persistent_ttl_hours * 3600:
            errors.append("memory_ttl_seconds must be shorter than persistent_ttl_hours")

        if upstream.max_memory_entries <= 0:
            errors.append("max_memory_entries must be positive")

        if upstream.max_retries < 1:
            errors.append("max_retries must be at least 1")

        if config.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"Unknown logging level: {config.logging.level}")

        return errors
