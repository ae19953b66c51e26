"""
GalnetOps
=========

Journal ingestion and persistence engine for Elite Dangerous exploration data.
"""

__version__ = "1.0.0"

from .config import AppConfig, ConfigLoader, ConfigValidator
from .container import EngineContainer
from .database import ExplorationDatabase
from .errors import GalnetError
from .reconstructor import JournalReconstructor
from .state import EventEmitter, SessionState
from .upstream import UpstreamCache
from .watcher import JournalWatcher

__all__ = [
    "AppConfig",
    "ConfigLoader",
    "ConfigValidator",
    "EngineContainer",
    "EventEmitter",
    "ExplorationDatabase",
    "GalnetError",
    "JournalReconstructor",
    "JournalWatcher",
    "SessionState",
    "UpstreamCache",
]
