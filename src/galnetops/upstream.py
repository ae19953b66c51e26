"""
Upstream Cache - EDSM Read-Through Client
=========================================

Read-through cache in front of the EDSM system database API.

Lookup path (per key):
    memory tier (minutes) -> persistent tier (a day) -> network

Design:
- One rate gate: every request waits for the minimum spacing, callers
  queue behind the gate's lock
- Bounded retry with growing delay for a fixed set of transient statuses
  and connection failures; anything else fails at once
- Failures never raise to the caller: lookups return None and the last
  error is kept for diagnostics
- An empty JSON object means "not found" and is not cached
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   upstream.py
#
# Connected modules (direct imports):
#   caching, config, database, errors
#
# Notes:
#   - State per lookup: MISS -> REQUESTING -> (HIT | RETRY -> REQUESTING | FAILED)
#   - System searches are never cached.
# ============================================================================

import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Optional, Dict, Any, List, Callable

from .caching import MemoryTierCache, make_key
from .config import UpstreamConfig
from .database import ExplorationDatabase
from .errors import NetworkError, DatabaseError


logger = logging.getLogger("galnetops.upstream")

KIND_SYSTEM = "system"
KIND_BODIES = "bodies"
KIND_VALUE = "value"
CACHE_KINDS = (KIND_SYSTEM, KIND_BODIES, KIND_VALUE)

MIN_SEARCH_LENGTH = 2


class UpstreamCache:
    """
    EDSM lookups with memory and persistent caching.

    Usage:
        upstream = UpstreamCache(config.upstream, database)
        info = upstream.get_system("Sol")
        if info is None:
            print(upstream.get_last_error())
    """

    def __init__(
        self,
        config: Optional[UpstreamConfig] = None,
        database: Optional[ExplorationDatabase] = None,
        opener: Callable[..., Any] = urllib.request.urlopen,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize upstream cache

        Args:
            config: API and cache settings
            database: Store for the persistent tier (memory only when None)
            opener: urlopen-compatible callable
            clock: Monotonic seconds source (rate gate, memory TTL)
            sleep: Delay function (rate gate, retry backoff)
        """
        self.config = config or UpstreamConfig()
        self.db: Optional[ExplorationDatabase] = None
        self._opener = opener
        self._clock = clock
        self._sleep = sleep

        self.memory = MemoryTierCache(
            "upstream",
            default_ttl=self.config.memory_ttl_seconds,
            max_size=self.config.max_memory_entries,
            clock=clock,
        )

        self._gate = threading.Lock()
        self._last_request: Optional[float] = None
        self._last_error: Optional[str] = None

        if database is not None:
            self.attach_database(database)

    def attach_database(self, database: ExplorationDatabase):
        """Enable the persistent tier and sweep its expired entries"""
        self.db = database
        removed = self.cleanup_expired()
        if removed:
            logger.info("Removed %d expired upstream cache entries", removed)

    # ========================================================================
    # ERRORS
    # ========================================================================

    def get_last_error(self) -> Optional[str]:
        return self._last_error

    def clear_last_error(self):
        self._last_error = None

    # ========================================================================
    # TRANSPORT
    # ========================================================================

    def _rate_limit(self):
        """Wait out the minimum spacing; caller holds the gate"""
        if self._last_request is not None:
            elapsed = self._clock() - self._last_request
            if elapsed < self.config.rate_limit_seconds:
                self._sleep(self.config.rate_limit_seconds - elapsed)
        self._last_request = self._clock()

    def _build_url(self, path: str, params: Dict[str, Any]) -> str:
        return f"{self.config.api_base.rstrip('/')}{path}?{urllib.parse.urlencode(params)}"

    def _fetch_once(self, url: str) -> bytes:
        """
        One rate-limited GET

        Raises:
            NetworkError: HTTP error status (status set) or connection failure
        """
        request = urllib.request.Request(
            url,
            headers={"User-Agent": self.config.user_agent, "Accept": "application/json"},
            method="GET",
        )
        with self._gate:
            self._rate_limit()
            try:
                with self._opener(request, timeout=self.config.timeout_seconds) as response:
                    return response.read()
            except urllib.error.HTTPError as e:
                raise NetworkError(
                    f"EDSM API error: {e.code} {e.reason}",
                    status=e.code,
                    context={"url": url},
                ) from e
            except (urllib.error.URLError, TimeoutError, OSError) as e:
                reason = getattr(e, "reason", e)
                raise NetworkError(
                    f"EDSM request failed: {reason}",
                    context={"url": url},
                ) from e

    def _request_json(self, path: str, params: Dict[str, Any]) -> Optional[Any]:
        """
        GET with bounded retry

        Returns:
            Decoded JSON, or None when the request failed (see get_last_error)
        """
        url = self._build_url(path, params)
        attempts = max(1, int(self.config.max_retries))

        for attempt in range(1, attempts + 1):
            try:
                body = self._fetch_once(url)
            except NetworkError as e:
                self._last_error = e.message
                retryable = e.status is None or e.status in self.config.retryable_status_codes
                if not retryable:
                    logger.error("API error (non-retryable): %s", e.status)
                    return None
                logger.warning("Request failed (attempt %d/%d): %s", attempt, attempts, e.message)
                if attempt < attempts:
                    delay = self.config.retry_delay_seconds * attempt
                    logger.info("Retrying in %.1fs", delay)
                    self._sleep(delay)
                continue

            try:
                data = json.loads(body.decode("utf-8") or "null")
            except ValueError as e:
                self._last_error = f"EDSM returned invalid JSON: {e}"
                logger.error("Invalid JSON from %s", path)
                return None
            self._last_error = None
            return data

        logger.error("Request failed after %d attempts", attempts)
        return None

    # ========================================================================
    # CACHE TIERS
    # ========================================================================

    def _get_cached(self, key: str) -> Optional[Any]:
        value = self.memory.get(key)
        if value is not None:
            return value

        if self.db is None:
            return None
        try:
            value = self.db.get_cache_entry(key)
        except DatabaseError as e:
            logger.warning("Persistent cache read failed: %s", e)
            return None
        if value is not None:
            # Promote for faster subsequent reads
            self.memory.set(key, value)
        return value

    def _set_cached(self, key: str, kind: str, data: Any):
        self.memory.set(key, data)
        if self.db is None:
            return
        try:
            self.db.set_cache_entry(key, kind, data, self.config.persistent_ttl_hours)
        except DatabaseError as e:
            logger.warning("Persistent cache write failed: %s", e)

    def _lookup(self, kind: str, name: str, path: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not name or not name.strip():
            return None
        key = make_key(kind, name)
        cached = self._get_cached(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached

        data = self._request_json(path, params)
        # EDSM answers an empty object for unknown systems
        if not isinstance(data, dict) or not data:
            return None

        self._set_cached(key, kind, data)
        return data

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    def get_system(self, name: str) -> Optional[Dict[str, Any]]:
        """System info (id, coordinates, information, primary star)"""
        return self._lookup(KIND_SYSTEM, name, "/api-v1/system", {
            "systemName": name.strip(),
            "showId": 1,
            "showCoordinates": 1,
            "showInformation": 1,
            "showPrimaryStar": 1,
        })

    def get_system_bodies(self, name: str) -> Optional[Dict[str, Any]]:
        return self._lookup(KIND_BODIES, name, "/api-system-v1/bodies", {"systemName": name.strip()})

    def get_system_value(self, name: str) -> Optional[Dict[str, Any]]:
        return self._lookup(KIND_VALUE, name, "/api-system-v1/estimated-value", {"systemName": name.strip()})

    def get_system_body_count(self, name: str) -> Optional[int]:
        """Body count from the system lookup, else from the bodies endpoint"""
        info = self.get_system(name)
        if info is not None and info.get("bodyCount") is not None:
            return int(info["bodyCount"])

        bodies = self.get_system_bodies(name)
        if bodies is not None and bodies.get("bodyCount") is not None:
            return int(bodies["bodyCount"])
        return None

    def search_systems(self, prefix: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Prefix search for autocomplete; never cached"""
        if not prefix or len(prefix.strip()) < MIN_SEARCH_LENGTH:
            return []
        limit = self.config.search_limit if limit is None else limit

        data = self._request_json("/api-v1/systems", {
            "systemName": prefix.strip(),
            "showId": 1,
            "showCoordinates": 1,
            "showPrimaryStar": 1,
            "onlyKnownCoordinates": 1,
        })
        if not isinstance(data, list):
            return []
        return data[:max(0, int(limit))]

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    def clear_cache(self, kind: Optional[str] = None) -> int:
        """
        Clear both tiers

        Args:
            kind: 'system', 'bodies' or 'value' (None = all)

        Returns:
            Entries removed from the persistent tier
        """
        self.memory.clear(kind)
        if self.db is None:
            return 0
        return self.db.clear_cache_entries(kind)

    def cleanup_expired(self) -> int:
        """Sweep expired entries from both tiers; returns the persistent count"""
        self.memory.cleanup_expired()
        if self.db is None:
            return 0
        try:
            return self.db.cleanup_expired_cache()
        except DatabaseError as e:
            logger.warning("Cache cleanup failed: %s", e)
            return 0

    def get_cache_stats(self) -> Dict[str, Any]:
        db_stats = None
        if self.db is not None:
            try:
                db_stats = self.db.get_cache_stats()
            except DatabaseError as e:
                logger.warning("Cache stats unavailable: %s", e)
        return {
            "memory_cache_size": len(self.memory),
            "memory": self.memory.get_stats(),
            "db_stats": db_stats,
        }
