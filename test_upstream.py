"""
Unit Tests - Upstream Cache
===========================

Tests cover:
- Cache keys
- Memory tier (TTL, eviction, per-kind clearing, statistics)
- EDSM read-through (tiers, rate gate, retry, not-found handling)
"""

import json
import shutil
import tempfile
import unittest
import urllib.error
from unittest.mock import Mock
from pathlib import Path

# Import components to test
import sys
sys.path.insert(0, str(Path(__file__).parent / "src"))

from galnetops.caching import MemoryTierCache, make_key, key_kind
from galnetops.config import UpstreamConfig
from galnetops.database import ExplorationDatabase
from galnetops.upstream import UpstreamCache


SOL_INFO = {
    "name": "Sol",
    "id": 27,
    "coords": {"x": 0, "y": 0, "z": 0},
    "bodyCount": 40,
}


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeResponse:
    """Minimal urlopen response"""

    def __init__(self, payload):
        self._body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def read(self):
        return self._body


def http_error(code, reason):
    return urllib.error.HTTPError("https://www.edsm.net/api-v1/system", code, reason, {}, None)


# ============================================================================
# TEST CACHE KEYS
# ============================================================================

class TestCacheKeys(unittest.TestCase):
    """Test key namespacing"""

    def test_make_key(self):
        """Test keys are kind-prefixed and case-folded"""
        self.assertEqual(make_key("system", "Sol"), "system:sol")
        self.assertEqual(make_key("bodies", "  Colonia "), "bodies:colonia")

    def test_key_kind(self):
        """Test the kind is recovered from a key"""
        self.assertEqual(key_kind("value:sol"), "value")


# ============================================================================
# TEST MEMORY TIER
# ============================================================================

class TestMemoryTierCache(unittest.TestCase):
    """Test the in-process cache tier"""

    def setUp(self):
        self.clock = FakeClock()
        self.cache = MemoryTierCache("test", default_ttl=300, max_size=4, clock=self.clock)

    def test_get_and_set(self):
        """Test basic hit and miss"""
        self.cache.set("system:sol", {"name": "Sol"})

        self.assertEqual(self.cache.get("system:sol"), {"name": "Sol"})
        self.assertIsNone(self.cache.get("system:achenar"))
        self.assertIn("system:sol", self.cache)

    def test_expiry(self):
        """Test entries expire after their TTL"""
        self.cache.set("system:sol", 1)
        self.cache.set("system:maia", 2, ttl=10)

        self.clock.advance(300)
        self.assertEqual(self.cache.get("system:sol"), 1)
        self.assertIsNone(self.cache.get("system:maia"))

        self.clock.advance(1)
        self.assertIsNone(self.cache.get("system:sol"))
        self.assertEqual(len(self.cache), 0)

    def test_eviction_drops_oldest_half(self):
        """Test a full cache evicts its oldest writes"""
        for index in range(4):
            self.cache.set(f"system:{index}", index)
            self.clock.advance(1)

        self.cache.set("system:new", "new")

        self.assertEqual(len(self.cache), 3)
        self.assertNotIn("system:0", self.cache)
        self.assertNotIn("system:1", self.cache)
        self.assertIn("system:new", self.cache)
        self.assertEqual(self.cache.get_stats()["evictions"], 2)

    def test_overwrite_does_not_evict(self):
        """Test rewriting an existing key in a full cache"""
        for index in range(4):
            self.cache.set(f"system:{index}", index)

        self.cache.set("system:0", "again")

        self.assertEqual(len(self.cache), 4)
        self.assertEqual(self.cache.get("system:0"), "again")

    def test_clear_by_kind(self):
        """Test one kind is cleared without touching the others"""
        self.cache.set("system:sol", 1)
        self.cache.set("bodies:sol", 2)

        self.assertEqual(self.cache.clear("bodies"), 1)
        self.assertIn("system:sol", self.cache)
        self.assertNotIn("bodies:sol", self.cache)

    def test_cleanup_and_stats(self):
        """Test expired sweep and hit statistics"""
        self.cache.set("system:sol", 1, ttl=5)
        self.cache.set("system:maia", 2)
        self.cache.get("system:maia")
        self.cache.get("system:nowhere")

        self.clock.advance(6)
        self.assertEqual(self.cache.cleanup_expired(), 1)

        stats = self.cache.get_stats()
        self.assertEqual(stats["size"], 1)
        self.assertEqual(stats["hits"], 1)
        self.assertEqual(stats["misses"], 1)
        self.assertEqual(stats["hit_rate"], 50.0)

        self.cache.clear()
        self.assertEqual(self.cache.get_stats()["total_requests"], 0)


# ============================================================================
# TEST UPSTREAM CACHE
# ============================================================================

class TestUpstreamCache(unittest.TestCase):
    """Test EDSM lookups through both cache tiers"""

    def setUp(self):
        """Set up test fixtures"""
        self.tmp = Path(tempfile.mkdtemp())
        self.db = ExplorationDatabase(self.tmp / "test.db")
        self.clock = FakeClock()
        self.sleep = Mock()
        self.opener = Mock()
        self.config = UpstreamConfig(rate_limit_seconds=0.0)

    def tearDown(self):
        self.db.close()
        shutil.rmtree(self.tmp, ignore_errors=True)

    def make_upstream(self, config=None, database=None):
        return UpstreamCache(
            config or self.config,
            database,
            opener=self.opener,
            clock=self.clock,
            sleep=self.sleep,
        )

    def test_lookup_is_cached(self):
        """Test a found system is fetched once"""
        self.opener.return_value = FakeResponse(SOL_INFO)
        upstream = self.make_upstream(database=self.db)

        self.assertEqual(upstream.get_system("Sol"), SOL_INFO)
        self.assertEqual(upstream.get_system("sol"), SOL_INFO)

        self.assertEqual(self.opener.call_count, 1)
        self.assertEqual(self.db.get_cache_entry("system:sol"), SOL_INFO)

    def test_request_url(self):
        """Test the system endpoint and its query"""
        self.opener.return_value = FakeResponse(SOL_INFO)
        upstream = self.make_upstream()

        upstream.get_system("Sol")

        request = self.opener.call_args[0][0]
        self.assertIn("/api-v1/system?", request.full_url)
        self.assertIn("systemName=Sol", request.full_url)
        self.assertIn("showCoordinates=1", request.full_url)
        self.assertEqual(self.opener.call_args[1]["timeout"], self.config.timeout_seconds)

    def test_not_found_is_not_cached(self):
        """Test an empty object is a miss every time"""
        self.opener.side_effect = lambda *args, **kwargs: FakeResponse({})
        upstream = self.make_upstream(database=self.db)

        self.assertIsNone(upstream.get_system("Nowhere"))
        self.assertIsNone(upstream.get_system("Nowhere"))

        self.assertEqual(self.opener.call_count, 2)
        self.assertIsNone(self.db.get_cache_entry("system:nowhere"))

    def test_blank_name(self):
        """Test blank names never reach the network"""
        upstream = self.make_upstream()

        self.assertIsNone(upstream.get_system("  "))
        self.opener.assert_not_called()

    def test_persistent_tier_promotes(self):
        """Test a new instance reads the stored entry without a request"""
        self.opener.return_value = FakeResponse(SOL_INFO)
        self.make_upstream(database=self.db).get_system("Sol")
        self.opener.reset_mock()

        fresh = self.make_upstream(database=self.db)

        self.assertEqual(fresh.get_system("Sol"), SOL_INFO)
        self.opener.assert_not_called()
        self.assertIn("system:sol", fresh.memory)

    def test_memory_expiry_falls_back_to_store(self):
        """Test an expired memory entry is served from the store"""
        self.opener.return_value = FakeResponse(SOL_INFO)
        upstream = self.make_upstream(database=self.db)
        upstream.get_system("Sol")

        self.clock.advance(self.config.memory_ttl_seconds + 1)

        self.assertEqual(upstream.get_system("Sol"), SOL_INFO)
        self.assertEqual(self.opener.call_count, 1)

    def test_retry_on_transient_status(self):
        """Test 503 is retried with a growing delay"""
        self.opener.side_effect = [
            http_error(503, "Service Unavailable"),
            http_error(503, "Service Unavailable"),
            FakeResponse(SOL_INFO),
        ]
        upstream = self.make_upstream()

        self.assertEqual(upstream.get_system("Sol"), SOL_INFO)
        self.assertEqual(self.opener.call_count, 3)
        self.assertEqual([c[0][0] for c in self.sleep.call_args_list], [2.0, 4.0])
        self.assertIsNone(upstream.get_last_error())

    def test_retries_exhausted(self):
        """Test the last error is kept after max_retries failures"""
        self.opener.side_effect = http_error(429, "Too Many Requests")
        upstream = self.make_upstream()

        self.assertIsNone(upstream.get_system("Sol"))
        self.assertEqual(self.opener.call_count, self.config.max_retries)
        self.assertEqual(upstream.get_last_error(), "EDSM API error: 429 Too Many Requests")

        upstream.clear_last_error()
        self.assertIsNone(upstream.get_last_error())

    def test_non_retryable_status(self):
        """Test other statuses fail at once"""
        self.opener.side_effect = http_error(404, "Not Found")
        upstream = self.make_upstream()

        self.assertIsNone(upstream.get_system("Sol"))
        self.assertEqual(self.opener.call_count, 1)
        self.sleep.assert_not_called()
        self.assertIn("404", upstream.get_last_error())

    def test_connection_failure_is_retried(self):
        """Test connection errors count as transient"""
        self.opener.side_effect = urllib.error.URLError("connection refused")
        upstream = self.make_upstream()

        self.assertIsNone(upstream.get_system("Sol"))
        self.assertEqual(self.opener.call_count, self.config.max_retries)
        self.assertIn("connection refused", upstream.get_last_error())

    def test_invalid_json(self):
        """Test an unparseable body is a failure"""
        self.opener.return_value = FakeResponse(b"<html>")
        upstream = self.make_upstream()

        self.assertIsNone(upstream.get_system("Sol"))
        self.assertIn("invalid JSON", upstream.get_last_error())

    def test_rate_gate(self):
        """Test requests are spaced by the rate limit"""
        self.opener.side_effect = lambda *args, **kwargs: FakeResponse(SOL_INFO)
        upstream = self.make_upstream(UpstreamConfig(rate_limit_seconds=1.0))

        upstream.get_system("Sol")
        self.clock.advance(0.25)
        upstream.get_system_bodies("Sol")

        self.sleep.assert_called_once_with(0.75)

    def test_body_count_fallback(self):
        """Test the bodies endpoint is used when the system lookup lacks a count"""
        self.opener.side_effect = [
            FakeResponse({"name": "Maia"}),
            FakeResponse({"name": "Maia", "bodyCount": 12, "bodies": []}),
        ]
        upstream = self.make_upstream()

        self.assertEqual(upstream.get_system_body_count("Maia"), 12)
        self.assertIn("/api-system-v1/bodies?", self.opener.call_args[0][0].full_url)

    def test_system_value(self):
        """Test the estimated-value endpoint"""
        self.opener.return_value = FakeResponse({"estimatedValue": 1234, "estimatedValueMapped": 5678})
        upstream = self.make_upstream()

        self.assertEqual(upstream.get_system_value("Sol")["estimatedValueMapped"], 5678)
        self.assertIn("/api-system-v1/estimated-value?", self.opener.call_args[0][0].full_url)

    def test_search_systems(self):
        """Test prefix search limits and is never cached"""
        results = [{"name": f"Col 285 Sector {i}"} for i in range(5)]
        self.opener.side_effect = lambda *args, **kwargs: FakeResponse(results)
        upstream = self.make_upstream(database=self.db)

        self.assertEqual(upstream.search_systems("C"), [])
        self.opener.assert_not_called()

        self.assertEqual(len(upstream.search_systems("Col", limit=3)), 3)
        self.assertEqual(len(upstream.search_systems("Col")), 5)
        self.assertEqual(self.opener.call_count, 2)
        self.assertEqual(len(upstream.memory), 0)

    def test_clear_cache_by_kind(self):
        """Test clearing one kind from both tiers"""
        self.opener.side_effect = lambda *args, **kwargs: FakeResponse(SOL_INFO)
        upstream = self.make_upstream(database=self.db)
        upstream.get_system("Sol")
        upstream.get_system_bodies("Sol")

        self.assertEqual(upstream.clear_cache("system"), 1)

        self.assertNotIn("system:sol", upstream.memory)
        self.assertIn("bodies:sol", upstream.memory)
        self.assertIsNone(self.db.get_cache_entry("system:sol"))

    def test_cache_stats(self):
        """Test combined statistics"""
        self.opener.return_value = FakeResponse(SOL_INFO)
        upstream = self.make_upstream(database=self.db)
        upstream.get_system("Sol")

        stats = upstream.get_cache_stats()

        self.assertEqual(stats["memory_cache_size"], 1)
        self.assertEqual(stats["db_stats"]["total_entries"], 1)
        self.assertEqual(stats["db_stats"]["by_type"], {"system": 1})

    def test_memory_only(self):
        """Test lookups without a store"""
        self.opener.return_value = FakeResponse(SOL_INFO)
        upstream = self.make_upstream()

        self.assertEqual(upstream.get_system("Sol"), SOL_INFO)
        self.assertEqual(upstream.clear_cache(), 0)
        self.assertIsNone(upstream.get_cache_stats()["db_stats"])


# ============================================================================
# RUN TESTS
# ============================================================================

if __name__ == "__main__":
    unittest.main(verbosity=2)
